"""Persistence and debug hooks for an MQTT broker: SQLite file, Redis and logging."""

__version__ = "0.1.0"
__all__ = ["storage", "base", "debug", "bolt", "redisstore"]