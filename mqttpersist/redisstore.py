"""A persistent storage hook that keeps its records in Redis hashes."""

from __future__ import annotations

import dataclasses
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, TypeVar

import redis

from . import storage
from .base import (
    HookBase,
    HookEvent,
    InvalidConfigTypeError,
    MqttClient,
    Packet,
    client_record,
    message_record,
)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 6379
DEFAULT_ADDR = f"{DEFAULT_HOST}:{DEFAULT_PORT}"
DEFAULT_H_PREFIX = "mochi-"  # marks the hashes written by this hook

_R = TypeVar("_R", storage.Client, storage.Message, storage.Subscription, storage.SystemInfo)

_PROVIDED = frozenset(
    {
        HookEvent.ON_SESSION_ESTABLISHED,
        HookEvent.ON_DISCONNECT,
        HookEvent.ON_SUBSCRIBED,
        HookEvent.ON_UNSUBSCRIBED,
        HookEvent.ON_RETAIN_MESSAGE,
        HookEvent.ON_QOS_PUBLISH,
        HookEvent.ON_QOS_COMPLETE,
        HookEvent.ON_QOS_DROPPED,
        HookEvent.ON_WILL_SENT,
        HookEvent.ON_SYS_INFO_TICK,
        HookEvent.ON_CLIENT_EXPIRED,
        HookEvent.ON_RETAINED_EXPIRED,
        HookEvent.ON_EXPIRE_INFLIGHTS,
        HookEvent.STORED_CLIENTS,
        HookEvent.STORED_INFLIGHT_MESSAGES,
        HookEvent.STORED_RETAINED_MESSAGES,
        HookEvent.STORED_SUBSCRIPTIONS,
        HookEvent.STORED_SYS_INFO,
    }
)


def _join(*parts: str) -> str:
    """Build a hash field name from its parts, separated by colons."""
    return ":".join(parts)


def client_key(cl: MqttClient) -> str:
    """Return the primary key for a client."""
    return cl.id


def subscription_key(cl: MqttClient, filter: str) -> str:
    """Return the primary key for a subscription."""
    return _join(cl.id, filter)


def retained_key(topic: str) -> str:
    """Return the primary key for a retained message: the topic itself."""
    return _join(topic)


def inflight_key(cl: MqttClient, pk: Packet) -> str:
    """Return the primary key for an inflight message."""
    return _join(cl.id, pk.format_id())


def sys_info_key() -> str:
    """Return the primary key for system info."""
    return storage.SYS_INFO_KEY


def _default_options() -> dict[str, Any]:
    return {"host": DEFAULT_HOST, "port": DEFAULT_PORT}


@dataclass
class RedisOptions:
    """The hash prefix and the keyword arguments used to build the Redis client."""

    h_prefix: str = ""
    options: dict[str, Any] | None = None


class RedisHook(HookBase):
    """Persists clients, subscriptions, retained and inflight messages and system info."""

    def __init__(self) -> None:
        super().__init__()
        self.config: RedisOptions | None = None
        self.db: Any = None
        self._closed = False

    def id(self) -> str:
        """Return the identifier of the hook."""
        return "redis-db"

    def provides(self, b: int) -> bool:
        """Report whether the hook handles the given event."""
        return b in _PROVIDED

    def h_key(self, s: str) -> str:
        """Return a hash name carrying the configured prefix."""
        assert self.config is not None
        return self.config.h_prefix + s

    def init(self, config: Any) -> None:
        """Connect to the Redis service and check that it answers."""
        if config is not None and not isinstance(config, RedisOptions):
            raise InvalidConfigTypeError()
        self.config = config if config is not None else RedisOptions()
        if self.config.options is None:
            self.config.options = _default_options()
        if not self.config.h_prefix:
            self.config.h_prefix = DEFAULT_H_PREFIX

        options = self.config.options
        address = f"{options.get('host', DEFAULT_HOST)}:{options.get('port', DEFAULT_PORT)}"
        self.log.info(
            "connecting to redis service",
            extra={
                "address": address,
                "username": options.get("username") or "",
                "password_len": len(options.get("password") or ""),
                "db": options.get("db", 0),
            },
        )

        self._closed = False
        self.db = redis.Redis(**options)
        try:
            self.db.ping()
        except redis.RedisError as exc:
            raise redis.ConnectionError(f"failed to ping service: {exc}") from exc
        self.log.info("connected to redis service")

    def stop(self) -> None:
        """Close the connection to the service."""
        self.log.info("disconnecting from redis service")
        if self.db is not None:
            self.db.close()
        self._closed = True

    # storage primitives

    def _ready(self) -> bool:
        if self.db is None:
            self.log.error("%s", storage.DBFileNotOpenError())
            return False
        return True

    def _conn(self) -> Any:
        if self._closed:
            raise redis.ConnectionError("client is closed")
        return self.db

    @contextmanager
    def _report(self, message: str, data: Any) -> Iterator[None]:
        try:
            yield
        except redis.RedisError as exc:
            self.log.error("%s: %s", message, exc, extra={"data": data})

    def _decode(self, cls: type[_R], row: bytes | str, what: str) -> _R:
        try:
            return cls.from_json(row)
        except (ValueError, TypeError, KeyError) as exc:
            self.log.error("failed to unmarshal %s: %s", what, exc, extra={"data": row})
            return cls()

    def _stored(self, cls: type[_R], key: str, what: str) -> list[_R]:
        rows = self._conn().hgetall(self.h_key(key))
        return [self._decode(cls, row, what) for row in rows.values()]

    def _update_client(self, cl: MqttClient) -> None:
        if not self._ready():
            return
        record = client_record(cl)
        with self._report("failed to hset client data", record):
            self._conn().hset(self.h_key(storage.CLIENT_KEY), client_key(cl), record.to_json())

    # events

    def on_session_established(self, cl: MqttClient, pk: Packet) -> None:
        """Store a client when its session is established."""
        self._update_client(cl)

    def on_will_sent(self, cl: MqttClient, pk: Packet) -> None:
        """Rewrite a client record once its will message has been sent."""
        self._update_client(cl)

    def on_disconnect(self, cl: MqttClient, err: Exception | None, expire: bool) -> None:
        """Remove a client from the store if its session expired."""
        if not self._ready():
            return
        if not expire:
            return
        with self._report("failed to delete client", client_key(cl)):
            self._conn().hdel(self.h_key(storage.CLIENT_KEY), client_key(cl))

    def on_subscribed(self, cl: MqttClient, pk: Packet, reason_codes: bytes | list[int]) -> None:
        """Store one or more client subscriptions."""
        if not self._ready():
            return
        for sub, code in zip(pk.filters, reason_codes):
            key = subscription_key(cl, sub.filter)
            record = storage.Subscription(
                id=key,
                t=storage.SUBSCRIPTION_KEY,
                client=cl.id,
                filter=sub.filter,
                qos=code,
            )
            with self._report("failed to hset subscription data", record):
                self._conn().hset(self.h_key(storage.SUBSCRIPTION_KEY), key, record.to_json())

    def on_unsubscribed(self, cl: MqttClient, pk: Packet) -> None:
        """Remove one or more client subscriptions."""
        if not self._ready():
            return
        for sub in pk.filters:
            with self._report("failed to delete subscription data", client_key(cl)):
                self._conn().hdel(
                    self.h_key(storage.SUBSCRIPTION_KEY), subscription_key(cl, sub.filter)
                )

    def on_retain_message(self, cl: MqttClient, pk: Packet, r: int) -> None:
        """Store a retained message, or remove it when r is -1."""
        if not self._ready():
            return
        key = retained_key(pk.topic_name)
        if r == -1:
            with self._report("failed to delete retained message data", client_key(cl)):
                self._conn().hdel(self.h_key(storage.RETAINED_KEY), key)
            return
        record = message_record(pk, key, storage.RETAINED_KEY)
        with self._report("failed to hset retained message data", record):
            self._conn().hset(self.h_key(storage.RETAINED_KEY), key, record.to_json())

    def on_qos_publish(self, cl: MqttClient, pk: Packet, sent: int, resends: int) -> None:
        """Store or update an inflight message."""
        if not self._ready():
            return
        key = inflight_key(cl, pk)
        record = dataclasses.replace(
            message_record(pk, key, storage.INFLIGHT_KEY, sent), packet_id=0
        )
        with self._report("failed to hset qos inflight message data", record):
            self._conn().hset(self.h_key(storage.INFLIGHT_KEY), key, record.to_json())

    def on_qos_complete(self, cl: MqttClient, pk: Packet) -> None:
        """Remove a resolved inflight message."""
        if not self._ready():
            return
        with self._report("failed to delete inflight message data", client_key(cl)):
            self._conn().hdel(self.h_key(storage.INFLIGHT_KEY), inflight_key(cl, pk))

    def on_qos_dropped(self, cl: MqttClient, pk: Packet) -> None:
        """Remove a dropped inflight message."""
        if self.db is None:
            self.log.error("%s", storage.DBFileNotOpenError())
        self.on_qos_complete(cl, pk)

    def on_sys_info_tick(self, sys: storage.SystemInfo) -> None:
        """Store the latest system info."""
        if not self._ready():
            return
        record = dataclasses.replace(sys, id=sys_info_key(), t=storage.SYS_INFO_KEY)
        with self._report("failed to hset server info data", record):
            self._conn().hset(self.h_key(storage.SYS_INFO_KEY), sys_info_key(), record.to_json())

    def on_expire_inflights(self, cl: MqttClient, expiry: int) -> None:
        """Remove inflight messages created before expiry or with no creation time."""
        if not self._ready():
            return
        try:
            rows = self._conn().hgetall(self.h_key(storage.INFLIGHT_KEY))
        except redis.RedisError as exc:
            self.log.error("failed to HGetAll inflight data: %s", exc)
            return
        for row in rows.values():
            message = self._decode(storage.Message, row, "inflight message data")
            if message.created < expiry or message.created == 0:
                with self._report("failed to delete inflight message data", client_key(cl)):
                    self._conn().hdel(self.h_key(storage.INFLIGHT_KEY), message.id)

    def on_retained_expired(self, filter: str) -> None:
        """Remove an expired retained message."""
        if not self._ready():
            return
        with self._report("failed to delete retained message data", retained_key(filter)):
            self._conn().hdel(self.h_key(storage.RETAINED_KEY), retained_key(filter))

    def on_client_expired(self, cl: MqttClient) -> None:
        """Remove an expired client."""
        if not self._ready():
            return
        with self._report("failed to delete expired client", client_key(cl)):
            self._conn().hdel(self.h_key(storage.CLIENT_KEY), client_key(cl))

    # restoration

    def stored_clients(self) -> list[storage.Client]:
        """Return all stored clients."""
        if not self._ready():
            return []
        return self._stored(storage.Client, storage.CLIENT_KEY, "client data")

    def stored_subscriptions(self) -> list[storage.Subscription]:
        """Return all stored subscriptions."""
        if not self._ready():
            return []
        return self._stored(storage.Subscription, storage.SUBSCRIPTION_KEY, "subscription data")

    def stored_retained_messages(self) -> list[storage.Message]:
        """Return all stored retained messages."""
        if not self._ready():
            return []
        return self._stored(storage.Message, storage.RETAINED_KEY, "retained message data")

    def stored_inflight_messages(self) -> list[storage.Message]:
        """Return all stored inflight messages."""
        if not self._ready():
            return []
        return self._stored(storage.Message, storage.INFLIGHT_KEY, "inflight message data")

    def stored_sys_info(self) -> storage.SystemInfo:
        """Return the stored system info, or an empty record."""
        if not self._ready():
            return storage.SystemInfo()
        row = self._conn().hget(self.h_key(storage.SYS_INFO_KEY), storage.SYS_INFO_KEY)
        if row is None:
            return storage.SystemInfo()
        return self._decode(storage.SystemInfo, row, "sys info data")