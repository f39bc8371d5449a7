"""A hook that logs low-level server activity for debugging."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from . import storage
from .base import HookBase, HookOptions, InvalidConfigTypeError, MqttClient, Packet, PacketType

_PINGS = (PacketType.PINGREQ, PacketType.PINGRESP)
_ACKS = (
    PacketType.CONNACK,
    PacketType.DISCONNECT,
    PacketType.PUBACK,
    PacketType.PUBREC,
    PacketType.PUBREL,
    PacketType.PUBCOMP,
)


@dataclass
class DebugOptions:
    """What the debug hook includes in its output."""

    show_packet_data: bool = False
    show_pings: bool = False
    show_passwords: bool = False


def _text(data: bytes) -> str:
    return bytes(data).decode("utf-8", errors="replace")


def _packet_name(pk: Packet) -> str:
    try:
        return PacketType(pk.fixed_header.type).name
    except ValueError:
        return str(pk.fixed_header.type)


class DebugHook(HookBase):
    """Logs packets, qos flows and lifecycle events at debug level."""

    def __init__(self) -> None:
        super().__init__()
        self.config = DebugOptions()

    def id(self) -> str:
        """Return the identifier of the hook."""
        return "debug"

    def provides(self, b: int) -> bool:
        """The debug hook handles every event."""
        return True

    def init(self, config: Any) -> None:
        """Apply the options, or the defaults when none are given."""
        if config is not None and not isinstance(config, DebugOptions):
            raise InvalidConfigTypeError()
        self.config = config if config is not None else DebugOptions()

    def set_opts(self, log: logging.Logger, opts: HookOptions | None) -> None:
        """Receive the server's logger and options."""
        super().set_opts(log, opts)
        self.log.debug("set options", extra={"method": "SetOpts", "opts": opts})

    def stop(self) -> None:
        """Log that the hook stopped."""
        self.log.debug("stop", extra={"method": "Stop"})

    def on_started(self) -> None:
        """Log that the server started."""
        self.log.debug("started", extra={"method": "OnStarted"})

    def on_stopped(self) -> None:
        """Log that the server stopped."""
        self.log.debug("stopped", extra={"method": "OnStopped"})

    def _hides(self, pk: Packet) -> bool:
        return pk.fixed_header.type in _PINGS and not self.config.show_pings

    def on_packet_read(self, cl: MqttClient, pk: Packet) -> Packet:
        """Log a packet received from a client and pass it on unchanged."""
        if not self._hides(pk):
            self.log.debug("%s << %s", _packet_name(pk), cl.id, extra={"m": self.packet_meta(pk)})
        return pk

    def on_packet_sent(self, cl: MqttClient, pk: Packet, b: bytes) -> None:
        """Log a packet sent to a client."""
        if not self._hides(pk):
            self.log.debug("%s >> %s", _packet_name(pk), cl.id, extra={"m": self.packet_meta(pk)})

    def on_retain_message(self, cl: MqttClient, pk: Packet, r: int) -> None:
        """Log a retained message being set or cleared."""
        self.log.debug("retained message on topic", extra={"m": self.packet_meta(pk)})

    def on_qos_publish(self, cl: MqttClient, pk: Packet, sent: int, resends: int) -> None:
        """Log a qos publish issued to a subscriber."""
        self.log.debug("inflight out", extra={"m": self.packet_meta(pk)})

    def on_qos_complete(self, cl: MqttClient, pk: Packet) -> None:
        """Log a completed qos flow."""
        self.log.debug("inflight complete", extra={"m": self.packet_meta(pk)})

    def on_qos_dropped(self, cl: MqttClient, pk: Packet) -> None:
        """Log an expired qos flow."""
        self.log.debug("inflight dropped", extra={"m": self.packet_meta(pk)})

    def on_lwt_sent(self, cl: MqttClient, pk: Packet) -> None:
        """Log a will message issued for a disconnecting client."""
        self.log.debug("sent lwt for client", extra={"method": "OnLWTSent", "client": cl.id})

    def on_retained_expired(self, filter: str) -> None:
        """Log an expired retained message."""
        self.log.debug(
            "retained message expired", extra={"method": "OnRetainedExpired", "topic": filter}
        )

    def on_client_expired(self, cl: MqttClient) -> None:
        """Log an expired client session."""
        self.log.debug(
            "client session expired", extra={"method": "OnClientExpired", "client": cl.id}
        )

    def stored_clients(self) -> list[storage.Client]:
        """Log the restore request; the debug hook stores nothing."""
        self.log.debug("stored clients", extra={"method": "StoredClients"})
        return []

    def stored_subscriptions(self) -> list[storage.Subscription]:
        """Log the restore request; the debug hook stores nothing."""
        self.log.debug("stored subscriptions", extra={"method": "StoredSubscriptions"})
        return []

    def stored_retained_messages(self) -> list[storage.Message]:
        """Log the restore request; the debug hook stores nothing."""
        self.log.debug("stored retained messages", extra={"method": "StoredRetainedMessages"})
        return []

    def stored_inflight_messages(self) -> list[storage.Message]:
        """Log the restore request; the debug hook stores nothing."""
        self.log.debug("stored inflight messages", extra={"method": "StoredInflightMessages"})
        return []

    def stored_sys_info(self) -> storage.SystemInfo:
        """Log the restore request; the debug hook stores nothing."""
        self.log.debug("stored system info", extra={"method": "StoredSysInfo"})
        return storage.SystemInfo()

    def packet_meta(self, pk: Packet) -> dict[str, Any]:
        """Collect type-specific details of a packet for the log."""
        m: dict[str, Any] = {}
        kind = pk.fixed_header.type
        if kind == PacketType.CONNECT:
            conn = pk.connect
            m["id"] = conn.client_identifier
            m["clean"] = conn.clean
            m["keepalive"] = conn.keepalive
            m["version"] = pk.protocol_version
            m["username"] = _text(conn.username)
            if self.config.show_passwords:
                m["password"] = _text(conn.password)
            if conn.will_flag:
                m["will_topic"] = conn.will_topic
                m["will_payload"] = _text(conn.will_payload)
        elif kind == PacketType.PUBLISH:
            m["topic"] = pk.topic_name
            m["payload"] = _text(pk.payload)
            m["raw"] = pk.payload
            m["qos"] = pk.fixed_header.qos
            m["id"] = pk.packet_id
        elif kind in _ACKS:
            m["id"] = pk.packet_id
            m["reason"] = int(pk.reason_code)
            if pk.reason_code > 0 and pk.protocol_version == 5:
                m["reason_string"] = pk.properties.reason_string
        elif kind == PacketType.SUBSCRIBE:
            m["filters"] = {f.filter: int(f.qos) for f in pk.filters}
            m["subids"] = {f.filter: f.identifier for f in pk.filters}
        elif kind == PacketType.UNSUBSCRIBE:
            m["filters"] = [f.filter for f in pk.filters]
        elif kind in (PacketType.SUBACK, PacketType.UNSUBACK):
            m["reasons"] = [int(code) for code in pk.reason_codes]

        if self.config.show_packet_data:
            m["packet"] = pk
        return m