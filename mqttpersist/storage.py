"""Storable records of clients, messages, subscriptions and server info."""

from __future__ import annotations

import base64
import dataclasses
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

SUBSCRIPTION_KEY = "SUB"  # denotes subscriptions in a store
SYS_INFO_KEY = "SYS"  # denotes server system information in a store
RETAINED_KEY = "RET"  # denotes retained messages in a store
INFLIGHT_KEY = "IFM"  # denotes inflight messages in a store
CLIENT_KEY = "CL"  # denotes clients in a store

_R = TypeVar("_R")

# Characters escaped in encoded JSON so records can be embedded in HTML safely.
_ESCAPES = str.maketrans(
    {
        "<": "\\u003c",
        ">": "\\u003e",
        "&": "\\u0026",
        "\u2028": "\\u2028",
        "\u2029": "\\u2029",
    }
)


class DBFileNotOpenError(RuntimeError):
    """The backing database was not open for reading or writing."""

    def __init__(self, message: str = "db file not open") -> None:
        super().__init__(message)


def _from_dict(cls: type[_R], data: Any) -> _R:
    if not isinstance(data, dict):
        raise ValueError(f"cannot decode {type(data).__name__} into {cls.__name__}")
    values = {}
    for f in dataclasses.fields(cls):
        raw = data.get(f.metadata["json"])
        if raw is None:
            continue
        decode = f.metadata["decode"]
        values[f.name] = decode(raw) if decode is not None else raw
    return cls(**values)


def _b64(raw: Any) -> bytes:
    return base64.b64decode(raw)


def _nested(cls: type) -> Callable[[Any], Any]:
    return lambda raw: _from_dict(cls, raw)


def _list_of(cls: type) -> Callable[[Any], Any]:
    def decode(raw: Any) -> list:
        if not isinstance(raw, list):
            raise ValueError(f"expected a list of {cls.__name__}")
        return [_from_dict(cls, item) for item in raw]

    return decode


def _key(name: str, decode: Optional[Callable[[Any], Any]] = None, **kwargs: Any) -> Any:
    return field(metadata={"json": name, "decode": decode}, **kwargs)


@dataclass
class UserProperty:
    """An MQTT v5 user property key/value pair."""

    key: str = _key("k", default="")
    val: str = _key("v", default="")


_users = _list_of(UserProperty)


@dataclass
class FixedHeader:
    """The fixed header values of an MQTT packet."""

    remaining: int = _key("remaining", default=0)
    type: int = _key("type", default=0)
    qos: int = _key("qos", default=0)
    dup: bool = _key("dup", default=False)
    retain: bool = _key("retain", default=False)


@dataclass
class ClientWill:
    """A client's will message and its limited v5 properties."""

    payload: bytes = _key("payload", _b64, default=b"")
    user: list[UserProperty] = _key("user", _users, default_factory=list)
    topic_name: str = _key("topicName", default="")
    flag: int = _key("flag", default=0)
    will_delay_interval: int = _key("willDelayInterval", default=0)
    qos: int = _key("qos", default=0)
    retain: bool = _key("retain", default=False)


@dataclass
class ClientProperties:
    """The subset of v5 connect properties kept for a client."""

    authentication_data: bytes = _key("authenticationData", _b64, default=b"")
    user: list[UserProperty] = _key("user", _users, default_factory=list)
    authentication_method: str = _key("authenticationMethod", default="")
    session_expiry_interval: int = _key("sessionExpiryInterval", default=0)
    maximum_packet_size: int = _key("maximumPacketSize", default=0)
    receive_maximum: int = _key("receiveMaximum", default=0)
    topic_alias_maximum: int = _key("topicAliasMaximum", default=0)
    session_expiry_interval_flag: bool = _key("sessionExpiryIntervalFlag", default=False)
    request_problem_info: int = _key("requestProblemInfo", default=0)
    request_problem_info_flag: bool = _key("requestProblemInfoFlag", default=False)
    request_response_info: int = _key("requestResponseInfo", default=0)


@dataclass
class Client:
    """A storable representation of an MQTT client."""

    will: ClientWill = _key("will", _nested(ClientWill), default_factory=ClientWill)
    properties: ClientProperties = _key(
        "properties", _nested(ClientProperties), default_factory=ClientProperties
    )
    username: bytes = _key("username", _b64, default=b"")
    id: str = _key("id", default="")
    t: str = _key("t", default="")
    remote: str = _key("remote", default="")
    listener: str = _key("listener", default="")
    protocol_version: int = _key("protocolVersion", default=0)
    clean: bool = _key("clean", default=False)

    def to_json(self) -> bytes:
        """Encode the record as compact JSON."""
        return _dumps(self)

    @classmethod
    def from_json(cls, data: bytes | str) -> Client:
        """Decode a record; empty data gives an empty record."""
        return _loads(cls, data)


@dataclass
class MessageProperties:
    """The subset of v5 properties kept for a publish message."""

    correlation_data: bytes = _key("correlationData", _b64, default=b"")
    subscription_identifier: list[int] = _key("subscriptionIdentifier", list, default_factory=list)
    user: list[UserProperty] = _key("user", _users, default_factory=list)
    content_type: str = _key("contentType", default="")
    response_topic: str = _key("responseTopic", default="")
    message_expiry_interval: int = _key("messageExpiry", default=0)
    topic_alias: int = _key("topicAlias", default=0)
    payload_format: int = _key("payloadFormat", default=0)
    payload_format_flag: bool = _key("payloadFormatFlag", default=False)


@dataclass
class Message:
    """A storable representation of a publish message."""

    properties: MessageProperties = _key(
        "properties", _nested(MessageProperties), default_factory=MessageProperties
    )
    payload: bytes = _key("payload", _b64, default=b"")
    t: str = _key("t", default="")
    id: str = _key("id", default="")
    origin: str = _key("origin", default="")
    topic_name: str = _key("topic_name", default="")
    fixed_header: FixedHeader = _key("fixedheader", _nested(FixedHeader), default_factory=FixedHeader)
    created: int = _key("created", default=0)
    sent: int = _key("sent", default=0)
    packet_id: int = _key("packet_id", default=0)

    def to_json(self) -> bytes:
        """Encode the record as compact JSON."""
        return _dumps(self)

    @classmethod
    def from_json(cls, data: bytes | str) -> Message:
        """Decode a record; empty data gives an empty record."""
        return _loads(cls, data)


@dataclass
class Subscription:
    """A storable representation of a client subscription."""

    t: str = _key("t", default="")
    id: str = _key("id", default="")
    client: str = _key("client", default="")
    filter: str = _key("filter", default="")
    identifier: int = _key("identifier", default=0)
    retain_handling: int = _key("retain_handling", default=0)
    qos: int = _key("qos", default=0)
    retain_as_published: bool = _key("retain_as_pub", default=False)
    no_local: bool = _key("no_local", default=False)

    def to_json(self) -> bytes:
        """Encode the record as compact JSON."""
        return _dumps(self)

    @classmethod
    def from_json(cls, data: bytes | str) -> Subscription:
        """Decode a record; empty data gives an empty record."""
        return _loads(cls, data)


@dataclass
class SystemInfo:
    """A storable snapshot of the server's system information."""

    version: str = _key("version", default="")
    started: int = _key("started", default=0)
    time: int = _key("time", default=0)
    uptime: int = _key("uptime", default=0)
    bytes_received: int = _key("bytes_received", default=0)
    bytes_sent: int = _key("bytes_sent", default=0)
    clients_connected: int = _key("clients_connected", default=0)
    clients_disconnected: int = _key("clients_disconnected", default=0)
    clients_maximum: int = _key("clients_maximum", default=0)
    clients_total: int = _key("clients_total", default=0)
    messages_received: int = _key("messages_received", default=0)
    messages_sent: int = _key("messages_sent", default=0)
    retained: int = _key("retained", default=0)
    inflight: int = _key("inflight", default=0)
    inflight_dropped: int = _key("inflight_dropped", default=0)
    subscriptions: int = _key("subscriptions", default=0)
    packets_received: int = _key("packets_received", default=0)
    packets_sent: int = _key("packets_sent", default=0)
    memory_alloc: int = _key("memory_alloc", default=0)
    threads: int = _key("threads", default=0)
    t: str = _key("t", default="")
    id: str = _key("id", default="")

    def to_json(self) -> bytes:
        """Encode the record as compact JSON."""
        return _dumps(self)

    @classmethod
    def from_json(cls, data: bytes | str) -> SystemInfo:
        """Decode a record; empty data gives an empty record."""
        return _loads(cls, data)


def _encode(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(value).decode("ascii") if value else None
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _to_dict(value)
    if isinstance(value, list):
        return [_encode(item) for item in value] if value else None
    return value


def _to_dict(obj: Any) -> dict[str, Any]:
    return {f.metadata["json"]: _encode(getattr(obj, f.name)) for f in dataclasses.fields(obj)}


def _dumps(obj: Any) -> bytes:
    text = json.dumps(_to_dict(obj), separators=(",", ":"), ensure_ascii=False)
    return text.translate(_ESCAPES).encode("utf-8")


def _loads(cls: type[_R], data: bytes | str) -> _R:
    if not data:
        return cls()
    return _from_dict(cls, json.loads(data))