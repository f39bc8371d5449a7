"""Hook plumbing and the client and packet model the hooks work with."""

from __future__ import annotations

import copy
import enum
import logging
from dataclasses import dataclass, field
from typing import Any

from . import storage


class HookEvent(enum.IntEnum):
    """Identifies each hook method a hook may provide."""

    SET_OPTIONS = enum.auto()
    ON_SYS_INFO_TICK = enum.auto()
    ON_STARTED = enum.auto()
    ON_STOPPED = enum.auto()
    ON_CONNECT_AUTHENTICATE = enum.auto()
    ON_ACL_CHECK = enum.auto()
    ON_CONNECT = enum.auto()
    ON_SESSION_ESTABLISHED = enum.auto()
    ON_DISCONNECT = enum.auto()
    ON_AUTH_PACKET = enum.auto()
    ON_PACKET_READ = enum.auto()
    ON_PACKET_ENCODE = enum.auto()
    ON_PACKET_SENT = enum.auto()
    ON_PACKET_PROCESSED = enum.auto()
    ON_SUBSCRIBE = enum.auto()
    ON_SUBSCRIBED = enum.auto()
    ON_SELECT_SUBSCRIBERS = enum.auto()
    ON_UNSUBSCRIBE = enum.auto()
    ON_UNSUBSCRIBED = enum.auto()
    ON_PUBLISH = enum.auto()
    ON_PUBLISHED = enum.auto()
    ON_PUBLISH_DROPPED = enum.auto()
    ON_RETAIN_MESSAGE = enum.auto()
    ON_RETAIN_PUBLISHED = enum.auto()
    ON_QOS_PUBLISH = enum.auto()
    ON_QOS_COMPLETE = enum.auto()
    ON_QOS_DROPPED = enum.auto()
    ON_PACKET_ID_EXHAUSTED = enum.auto()
    ON_WILL = enum.auto()
    ON_WILL_SENT = enum.auto()
    ON_CLIENT_EXPIRED = enum.auto()
    ON_RETAINED_EXPIRED = enum.auto()
    STORED_CLIENTS = enum.auto()
    STORED_SUBSCRIPTIONS = enum.auto()
    STORED_INFLIGHT_MESSAGES = enum.auto()
    STORED_RETAINED_MESSAGES = enum.auto()
    STORED_SYS_INFO = enum.auto()
    ON_EXPIRE_INFLIGHTS = enum.auto()


class PacketType(enum.IntEnum):
    """MQTT control packet types."""

    RESERVED = 0
    CONNECT = 1
    CONNACK = 2
    PUBLISH = 3
    PUBACK = 4
    PUBREC = 5
    PUBREL = 6
    PUBCOMP = 7
    SUBSCRIBE = 8
    SUBACK = 9
    UNSUBSCRIBE = 10
    UNSUBACK = 11
    PINGREQ = 12
    PINGRESP = 13
    DISCONNECT = 14
    AUTH = 15


class InvalidConfigTypeError(TypeError):
    """A hook was given a configuration of the wrong type."""

    def __init__(self, message: str = "invalid config type provided") -> None:
        super().__init__(message)


@dataclass
class HookOptions:
    """Server parameters passed on to every hook."""

    capabilities: Any = None


@dataclass
class PacketProperties:
    """MQTT v5 properties carried by a packet or a connection."""

    payload_format: int = 0
    payload_format_flag: bool = False
    message_expiry_interval: int = 0
    content_type: str = ""
    response_topic: str = ""
    correlation_data: bytes = b""
    subscription_identifier: list[int] = field(default_factory=list)
    session_expiry_interval: int = 0
    session_expiry_interval_flag: bool = False
    authentication_method: str = ""
    authentication_data: bytes = b""
    request_problem_info: int = 0
    request_problem_info_flag: bool = False
    request_response_info: int = 0
    receive_maximum: int = 0
    topic_alias: int = 0
    topic_alias_maximum: int = 0
    maximum_packet_size: int = 0
    reason_string: str = ""
    user: list[storage.UserProperty] = field(default_factory=list)


@dataclass
class SubscriptionFilter:
    """One topic filter of a subscribe or unsubscribe packet."""

    filter: str = ""
    qos: int = 0
    identifier: int = 0
    no_local: bool = False
    retain_as_published: bool = False
    retain_handling: int = 0


@dataclass
class ConnectParams:
    """The connect-specific fields of a packet."""

    client_identifier: str = ""
    clean: bool = False
    keepalive: int = 0
    username: bytes = b""
    password: bytes = b""
    will_flag: bool = False
    will_topic: str = ""
    will_payload: bytes = b""
    will_qos: int = 0
    will_retain: bool = False


@dataclass
class Packet:
    """A decoded MQTT packet."""

    fixed_header: storage.FixedHeader = field(default_factory=storage.FixedHeader)
    protocol_version: int = 0
    packet_id: int = 0
    topic_name: str = ""
    payload: bytes = b""
    origin: str = ""
    created: int = 0
    reason_code: int = 0
    reason_codes: list[int] = field(default_factory=list)
    filters: list[SubscriptionFilter] = field(default_factory=list)
    connect: ConnectParams = field(default_factory=ConnectParams)
    properties: PacketProperties = field(default_factory=PacketProperties)

    def format_id(self) -> str:
        """Return the packet id as a decimal string."""
        return str(self.packet_id)


@dataclass
class ClientConnection:
    """Network details of a connected client."""

    remote: str = ""
    listener: str = ""


@dataclass
class ClientState:
    """Session state negotiated by a client when it connected."""

    props: PacketProperties = field(default_factory=PacketProperties)
    will: storage.ClientWill = field(default_factory=storage.ClientWill)
    username: bytes = b""
    protocol_version: int = 0
    clean: bool = False


@dataclass
class MqttClient:
    """A client connected to the broker."""

    id: str = ""
    net: ClientConnection = field(default_factory=ClientConnection)
    properties: ClientState = field(default_factory=ClientState)


class HookBase:
    """Defaults shared by all hooks: provides nothing, configures nothing."""

    def __init__(self) -> None:
        self.log: logging.Logger = logging.getLogger("mqttpersist")
        self.opts: HookOptions | None = None

    def id(self) -> str:
        """Return the identifier of the hook."""
        return "base"

    def provides(self, b: int) -> bool:
        """Report whether the hook handles the given event."""
        return False

    def init(self, config: Any) -> None:
        """Prepare the hook; the base hook needs no configuration."""

    def set_opts(self, log: logging.Logger, opts: HookOptions | None) -> None:
        """Receive the server's logger and inheritable options."""
        self.log = log
        self.opts = opts

    def stop(self) -> None:
        """Release the hook's resources; the base hook holds none."""


def client_record(cl: MqttClient) -> storage.Client:
    """Build the storable record of a client."""
    props = cl.properties.props
    return storage.Client(
        id=cl.id,
        t=storage.CLIENT_KEY,
        remote=cl.net.remote,
        listener=cl.net.listener,
        username=bytes(cl.properties.username),
        clean=cl.properties.clean,
        protocol_version=cl.properties.protocol_version,
        properties=storage.ClientProperties(
            session_expiry_interval=props.session_expiry_interval,
            authentication_method=props.authentication_method,
            authentication_data=bytes(props.authentication_data),
            request_problem_info=props.request_problem_info,
            request_response_info=props.request_response_info,
            receive_maximum=props.receive_maximum,
            topic_alias_maximum=props.topic_alias_maximum,
            user=copy.deepcopy(props.user),
            maximum_packet_size=props.maximum_packet_size,
        ),
        will=copy.deepcopy(cl.properties.will),
    )


def message_record(pk: Packet, key: str, kind: str, sent: int = 0) -> storage.Message:
    """Build the storable record of a publish packet under the given key and kind."""
    props = pk.properties
    return storage.Message(
        id=key,
        t=kind,
        origin=pk.origin,
        packet_id=pk.packet_id if kind == storage.INFLIGHT_KEY else 0,
        fixed_header=copy.copy(pk.fixed_header),
        topic_name=pk.topic_name,
        payload=bytes(pk.payload),
        sent=sent,
        created=pk.created,
        properties=storage.MessageProperties(
            payload_format=props.payload_format,
            message_expiry_interval=props.message_expiry_interval,
            content_type=props.content_type,
            response_topic=props.response_topic,
            correlation_data=bytes(props.correlation_data),
            subscription_identifier=list(props.subscription_identifier),
            topic_alias=props.topic_alias,
            user=copy.deepcopy(props.user),
        ),
    )