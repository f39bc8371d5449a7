import logging

from mqttpersist import storage
from mqttpersist.base import (
    ClientConnection,
    ClientState,
    HookBase,
    HookEvent,
    InvalidConfigTypeError,
    MqttClient,
    Packet,
    PacketProperties,
    PacketType,
    client_record,
    message_record,
)


def make_client():
    return MqttClient(
        id="test",
        net=ClientConnection(remote="test.addr", listener="listener"),
        properties=ClientState(
            username=b"username",
            clean=False,
            protocol_version=5,
            will=storage.ClientWill(flag=1, topic_name="a/b/c", payload=b"bye"),
            props=PacketProperties(
                session_expiry_interval=30,
                receive_maximum=10,
                user=[storage.UserProperty(key="k", val="v")],
            ),
        ),
    )


def make_publish():
    return Packet(
        fixed_header=storage.FixedHeader(type=PacketType.PUBLISH, qos=2, retain=True),
        packet_id=7,
        topic_name="a/b/c",
        payload=b"hello",
        origin="origin-client",
        created=1569027723,
        properties=PacketProperties(content_type="type", subscription_identifier=[1], topic_alias=2),
    )


def test_format_id():
    assert Packet(packet_id=1).format_id() == "1"


def test_message_record_keeps_publish_type():
    rec = message_record(make_publish(), "key", storage.INFLIGHT_KEY, 0)
    assert rec.fixed_header.type == 3
    assert storage.Message.from_json(rec.to_json()).fixed_header.type == 3


def test_hook_base_defaults():
    hook = HookBase()
    assert hook.id() == "base"
    assert all(not hook.provides(event) for event in HookEvent)


def test_hook_base_set_opts():
    hook = HookBase()
    log = logging.getLogger("tests.base")
    hook.set_opts(log, None)
    assert hook.log is log
    assert hook.opts is None


def test_invalid_config_type_error_message():
    assert str(InvalidConfigTypeError()) == "invalid config type provided"


def test_client_record_fields():
    cl = make_client()
    rec = client_record(cl)
    assert rec.id == cl.id
    assert rec.t == storage.CLIENT_KEY
    assert rec.remote == cl.net.remote
    assert rec.listener == cl.net.listener
    assert rec.username == cl.properties.username
    assert rec.clean == cl.properties.clean
    assert rec.protocol_version == cl.properties.protocol_version
    assert rec.properties.session_expiry_interval == cl.properties.props.session_expiry_interval
    assert rec.properties.receive_maximum == cl.properties.props.receive_maximum
    assert rec.properties.user == cl.properties.props.user


def test_client_record_copies_will():
    cl = make_client()
    rec = client_record(cl)
    assert rec.will == cl.properties.will
    cl.properties.will.flag = 0
    assert rec.will.flag == 1


def test_client_record_round_trips_json():
    rec = client_record(make_client())
    assert storage.Client.from_json(rec.to_json()) == rec


def test_message_record_inflight():
    pk = make_publish()
    rec = message_record(pk, "key", storage.INFLIGHT_KEY, 1569027723)
    assert rec.id == "key"
    assert rec.t == storage.INFLIGHT_KEY
    assert rec.packet_id == pk.packet_id
    assert rec.sent == 1569027723
    assert rec.created == pk.created
    assert rec.topic_name == pk.topic_name
    assert rec.payload == pk.payload
    assert rec.origin == pk.origin
    assert rec.fixed_header == pk.fixed_header
    assert rec.properties.content_type == pk.properties.content_type
    assert rec.properties.subscription_identifier == pk.properties.subscription_identifier


def test_message_record_retained_has_no_packet_id():
    pk = make_publish()
    rec = message_record(pk, "key", storage.RETAINED_KEY)
    assert rec.packet_id == 0
    assert rec.sent == 0
    assert rec.fixed_header.retain is True