import pytest

from mqttpersist.storage import (
    Client,
    ClientProperties,
    ClientWill,
    DBFileNotOpenError,
    FixedHeader,
    Message,
    MessageProperties,
    Subscription,
    SystemInfo,
    UserProperty,
)

CLIENT_JSON = b'{"will":{"payload":"YWJj","user":[{"k":"k2","v":"v2"}],"topicName":"a/b/c","flag":1,"willDelayInterval":2,"qos":1,"retain":true},"properties":{"authenticationData":"dGVzdA==","user":[{"k":"k","v":"v"}],"authenticationMethod":"a","sessionExpiryInterval":2,"maximumPacketSize":120,"receiveMaximum":128,"topicAliasMaximum":256,"sessionExpiryIntervalFlag":true,"requestProblemInfo":1,"requestProblemInfoFlag":true,"requestResponseInfo":1},"username":"bW9jaGk=","id":"test","t":"client","remote":"remote","listener":"listener","protocolVersion":0,"clean":true}'
MESSAGE_JSON = b'{"properties":{"correlationData":"cg==","subscriptionIdentifier":[1],"user":[{"k":"k2","v":"v2"}],"contentType":"type","responseTopic":"a/b/r","messageExpiry":20,"topicAlias":2,"payloadFormat":1,"payloadFormatFlag":true},"payload":"cGF5bG9hZA==","t":"message","id":"id","origin":"mochi","topic_name":"topic","fixedheader":{"remaining":2,"type":3,"qos":1,"dup":true,"retain":true},"created":1569027723,"sent":1569027723,"packet_id":100}'
SUBSCRIPTION_JSON = b'{"t":"subscription","id":"id","client":"mochi","filter":"a/b/c","identifier":0,"retain_handling":0,"qos":1,"retain_as_pub":false,"no_local":false}'
SYS_INFO_JSON = b'{"version":"2.0.0","started":1,"time":0,"uptime":2,"bytes_received":3,"bytes_sent":4,"clients_connected":5,"clients_disconnected":0,"clients_maximum":7,"clients_total":0,"messages_received":10,"messages_sent":11,"retained":15,"inflight":16,"inflight_dropped":17,"subscriptions":0,"packets_received":12,"packets_sent":13,"memory_alloc":0,"threads":0,"t":"info","id":"id"}'


def make_client():
    return Client(
        id="test",
        t="client",
        remote="remote",
        listener="listener",
        username=b"mochi",
        clean=True,
        properties=ClientProperties(
            session_expiry_interval=2,
            session_expiry_interval_flag=True,
            authentication_method="a",
            authentication_data=b"test",
            request_problem_info=1,
            request_problem_info_flag=True,
            request_response_info=1,
            receive_maximum=128,
            topic_alias_maximum=256,
            user=[UserProperty(key="k", val="v")],
            maximum_packet_size=120,
        ),
        will=ClientWill(
            qos=1,
            payload=b"abc",
            topic_name="a/b/c",
            flag=1,
            retain=True,
            will_delay_interval=2,
            user=[UserProperty(key="k2", val="v2")],
        ),
    )


def make_message():
    return Message(
        t="message",
        payload=b"payload",
        fixed_header=FixedHeader(remaining=2, type=3, qos=1, dup=True, retain=True),
        id="id",
        origin="mochi",
        topic_name="topic",
        properties=MessageProperties(
            payload_format=1,
            payload_format_flag=True,
            message_expiry_interval=20,
            content_type="type",
            response_topic="a/b/r",
            correlation_data=b"r",
            subscription_identifier=[1],
            topic_alias=2,
            user=[UserProperty(key="k2", val="v2")],
        ),
        created=1569027723,
        sent=1569027723,
        packet_id=100,
    )


def make_subscription():
    return Subscription(t="subscription", id="id", client="mochi", filter="a/b/c", qos=1)


def make_sys_info():
    return SystemInfo(
        t="info",
        id="id",
        version="2.0.0",
        started=1,
        uptime=2,
        bytes_received=3,
        bytes_sent=4,
        clients_connected=5,
        clients_maximum=7,
        messages_received=10,
        messages_sent=11,
        packets_received=12,
        packets_sent=13,
        retained=15,
        inflight=16,
        inflight_dropped=17,
    )


def test_client_to_json():
    assert make_client().to_json() == CLIENT_JSON


def test_client_from_json():
    assert Client.from_json(CLIENT_JSON) == make_client()


def test_message_to_json():
    assert make_message().to_json() == MESSAGE_JSON


def test_message_from_json():
    assert Message.from_json(MESSAGE_JSON) == make_message()


def test_subscription_to_json():
    assert make_subscription().to_json() == SUBSCRIPTION_JSON


def test_subscription_from_json():
    assert Subscription.from_json(SUBSCRIPTION_JSON) == make_subscription()


def test_sys_info_to_json():
    assert make_sys_info().to_json() == SYS_INFO_JSON


def test_sys_info_from_json():
    assert SystemInfo.from_json(SYS_INFO_JSON) == make_sys_info()


@pytest.mark.parametrize("cls", [Client, Message, Subscription, SystemInfo])
def test_from_json_empty(cls):
    assert cls.from_json(b"") == cls()


@pytest.mark.parametrize("cls", [Client, Message, Subscription, SystemInfo])
def test_empty_record_round_trip(cls):
    assert cls.from_json(cls().to_json()) == cls()


def test_from_json_accepts_text():
    assert Subscription.from_json(SUBSCRIPTION_JSON.decode()) == make_subscription()


def test_html_characters_escaped():
    sub = Subscription(filter="a&b<c>")
    encoded = sub.to_json()
    assert b"a\\u0026b\\u003cc\\u003e" in encoded
    assert Subscription.from_json(encoded) == sub


def test_from_json_rejects_non_object():
    with pytest.raises(ValueError):
        Subscription.from_json(b"[1]")


def test_from_json_rejects_malformed():
    with pytest.raises(ValueError):
        Message.from_json(b"{not json")


def test_db_file_not_open_message():
    assert str(DBFileNotOpenError()) == "db file not open"