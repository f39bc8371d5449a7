# mqttpersist

Hooks that an MQTT broker calls during its lifetime. They keep sessions,
subscriptions, retained messages, inflight messages and `$SYS` information
in a persistent store, or log what the broker is doing.

## Hooks

| Hook                               | Backend                    | ID         |
|------------------------------------|----------------------------|------------|
| `mqttpersist.bolt.BoltHook`        | single SQLite database file | `bolt-db`  |
| `mqttpersist.redisstore.RedisHook` | Redis hashes               | `redis-db` |
| `mqttpersist.debug.DebugHook`      | logging only               | `debug`    |

All of them derive from `mqttpersist.base.HookBase`. A broker uses a hook in
this order:

1. `set_opts(log, opts)` gives the hook a `logging.Logger` and a `HookOptions`
   (or `None`).
2. `init(config)` opens the store. A config object of the wrong type raises
   `InvalidConfigTypeError`; `None` selects the defaults.
3. The broker calls the `on_*` event methods as things happen.
4. It calls the `stored_*` methods to restore state on start-up.
5. `stop()` closes the store.

`provides(event)` reports whether the hook handles a given `HookEvent`. The
storage hooks provide the session, subscription, retain, qos, will, expiry,
`$SYS` and `stored_*` events; the debug hook provides every event.

### BoltHook

`BoltOptions(path=..., options=...)` names the database file (default
`bolt.db`) and the keyword arguments passed to `sqlite3.connect` (default
`{"timeout": 0.25}`). A newly created file gets mode `0600`. Event methods log
storage errors through the hook's logger instead of raising them; the
`stored_*` methods return records ordered by their id.

### RedisHook

`RedisOptions(h_prefix=..., options=...)` sets the prefix of the hash names
(default `mochi-`, see `h_key()`) and the keyword arguments passed to
`redis.Redis` (default host `localhost`, port `6379`). `init` pings the
service and raises `redis.ConnectionError` if it does not answer. After
`stop()`, event methods log errors and the `stored_*` methods raise
`redis.ConnectionError`.

### DebugHook

`DebugOptions` has three switches, all off by default: `show_packet_data`,
`show_pings` and `show_passwords`. The hook logs at debug level, with the
details of each packet (from `packet_meta()`) in the record's `m` attribute.
Its `stored_*` methods return empty results.

## Install

```
pip install mqttpersist
```

## Example

```python
import logging

from mqttpersist.base import ClientConnection, MqttClient, Packet
from mqttpersist.bolt import BoltHook, BoltOptions

hook = BoltHook()
hook.set_opts(logging.getLogger("broker"), None)
hook.init(BoltOptions(path="/tmp/broker-store.db"))

client = MqttClient(id="sensor-1", net=ClientConnection(remote="10.0.0.2:5123", listener="t1"))
hook.on_session_established(client, Packet())

for stored in hook.stored_clients():
    print(stored.id, stored.remote)

hook.stop()
```

## Records

`mqttpersist.storage` defines the records that are stored: `Client`,
`Message`, `Subscription` and `SystemInfo`. Each has `to_json()`, which returns
compact JSON bytes with byte fields in base64, and a `from_json(data)` class
method. Given empty input, `from_json` returns an empty record.
`mqttpersist.base.client_record()` and `message_record()` build these records
from a `MqttClient` or a `Packet`.

## What is not included

This package holds hooks only. It has no broker, no network listener and no
command line: something else has to call the hooks. Local persistence is
limited to the single SQLite file of `BoltHook`; there is no other on-disk
key/value store.

## Tests

```
pip install -e .[test]
pytest
```