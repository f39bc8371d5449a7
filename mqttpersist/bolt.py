"""A persistent storage hook backed by a single-file SQLite database."""

from __future__ import annotations

import dataclasses
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, TypeVar

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

DEFAULT_DB_FILE = "bolt.db"
DEFAULT_TIMEOUT = 0.25  # seconds to wait for a lock on the file
_FILE_MODE = 0o600

_R = TypeVar("_R", storage.Client, storage.Message, storage.Subscription, storage.SystemInfo)

_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS records ("
    "kind TEXT NOT NULL, id TEXT NOT NULL, t TEXT NOT NULL, data BLOB NOT NULL, "
    "PRIMARY KEY (kind, id))"
)

_PROVIDED = frozenset(
    {
        HookEvent.ON_SESSION_ESTABLISHED,
        HookEvent.ON_DISCONNECT,
        HookEvent.ON_SUBSCRIBED,
        HookEvent.ON_UNSUBSCRIBED,
        HookEvent.ON_RETAIN_MESSAGE,
        HookEvent.ON_WILL_SENT,
        HookEvent.ON_QOS_PUBLISH,
        HookEvent.ON_QOS_COMPLETE,
        HookEvent.ON_QOS_DROPPED,
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


def client_key(cl: MqttClient) -> str:
    """Return the primary key for a client."""
    return cl.id


def subscription_key(cl: MqttClient, filter: str) -> str:
    """Return the primary key for a subscription."""
    return f"{storage.SUBSCRIPTION_KEY}_{cl.id}:{filter}"


def retained_key(topic: str) -> str:
    """Return the primary key for a retained message."""
    return f"{storage.RETAINED_KEY}_{topic}"


def inflight_key(cl: MqttClient, pk: Packet) -> str:
    """Return the primary key for an inflight message."""
    return f"{storage.INFLIGHT_KEY}_{cl.id}:{pk.format_id()}"


def sys_info_key() -> str:
    """Return the primary key for system info."""
    return storage.SYS_INFO_KEY


class _NotFoundError(KeyError):
    """A record to delete was not in the store."""


@dataclass
class BoltOptions:
    """Where the database file lives and the settings used to open it."""

    options: dict[str, Any] | None = None
    path: str = ""


class BoltHook(HookBase):
    """Persists clients, subscriptions, retained and inflight messages and system info."""

    def __init__(self) -> None:
        super().__init__()
        self.config: BoltOptions | None = None
        self.db: sqlite3.Connection | None = None

    def id(self) -> str:
        """Return the identifier of the hook."""
        return "bolt-db"

    def provides(self, b: int) -> bool:
        """Report whether the hook handles the given event."""
        return b in _PROVIDED

    def init(self, config: Any) -> None:
        """Open the database file at the configured path, or the default one."""
        if config is not None and not isinstance(config, BoltOptions):
            raise InvalidConfigTypeError()
        self.config = config if config is not None else BoltOptions()
        if self.config.options is None:
            self.config.options = {"timeout": DEFAULT_TIMEOUT}
        if not self.config.path:
            self.config.path = DEFAULT_DB_FILE

        existed = os.path.exists(self.config.path)
        db = sqlite3.connect(self.config.path, **self.config.options)
        try:
            with db:
                db.execute(_SCHEMA)
        except sqlite3.Error:
            db.close()
            raise
        if not existed and os.path.isfile(self.config.path):
            os.chmod(self.config.path, _FILE_MODE)
        self.db = db

    def stop(self) -> None:
        """Close the database."""
        if self.db is not None:
            self.db.close()

    # storage primitives

    def _ready(self) -> bool:
        if self.db is None:
            self.log.error("%s", storage.DBFileNotOpenError())
            return False
        return True

    @contextmanager
    def _report(self, message: str, data: Any, ignore_missing: bool = False) -> Iterator[None]:
        try:
            yield
        except _NotFoundError as exc:
            if not ignore_missing:
                self.log.error("%s: not found: %s", message, exc, extra={"data": data})
        except sqlite3.Error as exc:
            self.log.error("%s: %s", message, exc, extra={"data": data})

    def _save(self, record: Any) -> None:
        assert self.db is not None
        with self.db:
            self.db.execute(
                "INSERT OR REPLACE INTO records (kind, id, t, data) VALUES (?, ?, ?, ?)",
                (type(record).__name__, record.id, record.t, record.to_json()),
            )

    def _delete(self, cls: type, key: str) -> None:
        assert self.db is not None
        with self.db:
            cursor = self.db.execute(
                "DELETE FROM records WHERE kind = ? AND id = ?", (cls.__name__, key)
            )
        if cursor.rowcount == 0:
            raise _NotFoundError(key)

    def _find(self, cls: type[_R], kind: str) -> list[_R]:
        assert self.db is not None
        rows = self.db.execute(
            "SELECT data FROM records WHERE kind = ? AND t = ? ORDER BY id",
            (cls.__name__, kind),
        ).fetchall()
        return [cls.from_json(bytes(data)) for (data,) in rows]

    def _one(self, cls: type[_R], key: str) -> _R | None:
        assert self.db is not None
        row = self.db.execute(
            "SELECT data FROM records WHERE kind = ? AND id = ?", (cls.__name__, key)
        ).fetchone()
        return None if row is None else cls.from_json(bytes(row[0]))

    def _update_client(self, cl: MqttClient) -> None:
        if not self._ready():
            return
        record = client_record(cl)
        with self._report("failed to save client data", record):
            self._save(record)

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
        with self._report("failed to delete client", client_key(cl), ignore_missing=True):
            self._delete(storage.Client, client_key(cl))

    def on_subscribed(self, cl: MqttClient, pk: Packet, reason_codes: bytes | list[int]) -> None:
        """Store one or more client subscriptions."""
        if not self._ready():
            return
        for sub, code in zip(pk.filters, reason_codes):
            record = storage.Subscription(
                id=subscription_key(cl, sub.filter),
                t=storage.SUBSCRIPTION_KEY,
                client=cl.id,
                filter=sub.filter,
                qos=code,
            )
            with self._report("failed to save subscription data", record):
                self._save(record)

    def on_unsubscribed(self, cl: MqttClient, pk: Packet) -> None:
        """Remove one or more client subscriptions."""
        if not self._ready():
            return
        for sub in pk.filters:
            key = subscription_key(cl, sub.filter)
            with self._report("failed to delete client", key):
                self._delete(storage.Subscription, key)

    def on_retain_message(self, cl: MqttClient, pk: Packet, r: int) -> None:
        """Store a retained message, or remove it when r is -1."""
        if not self._ready():
            return
        key = retained_key(pk.topic_name)
        if r == -1:
            with self._report("failed to delete retained publish", key):
                self._delete(storage.Message, key)
            return
        record = message_record(pk, key, storage.RETAINED_KEY)
        with self._report("failed to save retained publish data", record):
            self._save(record)

    def on_qos_publish(self, cl: MqttClient, pk: Packet, sent: int, resends: int) -> None:
        """Store or update an inflight message."""
        if not self._ready():
            return
        record = dataclasses.replace(
            message_record(pk, inflight_key(cl, pk), storage.INFLIGHT_KEY, sent), packet_id=0
        )
        with self._report("failed to save qos inflight data", record):
            self._save(record)

    def on_qos_complete(self, cl: MqttClient, pk: Packet) -> None:
        """Remove a resolved inflight message."""
        if not self._ready():
            return
        key = inflight_key(cl, pk)
        with self._report("failed to delete inflight data", key):
            self._delete(storage.Message, key)

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
        with self._report("failed to save $SYS data", record):
            self._save(record)

    def on_expire_inflights(self, cl: MqttClient, expiry: int) -> None:
        """Remove inflight messages created before expiry or with no creation time."""
        if not self._ready():
            return
        try:
            messages = self._find(storage.Message, storage.INFLIGHT_KEY)
        except sqlite3.Error as exc:
            self.log.error("failed to read inflight data: %s", exc, extra={"client": cl.id})
            return
        for message in messages:
            if message.created < expiry or message.created == 0:
                try:
                    self._delete(storage.Message, message.id)
                except _NotFoundError:
                    continue
                except sqlite3.Error as exc:
                    self.log.error(
                        "failed to clear inflight data: %s", exc, extra={"client": cl.id}
                    )
                    return

    def on_retained_expired(self, filter: str) -> None:
        """Remove an expired retained message."""
        if not self._ready():
            return
        key = retained_key(filter)
        with self._report("failed to delete retained publish", key):
            self._delete(storage.Message, key)

    def on_client_expired(self, cl: MqttClient) -> None:
        """Remove an expired client."""
        if not self._ready():
            return
        with self._report("failed to delete expired client", client_key(cl), ignore_missing=True):
            self._delete(storage.Client, client_key(cl))

    # restoration

    def stored_clients(self) -> list[storage.Client]:
        """Return all stored clients."""
        if not self._ready():
            return []
        return self._find(storage.Client, storage.CLIENT_KEY)

    def stored_subscriptions(self) -> list[storage.Subscription]:
        """Return all stored subscriptions."""
        if not self._ready():
            return []
        return self._find(storage.Subscription, storage.SUBSCRIPTION_KEY)

    def stored_retained_messages(self) -> list[storage.Message]:
        """Return all stored retained messages."""
        if not self._ready():
            return []
        return self._find(storage.Message, storage.RETAINED_KEY)

    def stored_inflight_messages(self) -> list[storage.Message]:
        """Return all stored inflight messages."""
        if not self._ready():
            return []
        return self._find(storage.Message, storage.INFLIGHT_KEY)

    def stored_sys_info(self) -> storage.SystemInfo:
        """Return the stored system info, or an empty record."""
        if not self._ready():
            return storage.SystemInfo()
        found = self._one(storage.SystemInfo, storage.SYS_INFO_KEY)
        return found if found is not None else storage.SystemInfo()