"""Storage views that run every query inside one shared transaction."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Protocol

from .keys import IdentityKey, IdentityKeyPair, IdentityKind, ProtocolAddress, StoreError
from .schema import (
    DELETE_KYBER_PREKEY_BY_KIND_AND_ID,
    DELETE_PREKEY_BY_KIND_AND_ID,
    INSERT_KYBER_PREKEY_BY_KIND,
    INSERT_PREKEY_BY_KIND,
    INSERT_SIGNED_PREKEY_BY_KIND,
    SELECT_KYBER_PREKEY_BY_KIND_AND_ID,
    SELECT_PREKEY_BY_KIND_AND_ID,
    SELECT_SESSION,
    SELECT_SIGNED_PREKEY_BY_KIND_AND_ID,
    UPSERT_SESSION,
)
from .scoped import (
    _KYBER,
    _ONE_TIME,
    _SIGNED,
    Direction,
    IdentityChange,
    _delete_record,
    _fetch_record,
    _get_identity,
    _get_identity_key_pair,
    _get_local_registration_id,
    _is_trusted_identity,
    _save_identity,
    _write_record,
)

_DRAINED = "TxStore: transaction already taken or rolled back"


class _Handle(Protocol):
    def locked(self) -> contextmanager: ...


class _SharedTransaction:
    """An open transaction on one connection, shared by several views.

    Each query holds the lock only while it runs. Once the transaction is
    finished every further use raises StoreError.
    """

    def __init__(self, connection: sqlite3.Connection):
        connection.execute("BEGIN")
        self._connection: sqlite3.Connection | None = connection
        self._lock = threading.RLock()

    @property
    def active(self) -> bool:
        return self._connection is not None

    @contextmanager
    def locked(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._connection is None:
                raise StoreError(_DRAINED)
            yield self._connection

    def finish(self, commit: bool) -> None:
        """Commit or roll back; a second call raises StoreError."""
        with self._lock:
            connection = self._connection
            if connection is None:
                raise StoreError(_DRAINED)
            self._connection = None
            connection.execute("COMMIT" if commit else "ROLLBACK")


class TxSessionStore:
    """Session records read and written inside the shared transaction."""

    def __init__(self, handle: _Handle):
        self._handle = handle

    def load_session(self, address: ProtocolAddress) -> bytes | None:
        with self._handle.locked() as connection:
            row = connection.execute(SELECT_SESSION, (str(address),)).fetchone()
        return None if row is None else bytes(row[0])

    def store_session(self, address: ProtocolAddress, record: bytes) -> None:
        with self._handle.locked() as connection:
            connection.execute(UPSERT_SESSION, (str(address), bytes(record)))


class TxIdentityStore:
    """Identity keys for one identity kind, inside the shared transaction."""

    def __init__(self, handle: _Handle, identity_kind: IdentityKind):
        self._handle = handle
        self.identity_kind = identity_kind

    def get_identity_key_pair(self) -> IdentityKeyPair:
        with self._handle.locked() as connection:
            return _get_identity_key_pair(connection, self.identity_kind)

    def get_local_registration_id(self) -> int:
        with self._handle.locked() as connection:
            return _get_local_registration_id(connection, self.identity_kind)

    def save_identity(self, address: ProtocolAddress, identity: IdentityKey) -> IdentityChange:
        with self._handle.locked() as connection:
            return _save_identity(connection, address, identity)

    def is_trusted_identity(
        self, address: ProtocolAddress, identity: IdentityKey, direction: Direction
    ) -> bool:
        with self._handle.locked() as connection:
            return _is_trusted_identity(connection, address, identity)

    def get_identity(self, address: ProtocolAddress) -> IdentityKey | None:
        with self._handle.locked() as connection:
            return _get_identity(connection, address)


class TxPreKeyStore:
    """One-time prekeys for one identity kind, inside the shared transaction."""

    def __init__(self, handle: _Handle, identity_kind: IdentityKind):
        self._handle = handle
        self.identity_kind = identity_kind

    def get_pre_key(self, prekey_id: int) -> bytes:
        with self._handle.locked() as connection:
            return _fetch_record(
                connection, SELECT_PREKEY_BY_KIND_AND_ID, self.identity_kind, prekey_id, _ONE_TIME
            )

    def save_pre_key(self, prekey_id: int, record: bytes) -> None:
        with self._handle.locked() as connection:
            _write_record(connection, INSERT_PREKEY_BY_KIND, self.identity_kind, prekey_id, record)

    def remove_pre_key(self, prekey_id: int) -> None:
        with self._handle.locked() as connection:
            _delete_record(connection, DELETE_PREKEY_BY_KIND_AND_ID, self.identity_kind, prekey_id)


class TxSignedPreKeyStore:
    """Signed prekeys for one identity kind, inside the shared transaction."""

    def __init__(self, handle: _Handle, identity_kind: IdentityKind):
        self._handle = handle
        self.identity_kind = identity_kind

    def get_signed_pre_key(self, signed_prekey_id: int) -> bytes:
        with self._handle.locked() as connection:
            return _fetch_record(
                connection,
                SELECT_SIGNED_PREKEY_BY_KIND_AND_ID,
                self.identity_kind,
                signed_prekey_id,
                _SIGNED,
            )

    def save_signed_pre_key(self, signed_prekey_id: int, record: bytes) -> None:
        with self._handle.locked() as connection:
            _write_record(
                connection, INSERT_SIGNED_PREKEY_BY_KIND, self.identity_kind, signed_prekey_id, record
            )


class TxKyberPreKeyStore:
    """Kyber prekeys for one identity kind, inside the shared transaction."""

    def __init__(self, handle: _Handle, identity_kind: IdentityKind):
        self._handle = handle
        self.identity_kind = identity_kind

    def get_kyber_pre_key(self, kyber_prekey_id: int) -> bytes:
        with self._handle.locked() as connection:
            return _fetch_record(
                connection,
                SELECT_KYBER_PREKEY_BY_KIND_AND_ID,
                self.identity_kind,
                kyber_prekey_id,
                _KYBER,
            )

    def save_kyber_pre_key(self, kyber_prekey_id: int, record: bytes) -> None:
        with self._handle.locked() as connection:
            _write_record(
                connection, INSERT_KYBER_PREKEY_BY_KIND, self.identity_kind, kyber_prekey_id, record
            )

    def mark_kyber_pre_key_used(self, kyber_prekey_id: int, ec_prekey_id: int, base_key: object) -> None:
        """Every Kyber prekey is treated as one-time, so using it deletes it."""
        with self._handle.locked() as connection:
            _delete_record(
                connection, DELETE_KYBER_PREKEY_BY_KIND_AND_ID, self.identity_kind, kyber_prekey_id
            )