"""Prekey and identity storage scoped to one of the account's identities."""

from __future__ import annotations

import enum
import sqlite3

from .keys import (
    CorruptStoreError,
    IdentityKey,
    IdentityKeyPair,
    IdentityKind,
    MissingPreKeyError,
    NotLinkedError,
    ProtocolAddress,
)
from .schema import (
    DELETE_KYBER_PREKEY_BY_KIND_AND_ID,
    DELETE_PREKEY_BY_KIND_AND_ID,
    IDENTITY_KEY_KEYPAIR,
    IDENTITY_KEY_PNI_KEYPAIR,
    IDENTITY_KEY_PNI_REGISTRATION_ID,
    IDENTITY_KEY_REGISTRATION_ID,
    INSERT_KYBER_PREKEY_BY_KIND,
    INSERT_PREKEY_BY_KIND,
    INSERT_SIGNED_PREKEY_BY_KIND,
    SELECT_IDENTITY_VALUE,
    SELECT_KYBER_PREKEY_BY_KIND_AND_ID,
    SELECT_PEER_IDENTITY,
    SELECT_PREKEY_BY_KIND_AND_ID,
    SELECT_SIGNED_PREKEY_BY_KIND_AND_ID,
    UPSERT_PEER_IDENTITY,
)

_REGISTRATION_ID_LENGTH = 4

_ONE_TIME = "one-time"
_SIGNED = "signed"
_KYBER = "kyber"


class IdentityChange(enum.Enum):
    """What saving a peer identity did to the stored key."""

    NEW_OR_UNCHANGED = "new_or_unchanged"
    REPLACED_EXISTING = "replaced_existing"


class Direction(enum.Enum):
    """Whether an identity is checked for sending or receiving."""

    SENDING = "sending"
    RECEIVING = "receiving"


_KEYPAIR_ROWS = {
    IdentityKind.ACI: IDENTITY_KEY_KEYPAIR,
    IdentityKind.PNI: IDENTITY_KEY_PNI_KEYPAIR,
}

_REGISTRATION_ID_ROWS = {
    IdentityKind.ACI: IDENTITY_KEY_REGISTRATION_ID,
    IdentityKind.PNI: IDENTITY_KEY_PNI_REGISTRATION_ID,
}


def _identity_row(connection: sqlite3.Connection, row_name: str) -> bytes:
    row = connection.execute(SELECT_IDENTITY_VALUE, (row_name,)).fetchone()
    if row is None:
        raise NotLinkedError(f"{row_name} not persisted")
    return bytes(row[0])


def _get_identity_key_pair(connection: sqlite3.Connection, kind: IdentityKind) -> IdentityKeyPair:
    return IdentityKeyPair.deserialize(_identity_row(connection, _KEYPAIR_ROWS[kind]))


def _get_local_registration_id(connection: sqlite3.Connection, kind: IdentityKind) -> int:
    row_name = _REGISTRATION_ID_ROWS[kind]
    value = _identity_row(connection, row_name)
    if len(value) != _REGISTRATION_ID_LENGTH:
        raise CorruptStoreError(f"{row_name} length")
    return int.from_bytes(value, "big")


def _save_identity(
    connection: sqlite3.Connection, address: ProtocolAddress, identity: IdentityKey
) -> IdentityChange:
    key = str(address)
    new_key = identity.serialize()
    existing = connection.execute(SELECT_PEER_IDENTITY, (key,)).fetchone()
    connection.execute(UPSERT_PEER_IDENTITY, (key, new_key))
    if existing is not None and bytes(existing[0]) != new_key:
        return IdentityChange.REPLACED_EXISTING
    return IdentityChange.NEW_OR_UNCHANGED


def _is_trusted_identity(
    connection: sqlite3.Connection, address: ProtocolAddress, identity: IdentityKey
) -> bool:
    row = connection.execute(SELECT_PEER_IDENTITY, (str(address),)).fetchone()
    if row is None:
        return True
    return bytes(row[0]) == identity.serialize()


def _get_identity(connection: sqlite3.Connection, address: ProtocolAddress) -> IdentityKey | None:
    row = connection.execute(SELECT_PEER_IDENTITY, (str(address),)).fetchone()
    return None if row is None else IdentityKey.decode(bytes(row[0]))


def _fetch_record(
    connection: sqlite3.Connection, statement: str, kind: IdentityKind, record_id: int, label: str
) -> bytes:
    row = connection.execute(statement, (kind.as_db(), int(record_id))).fetchone()
    if row is None:
        raise MissingPreKeyError(label, int(record_id))
    return bytes(row[0])


def _write_record(
    connection: sqlite3.Connection, statement: str, kind: IdentityKind, record_id: int, record: bytes
) -> None:
    connection.execute(statement, (kind.as_db(), int(record_id), bytes(record)))


def _delete_record(
    connection: sqlite3.Connection, statement: str, kind: IdentityKind, record_id: int
) -> None:
    connection.execute(statement, (kind.as_db(), int(record_id)))


class IdentityScopedStore:
    """Identity, prekey, signed prekey and Kyber prekey storage for one identity.

    Every prekey query filters on the identity kind, so ACI and PNI records
    with the same id live side by side. Missing identity rows surface only
    when a method needs them.
    """

    def __init__(self, connection: sqlite3.Connection, identity_kind: IdentityKind):
        self._connection = connection
        self.identity_kind = identity_kind

    def __repr__(self) -> str:
        return f"IdentityScopedStore(identity_kind={self.identity_kind!r})"

    def get_identity_key_pair(self) -> IdentityKeyPair:
        return _get_identity_key_pair(self._connection, self.identity_kind)

    def get_local_registration_id(self) -> int:
        return _get_local_registration_id(self._connection, self.identity_kind)

    def save_identity(self, address: ProtocolAddress, identity: IdentityKey) -> IdentityChange:
        return _save_identity(self._connection, address, identity)

    def is_trusted_identity(
        self, address: ProtocolAddress, identity: IdentityKey, direction: Direction
    ) -> bool:
        """Trust on first use: unknown peers are trusted, known ones must match."""
        return _is_trusted_identity(self._connection, address, identity)

    def get_identity(self, address: ProtocolAddress) -> IdentityKey | None:
        return _get_identity(self._connection, address)

    def get_pre_key(self, prekey_id: int) -> bytes:
        return _fetch_record(
            self._connection, SELECT_PREKEY_BY_KIND_AND_ID, self.identity_kind, prekey_id, _ONE_TIME
        )

    def save_pre_key(self, prekey_id: int, record: bytes) -> None:
        _write_record(self._connection, INSERT_PREKEY_BY_KIND, self.identity_kind, prekey_id, record)

    def remove_pre_key(self, prekey_id: int) -> None:
        _delete_record(self._connection, DELETE_PREKEY_BY_KIND_AND_ID, self.identity_kind, prekey_id)

    def get_signed_pre_key(self, signed_prekey_id: int) -> bytes:
        return _fetch_record(
            self._connection,
            SELECT_SIGNED_PREKEY_BY_KIND_AND_ID,
            self.identity_kind,
            signed_prekey_id,
            _SIGNED,
        )

    def save_signed_pre_key(self, signed_prekey_id: int, record: bytes) -> None:
        _write_record(
            self._connection, INSERT_SIGNED_PREKEY_BY_KIND, self.identity_kind, signed_prekey_id, record
        )

    def get_kyber_pre_key(self, kyber_prekey_id: int) -> bytes:
        return _fetch_record(
            self._connection,
            SELECT_KYBER_PREKEY_BY_KIND_AND_ID,
            self.identity_kind,
            kyber_prekey_id,
            _KYBER,
        )

    def save_kyber_pre_key(self, kyber_prekey_id: int, record: bytes) -> None:
        _write_record(
            self._connection, INSERT_KYBER_PREKEY_BY_KIND, self.identity_kind, kyber_prekey_id, record
        )

    def mark_kyber_pre_key_used(self, kyber_prekey_id: int, ec_prekey_id: int, base_key: object) -> None:
        """Every Kyber prekey is treated as one-time, so using it deletes it."""
        _delete_record(
            self._connection, DELETE_KYBER_PREKEY_BY_KIND_AND_ID, self.identity_kind, kyber_prekey_id
        )