"""SQLite-backed identity store for a linked device."""

from __future__ import annotations

import os
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager

from .keys import (
    CorruptStoreError,
    Identity,
    IdentityKeyPair,
    IdentityKind,
    LinkStatus,
    NotLinkedError,
)
from .schema import (
    DELETE_IDENTITY_VALUE,
    IDENTITY_KEY_ACCOUNT_NUMBER,
    IDENTITY_KEY_ACI,
    IDENTITY_KEY_DEVICE_ID,
    IDENTITY_KEY_KEYPAIR,
    IDENTITY_KEY_LINK_STATUS,
    IDENTITY_KEY_PASSWORD,
    IDENTITY_KEY_PNI,
    IDENTITY_KEY_PNI_KEYPAIR,
    IDENTITY_KEY_PNI_REGISTRATION_ID,
    IDENTITY_KEY_PROFILE_KEY,
    IDENTITY_KEY_PROVISIONING_CODE,
    IDENTITY_KEY_REGISTRATION_ID,
    IDENTITY_KEY_SENDER_CERTIFICATE,
    IDENTITY_KEY_SENDER_CERTIFICATE_EXPIRY_MS,
    MEMORY,
    SELECT_IDENTITY_VALUE,
    UPSERT_IDENTITY_VALUE,
    connect,
)
from .scoped import IdentityScopedStore
from .sessions import SessionStore
from .tx import TxStore

_UPSERT_PEER_PROFILE_KEY = (
    "INSERT OR REPLACE INTO peer_profile_keys (aci, profile_key, updated_ms) VALUES (?, ?, ?)"
)
_SELECT_PEER_PROFILE_KEY = "SELECT profile_key FROM peer_profile_keys WHERE aci = ?"


def _encode_unsigned(value: int, size: int, name: str) -> bytes:
    if not 0 <= value < 1 << (8 * size):
        raise ValueError(f"{name} {value} does not fit in {size * 8} unsigned bits")
    return int(value).to_bytes(size, "big")


def _decode_unsigned(data: bytes, size: int, name: str) -> int:
    if len(data) != size:
        raise CorruptStoreError(f"{name} length")
    return int.from_bytes(data, "big")


def _decode_text(data: bytes, name: str) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as error:
        raise CorruptStoreError(f"{name} utf8: {error}") from error


def _now_millis() -> int:
    return max(0, int(time.time() * 1000))


class SqliteStore:
    """Account identity, peer data and protocol storage in one SQLite database."""

    def __init__(self, connection: sqlite3.Connection):
        self._connection = connection

    @classmethod
    def open(cls, path: str | os.PathLike[str]) -> SqliteStore:
        """Open or create the database at ``path`` and bring its schema up to date."""
        return cls(connect(path))

    @classmethod
    def open_in_memory(cls) -> SqliteStore:
        """A fresh store that lives only as long as the object."""
        return cls(connect(MEMORY))

    def close(self) -> None:
        self._connection.close()

    def __enter__(self) -> SqliteStore:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def begin(self) -> TxStore:
        """Start a transaction whose views commit or roll back together."""
        return TxStore(self._connection)

    @contextmanager
    def _atomic(self) -> Iterator[sqlite3.Connection]:
        self._connection.execute("BEGIN")
        try:
            yield self._connection
        except BaseException:
            self._connection.execute("ROLLBACK")
            raise
        self._connection.execute("COMMIT")

    def _get(self, key: str) -> bytes | None:
        row = self._connection.execute(SELECT_IDENTITY_VALUE, (key,)).fetchone()
        return None if row is None else bytes(row[0])

    def _put(self, key: str, value: bytes) -> None:
        self._connection.execute(UPSERT_IDENTITY_VALUE, (key, bytes(value)))

    def _get_text(self, key: str) -> str | None:
        value = self._get(key)
        return None if value is None else _decode_text(value, key)

    def _require(self, key: str) -> bytes:
        value = self._get(key)
        if value is None:
            raise CorruptStoreError(f"{key} missing")
        return value

    def save_identity_bundle(
        self,
        identity_keypair: IdentityKeyPair,
        registration_id: int,
        account_number: str,
        device_id: int,
        link_status: LinkStatus,
    ) -> None:
        """Write the five identity rows atomically."""
        rows = [
            (IDENTITY_KEY_KEYPAIR, identity_keypair.serialize()),
            (IDENTITY_KEY_REGISTRATION_ID, _encode_unsigned(registration_id, 4, "registration_id")),
            (IDENTITY_KEY_ACCOUNT_NUMBER, account_number.encode("utf-8")),
            (IDENTITY_KEY_DEVICE_ID, _encode_unsigned(device_id, 4, "device_id")),
            (IDENTITY_KEY_LINK_STATUS, link_status.as_db().encode("utf-8")),
        ]
        with self._atomic() as connection:
            connection.executemany(UPSERT_IDENTITY_VALUE, rows)

    def load_identity(self) -> Identity:
        """Load the identity bundle with whatever link status it has.

        Raises NotLinkedError when no keypair is stored and
        CorruptStoreError when any other row is missing or malformed.
        """
        keypair_bytes = self._get(IDENTITY_KEY_KEYPAIR)
        if keypair_bytes is None:
            raise NotLinkedError()
        identity_keypair = IdentityKeyPair.deserialize(keypair_bytes)
        registration_id = _decode_unsigned(
            self._require(IDENTITY_KEY_REGISTRATION_ID), 4, IDENTITY_KEY_REGISTRATION_ID
        )
        account_number = _decode_text(
            self._require(IDENTITY_KEY_ACCOUNT_NUMBER), IDENTITY_KEY_ACCOUNT_NUMBER
        )
        device_id = _decode_unsigned(self._require(IDENTITY_KEY_DEVICE_ID), 4, IDENTITY_KEY_DEVICE_ID)
        status_text = _decode_text(self._require(IDENTITY_KEY_LINK_STATUS), IDENTITY_KEY_LINK_STATUS)
        try:
            link_status = LinkStatus.from_db(status_text)
        except ValueError:
            raise CorruptStoreError(f"link_status value {status_text}") from None
        return Identity(
            identity_keypair=identity_keypair,
            registration_id=registration_id,
            account_number=account_number,
            device_id=device_id,
            link_status=link_status,
        )

    def set_link_status(self, status: LinkStatus) -> None:
        self._put(IDENTITY_KEY_LINK_STATUS, status.as_db().encode("utf-8"))

    def set_password(self, password: str) -> None:
        """Store the device password minted at link time."""
        self._put(IDENTITY_KEY_PASSWORD, password.encode("utf-8"))

    def get_password(self) -> str | None:
        return self._get_text(IDENTITY_KEY_PASSWORD)

    def set_device_id(self, device_id: int) -> None:
        """Overwrite the device id once the server has assigned one."""
        self._put(IDENTITY_KEY_DEVICE_ID, _encode_unsigned(device_id, 4, "device_id"))

    def set_aci(self, aci: str) -> None:
        self._put(IDENTITY_KEY_ACI, aci.encode("utf-8"))

    def get_aci(self) -> str | None:
        return self._get_text(IDENTITY_KEY_ACI)

    def set_pni(self, pni: str) -> None:
        self._put(IDENTITY_KEY_PNI, pni.encode("utf-8"))

    def get_pni(self) -> str | None:
        return self._get_text(IDENTITY_KEY_PNI)

    def set_profile_key(self, profile_key: bytes) -> None:
        self._put(IDENTITY_KEY_PROFILE_KEY, profile_key)

    def get_profile_key(self) -> bytes | None:
        return self._get(IDENTITY_KEY_PROFILE_KEY)

    def set_peer_profile_key(self, aci: str, profile_key: bytes) -> None:
        """Store a peer's latest profile key, replacing any earlier one."""
        self._connection.execute(_UPSERT_PEER_PROFILE_KEY, (aci, bytes(profile_key), _now_millis()))

    def get_peer_profile_key(self, aci: str) -> bytes | None:
        row = self._connection.execute(_SELECT_PEER_PROFILE_KEY, (aci,)).fetchone()
        return None if row is None else bytes(row[0])

    def set_sender_certificate(self, encoded: bytes, expiry_ms: int) -> None:
        """Cache the encoded sender certificate and its expiry in epoch ms."""
        expiry = _encode_unsigned(expiry_ms, 8, "sender_certificate_expiry_ms")
        self._put(IDENTITY_KEY_SENDER_CERTIFICATE, encoded)
        self._put(IDENTITY_KEY_SENDER_CERTIFICATE_EXPIRY_MS, expiry)

    def get_sender_certificate(self) -> tuple[bytes, int] | None:
        """The cached certificate and expiry, or None if either row is missing."""
        encoded = self._get(IDENTITY_KEY_SENDER_CERTIFICATE)
        if encoded is None:
            return None
        expiry = self._get(IDENTITY_KEY_SENDER_CERTIFICATE_EXPIRY_MS)
        if expiry is None:
            return None
        return encoded, _decode_unsigned(expiry, 8, IDENTITY_KEY_SENDER_CERTIFICATE_EXPIRY_MS)

    def set_provisioning_code(self, code: str) -> None:
        self._put(IDENTITY_KEY_PROVISIONING_CODE, code.encode("utf-8"))

    def get_provisioning_code(self) -> str | None:
        return self._get_text(IDENTITY_KEY_PROVISIONING_CODE)

    def clear_provisioning_code(self) -> None:
        """Forget the one-shot provisioning code after it has been used."""
        self._connection.execute(DELETE_IDENTITY_VALUE, (IDENTITY_KEY_PROVISIONING_CODE,))

    def set_pni_identity_keypair(self, keypair: IdentityKeyPair) -> None:
        self._put(IDENTITY_KEY_PNI_KEYPAIR, keypair.serialize())

    def get_pni_identity_keypair(self) -> IdentityKeyPair | None:
        value = self._get(IDENTITY_KEY_PNI_KEYPAIR)
        return None if value is None else IdentityKeyPair.deserialize(value)

    def set_pni_registration_id(self, pni_registration_id: int) -> None:
        self._put(
            IDENTITY_KEY_PNI_REGISTRATION_ID,
            _encode_unsigned(pni_registration_id, 4, "pni_registration_id"),
        )

    def get_pni_registration_id(self) -> int | None:
        value = self._get(IDENTITY_KEY_PNI_REGISTRATION_ID)
        return None if value is None else _decode_unsigned(value, 4, IDENTITY_KEY_PNI_REGISTRATION_ID)

    def scoped(self, identity_kind: IdentityKind) -> IdentityScopedStore:
        """Identity and prekey storage restricted to one identity kind."""
        return IdentityScopedStore(self._connection, identity_kind)

    def sessions(self) -> SessionStore:
        """Session storage keyed by protocol address."""
        return SessionStore(self._connection)