"""SQLite schema, connection setup and shared SQL statements."""

from __future__ import annotations

import os
import sqlite3

SCHEMA_VERSION = 1

MEMORY = ":memory:"

IDENTITY_KEY_KEYPAIR = "identity_keypair"
IDENTITY_KEY_PNI_KEYPAIR = "pni_identity_keypair"
IDENTITY_KEY_REGISTRATION_ID = "registration_id"
IDENTITY_KEY_PNI_REGISTRATION_ID = "pni_registration_id"
IDENTITY_KEY_ACCOUNT_NUMBER = "account_number"
IDENTITY_KEY_DEVICE_ID = "device_id"
IDENTITY_KEY_LINK_STATUS = "link_status"
IDENTITY_KEY_PASSWORD = "password"
IDENTITY_KEY_PNI = "pni"
IDENTITY_KEY_ACI = "aci"
IDENTITY_KEY_PROFILE_KEY = "profile_key"
IDENTITY_KEY_PROVISIONING_CODE = "provisioning_code"
IDENTITY_KEY_SENDER_CERTIFICATE = "sender_certificate"
IDENTITY_KEY_SENDER_CERTIFICATE_EXPIRY_MS = "sender_certificate_expiry_ms"

SELECT_IDENTITY_VALUE = "SELECT value FROM identity WHERE key = ?"
UPSERT_IDENTITY_VALUE = "INSERT OR REPLACE INTO identity (key, value) VALUES (?, ?)"
DELETE_IDENTITY_VALUE = "DELETE FROM identity WHERE key = ?"

SELECT_SESSION = "SELECT record FROM sessions WHERE address = ?"
UPSERT_SESSION = "INSERT OR REPLACE INTO sessions (address, record) VALUES (?, ?)"

SELECT_PEER_IDENTITY = "SELECT key FROM identities WHERE address = ?"
UPSERT_PEER_IDENTITY = "INSERT OR REPLACE INTO identities (address, key) VALUES (?, ?)"

SELECT_PREKEY_BY_KIND_AND_ID = "SELECT record FROM prekeys WHERE identity_kind = ? AND id = ?"
INSERT_PREKEY_BY_KIND = "INSERT OR REPLACE INTO prekeys (identity_kind, id, record) VALUES (?, ?, ?)"
DELETE_PREKEY_BY_KIND_AND_ID = "DELETE FROM prekeys WHERE identity_kind = ? AND id = ?"

SELECT_SIGNED_PREKEY_BY_KIND_AND_ID = "SELECT record FROM signed_prekeys WHERE identity_kind = ? AND id = ?"
INSERT_SIGNED_PREKEY_BY_KIND = (
    "INSERT OR REPLACE INTO signed_prekeys (identity_kind, id, record) VALUES (?, ?, ?)"
)

SELECT_KYBER_PREKEY_BY_KIND_AND_ID = "SELECT record FROM kyber_prekeys WHERE identity_kind = ? AND id = ?"
INSERT_KYBER_PREKEY_BY_KIND = (
    "INSERT OR REPLACE INTO kyber_prekeys (identity_kind, id, record, used) VALUES (?, ?, ?, 0)"
)
DELETE_KYBER_PREKEY_BY_KIND_AND_ID = "DELETE FROM kyber_prekeys WHERE identity_kind = ? AND id = ?"

_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS identity (
        key   TEXT PRIMARY KEY NOT NULL,
        value BLOB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sessions (
        address TEXT PRIMARY KEY NOT NULL,
        record  BLOB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS identities (
        address TEXT PRIMARY KEY NOT NULL,
        key     BLOB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS prekeys (
        identity_kind TEXT NOT NULL,
        id            INTEGER NOT NULL,
        record        BLOB NOT NULL,
        PRIMARY KEY (identity_kind, id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS signed_prekeys (
        identity_kind TEXT NOT NULL,
        id            INTEGER NOT NULL,
        record        BLOB NOT NULL,
        PRIMARY KEY (identity_kind, id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS kyber_prekeys (
        identity_kind TEXT NOT NULL,
        id            INTEGER NOT NULL,
        record        BLOB NOT NULL,
        used          INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (identity_kind, id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS peer_profile_keys (
        aci         TEXT PRIMARY KEY NOT NULL,
        profile_key BLOB NOT NULL,
        updated_ms  INTEGER NOT NULL
    )
    """,
)


def initialize(connection: sqlite3.Connection) -> None:
    """Create any missing tables and record the schema version."""
    with connection:
        for statement in _TABLES:
            connection.execute(statement)
        connection.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")


def connect(path: str | os.PathLike[str]) -> sqlite3.Connection:
    """Open (creating if missing) a database and bring its schema up to date.

    The connection is in autocommit mode so callers control transactions with
    explicit BEGIN/COMMIT. File databases use WAL journaling.
    """
    target = os.fspath(path)
    connection = sqlite3.connect(target, isolation_level=None)
    try:
        if target != MEMORY:
            connection.execute("PRAGMA journal_mode=WAL")
        initialize(connection)
    except sqlite3.Error:
        connection.close()
        raise
    return connection