import sqlite3

import pytest

from signallink import schema


@pytest.fixture
def conn():
    connection = schema.connect(schema.MEMORY)
    yield connection
    connection.close()


def _tables(connection):
    rows = connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {name for (name,) in rows}


def test_connect_creates_all_tables(conn):
    assert {
        "identity",
        "sessions",
        "identities",
        "prekeys",
        "signed_prekeys",
        "kyber_prekeys",
        "peer_profile_keys",
    } <= _tables(conn)


def test_schema_version_recorded(conn):
    (version,) = conn.execute("PRAGMA user_version").fetchone()
    assert version == schema.SCHEMA_VERSION


def test_file_database_uses_wal(tmp_path):
    connection = schema.connect(tmp_path / "store.db")
    try:
        (mode,) = connection.execute("PRAGMA journal_mode").fetchone()
        assert mode.lower() == "wal"
    finally:
        connection.close()
    assert (tmp_path / "store.db").exists()


def test_initialize_is_idempotent_and_keeps_data(tmp_path):
    path = tmp_path / "store.db"
    first = schema.connect(path)
    first.execute(schema.UPSERT_IDENTITY_VALUE, (schema.IDENTITY_KEY_ACI, b"aci-value"))
    first.close()

    second = schema.connect(path)
    try:
        schema.initialize(second)
        row = second.execute(schema.SELECT_IDENTITY_VALUE, (schema.IDENTITY_KEY_ACI,)).fetchone()
        assert row == (b"aci-value",)
    finally:
        second.close()


def test_connection_is_autocommit(conn):
    assert conn.isolation_level is None
    assert conn.in_transaction is False


def test_identity_upsert_replaces_value(conn):
    conn.execute(schema.UPSERT_IDENTITY_VALUE, ("k", b"one"))
    conn.execute(schema.UPSERT_IDENTITY_VALUE, ("k", b"two"))
    rows = conn.execute("SELECT value FROM identity WHERE key = 'k'").fetchall()
    assert rows == [(b"two",)]


def test_identity_delete_removes_row(conn):
    conn.execute(schema.UPSERT_IDENTITY_VALUE, ("k", b"one"))
    conn.execute(schema.DELETE_IDENTITY_VALUE, ("k",))
    assert conn.execute(schema.SELECT_IDENTITY_VALUE, ("k",)).fetchone() is None


def test_prekeys_partitioned_by_identity_kind(conn):
    conn.execute(schema.INSERT_PREKEY_BY_KIND, ("aci", 42, b"aci-record"))
    conn.execute(schema.INSERT_PREKEY_BY_KIND, ("pni", 42, b"pni-record"))
    assert conn.execute(schema.SELECT_PREKEY_BY_KIND_AND_ID, ("aci", 42)).fetchone() == (b"aci-record",)
    assert conn.execute(schema.SELECT_PREKEY_BY_KIND_AND_ID, ("pni", 42)).fetchone() == (b"pni-record",)

    conn.execute(schema.DELETE_PREKEY_BY_KIND_AND_ID, ("aci", 42))
    assert conn.execute(schema.SELECT_PREKEY_BY_KIND_AND_ID, ("aci", 42)).fetchone() is None
    assert conn.execute(schema.SELECT_PREKEY_BY_KIND_AND_ID, ("pni", 42)).fetchone() == (b"pni-record",)


def test_signed_prekeys_partitioned_by_identity_kind(conn):
    conn.execute(schema.INSERT_SIGNED_PREKEY_BY_KIND, ("aci", 101, b"a"))
    conn.execute(schema.INSERT_SIGNED_PREKEY_BY_KIND, ("pni", 101, b"p"))
    assert conn.execute(schema.SELECT_SIGNED_PREKEY_BY_KIND_AND_ID, ("aci", 101)).fetchone() == (b"a",)
    assert conn.execute(schema.SELECT_SIGNED_PREKEY_BY_KIND_AND_ID, ("pni", 101)).fetchone() == (b"p",)


def test_kyber_prekeys_insert_unused_and_delete_scoped(conn):
    conn.execute(schema.INSERT_KYBER_PREKEY_BY_KIND, ("aci", 102, b"a"))
    conn.execute(schema.INSERT_KYBER_PREKEY_BY_KIND, ("pni", 102, b"p"))
    (used,) = conn.execute(
        "SELECT used FROM kyber_prekeys WHERE identity_kind = 'aci' AND id = 102"
    ).fetchone()
    assert used == 0

    conn.execute(schema.DELETE_KYBER_PREKEY_BY_KIND_AND_ID, ("aci", 102))
    assert conn.execute(schema.SELECT_KYBER_PREKEY_BY_KIND_AND_ID, ("aci", 102)).fetchone() is None
    assert conn.execute(schema.SELECT_KYBER_PREKEY_BY_KIND_AND_ID, ("pni", 102)).fetchone() == (b"p",)


def test_session_and_peer_identity_round_trip(conn):
    conn.execute(schema.UPSERT_SESSION, ("peer.1", b"session"))
    conn.execute(schema.UPSERT_PEER_IDENTITY, ("peer.1", b"key"))
    assert conn.execute(schema.SELECT_SESSION, ("peer.1",)).fetchone() == (b"session",)
    assert conn.execute(schema.SELECT_PEER_IDENTITY, ("peer.1",)).fetchone() == (b"key",)


def test_peer_profile_keys_require_timestamp(conn):
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("INSERT INTO peer_profile_keys (aci, profile_key) VALUES ('a', x'01')")