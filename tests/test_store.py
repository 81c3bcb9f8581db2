import sqlite3

import pytest

from signallink.keys import (
    CorruptStoreError,
    IdentityKeyPair,
    IdentityKind,
    LinkStatus,
    MissingPreKeyError,
    NotLinkedError,
    ProtocolAddress,
)
from signallink.scoped import Direction, IdentityChange
from signallink.store import SqliteStore

ACCOUNT = "+15555550100"
ADDRESS = ProtocolAddress(ACCOUNT, 1)
PEER_A = "aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa"
PEER_B = "bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb"


@pytest.fixture
def store():
    with SqliteStore.open_in_memory() as opened:
        yield opened


@pytest.fixture
def keypair():
    return IdentityKeyPair.generate()


def test_save_and_load_identity_bundle_roundtrip(store, keypair):
    store.save_identity_bundle(keypair, 12345, ACCOUNT, 2, LinkStatus.LINKED)
    loaded = store.load_identity()
    assert loaded.registration_id == 12345
    assert loaded.account_number == ACCOUNT
    assert loaded.device_id == 2
    assert loaded.link_status is LinkStatus.LINKED
    assert loaded.identity_keypair.identity_key.serialize() == keypair.identity_key.serialize()


def test_load_identity_on_empty_store_errors_not_linked(store):
    with pytest.raises(NotLinkedError):
        store.load_identity()


def test_partial_link_loads_and_can_be_marked_linked(store, keypair):
    store.save_identity_bundle(keypair, 1, ACCOUNT, 1, LinkStatus.IDENTITY_PERSISTED)
    partial = store.load_identity()
    assert partial.link_status is LinkStatus.IDENTITY_PERSISTED
    assert partial.account_number == ACCOUNT
    assert partial.registration_id == 1
    store.set_link_status(LinkStatus.LINKED)
    assert store.load_identity().link_status is LinkStatus.LINKED


def test_scoped_aci_returns_aci_keypair_and_registration_id(store, keypair):
    store.save_identity_bundle(keypair, 99, ACCOUNT, 1, LinkStatus.LINKED)
    aci = store.scoped(IdentityKind.ACI)
    assert aci.get_identity_key_pair() == keypair
    assert aci.get_local_registration_id() == 99


def test_scoped_pni_returns_pni_keypair_and_registration_id(store):
    aci_kp = IdentityKeyPair.generate()
    pni_kp = IdentityKeyPair.generate()
    store.save_identity_bundle(aci_kp, 99, ACCOUNT, 1, LinkStatus.LINKED)
    store.set_pni_identity_keypair(pni_kp)
    store.set_pni_registration_id(777)
    pni = store.scoped(IdentityKind.PNI)
    returned = pni.get_identity_key_pair()
    assert returned.identity_key.serialize() == pni_kp.identity_key.serialize()
    assert returned.identity_key.serialize() != aci_kp.identity_key.serialize()
    assert pni.get_local_registration_id() == 777


def test_scoped_peer_identity_round_trip(store, keypair):
    store.save_identity_bundle(keypair, 99, ACCOUNT, 1, LinkStatus.LINKED)
    scoped = store.scoped(IdentityKind.ACI)
    peer = IdentityKeyPair.generate()
    assert scoped.save_identity(ADDRESS, peer.identity_key) is IdentityChange.NEW_OR_UNCHANGED
    assert scoped.is_trusted_identity(ADDRESS, peer.identity_key, Direction.RECEIVING) is True
    other = IdentityKeyPair.generate()
    assert scoped.is_trusted_identity(ADDRESS, other.identity_key, Direction.RECEIVING) is False


def test_session_store_round_trip(store):
    sessions = store.sessions()
    assert sessions.load_session(ADDRESS) is None
    sessions.store_session(ADDRESS, b"fresh-session")
    assert sessions.load_session(ADDRESS) == b"fresh-session"


def test_session_device_ids_for_service_id(store):
    sessions = store.sessions()
    sessions.store_session(ProtocolAddress(PEER_A, 1), b"one")
    sessions.store_session(ProtocolAddress(PEER_A, 3), b"three")
    sessions.store_session(ProtocolAddress(PEER_B, 2), b"two")
    assert sorted(sessions.session_device_ids_for_service_id(PEER_A)) == [1, 3]


def test_aci_and_pni_prekey_at_same_id_round_trip_independently(store):
    aci = store.scoped(IdentityKind.ACI)
    pni = store.scoped(IdentityKind.PNI)
    aci.save_pre_key(42, b"aci-prekey")
    pni.save_pre_key(42, b"pni-prekey")
    assert aci.get_pre_key(42) == b"aci-prekey"
    assert pni.get_pre_key(42) == b"pni-prekey"
    aci.remove_pre_key(42)
    with pytest.raises(MissingPreKeyError):
        aci.get_pre_key(42)
    assert pni.get_pre_key(42) == b"pni-prekey"


def test_aci_and_pni_signed_prekey_at_same_id_round_trip_independently(store):
    aci = store.scoped(IdentityKind.ACI)
    pni = store.scoped(IdentityKind.PNI)
    aci.save_signed_pre_key(101, b"aci-signed")
    pni.save_signed_pre_key(101, b"pni-signed")
    assert aci.get_signed_pre_key(101) == b"aci-signed"
    assert pni.get_signed_pre_key(101) == b"pni-signed"


def test_aci_and_pni_kyber_prekey_at_same_id_round_trip_independently(store):
    aci = store.scoped(IdentityKind.ACI)
    pni = store.scoped(IdentityKind.PNI)
    aci.save_kyber_pre_key(102, b"aci-kyber")
    pni.save_kyber_pre_key(102, b"pni-kyber")
    assert aci.get_kyber_pre_key(102) == b"aci-kyber"
    assert pni.get_kyber_pre_key(102) == b"pni-kyber"
    aci.mark_kyber_pre_key_used(102, 0, None)
    with pytest.raises(MissingPreKeyError):
        aci.get_kyber_pre_key(102)
    assert pni.get_kyber_pre_key(102) == b"pni-kyber"


def test_identity_key_decode_path_round_trips(store, keypair):
    store.save_identity_bundle(keypair, 1, ACCOUNT, 1, LinkStatus.LINKED)
    scoped = store.scoped(IdentityKind.ACI)
    scoped.save_identity(ADDRESS, keypair.identity_key)
    loaded = scoped.get_identity(ADDRESS)
    assert loaded == keypair.identity_key


def test_peer_profile_keys_overwrite_on_repeat_insert(store):
    assert store.get_peer_profile_key(PEER_A) is None
    store.set_peer_profile_key(PEER_A, bytes([1]) * 32)
    assert store.get_peer_profile_key(PEER_A) == bytes([1]) * 32
    store.set_peer_profile_key(PEER_A, bytes([2]) * 32)
    assert store.get_peer_profile_key(PEER_A) == bytes([2]) * 32


def test_peer_profile_keys_keyed_by_aci(store):
    store.set_peer_profile_key(PEER_A, bytes([0xA]) * 32)
    store.set_peer_profile_key(PEER_B, bytes([0xB]) * 32)
    assert store.get_peer_profile_key(PEER_A) == bytes([0xA]) * 32
    assert store.get_peer_profile_key(PEER_B) == bytes([0xB]) * 32


def test_sender_certificate_round_trip(store):
    assert store.get_sender_certificate() is None
    store.set_sender_certificate(bytes([7, 8, 9, 10, 11]), 1_900_000_000_000)
    assert store.get_sender_certificate() == (bytes([7, 8, 9, 10, 11]), 1_900_000_000_000)


def test_sender_certificate_overwrites_on_subsequent_set(store):
    store.set_sender_certificate(bytes([0xAA]) * 16, 1_000)
    store.set_sender_certificate(bytes([0xBB]) * 24, 2_000)
    assert store.get_sender_certificate() == (bytes([0xBB]) * 24, 2_000)


def test_password_round_trip(store):
    assert store.get_password() is None
    password = "password"
    store.set_password(password)
    assert store.get_password() == "password"


def test_aci_and_pni_strings_round_trip(store):
    assert store.get_aci() is None
    assert store.get_pni() is None
    store.set_aci(PEER_A)
    store.set_pni(PEER_B)
    assert store.get_aci() == PEER_A
    assert store.get_pni() == PEER_B


def test_profile_key_round_trip(store):
    assert store.get_profile_key() is None
    store.set_profile_key(bytes([0xCD]) * 32)
    assert store.get_profile_key() == bytes([0xCD]) * 32


def test_provisioning_code_set_and_clear(store):
    store.set_provisioning_code("ABCDEFGH")
    assert store.get_provisioning_code() == "ABCDEFGH"
    store.clear_provisioning_code()
    assert store.get_provisioning_code() is None


def test_pni_identity_keypair_round_trip(store, keypair):
    assert store.get_pni_identity_keypair() is None
    store.set_pni_identity_keypair(keypair)
    assert store.get_pni_identity_keypair() == keypair


def test_pni_registration_id_round_trip_and_range(store):
    assert store.get_pni_registration_id() is None
    store.set_pni_registration_id(16380)
    assert store.get_pni_registration_id() == 16380
    with pytest.raises(ValueError):
        store.set_pni_registration_id(-1)


def test_set_device_id_updates_identity(store, keypair):
    store.save_identity_bundle(keypair, 5, ACCOUNT, 0, LinkStatus.IDENTITY_PERSISTED)
    store.set_device_id(3)
    assert store.load_identity().device_id == 3


def test_file_store_persists_across_reopen(tmp_path, keypair):
    path = tmp_path / "store.db"
    with SqliteStore.open(path) as first:
        first.save_identity_bundle(keypair, 42, ACCOUNT, 2, LinkStatus.LINKED)
        first.set_aci(PEER_A)
    with SqliteStore.open(path) as second:
        loaded = second.load_identity()
        assert loaded.registration_id == 42
        assert loaded.identity_keypair == keypair
        assert second.get_aci() == PEER_A


def _overwrite_row(path, key, value):
    connection = sqlite3.connect(path)
    with connection:
        connection.execute("UPDATE identity SET value = ? WHERE key = ?", (value, key))
    connection.close()


def _delete_row(path, key):
    connection = sqlite3.connect(path)
    with connection:
        connection.execute("DELETE FROM identity WHERE key = ?", (key,))
    connection.close()


def test_corrupt_registration_id_length(tmp_path, keypair):
    path = tmp_path / "store.db"
    with SqliteStore.open(path) as opened:
        opened.save_identity_bundle(keypair, 42, ACCOUNT, 2, LinkStatus.LINKED)
    _overwrite_row(path, "registration_id", b"\x01")
    with SqliteStore.open(path) as reopened:
        with pytest.raises(CorruptStoreError):
            reopened.load_identity()


def test_corrupt_link_status_value(tmp_path, keypair):
    path = tmp_path / "store.db"
    with SqliteStore.open(path) as opened:
        opened.save_identity_bundle(keypair, 42, ACCOUNT, 2, LinkStatus.LINKED)
    _overwrite_row(path, "link_status", b"Bogus")
    with SqliteStore.open(path) as reopened:
        with pytest.raises(CorruptStoreError):
            reopened.load_identity()


def test_missing_account_number_is_corrupt(tmp_path, keypair):
    path = tmp_path / "store.db"
    with SqliteStore.open(path) as opened:
        opened.save_identity_bundle(keypair, 42, ACCOUNT, 2, LinkStatus.LINKED)
    _delete_row(path, "account_number")
    with SqliteStore.open(path) as reopened:
        with pytest.raises(CorruptStoreError):
            reopened.load_identity()


def test_closed_store_rejects_queries():
    with SqliteStore.open_in_memory() as opened:
        opened.set_aci(PEER_A)
    with pytest.raises(sqlite3.ProgrammingError):
        opened.get_aci()


def test_begin_commits_through_transaction(store):
    tx = store.begin()
    tx.store_session(ADDRESS, b"committed-record")
    tx.commit()
    assert store.sessions().load_session(ADDRESS) == b"committed-record"