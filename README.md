# signallink

Local state for a Signal-compatible *linked* (secondary) device: the
identity bundle written while linking, and the session, identity and
prekey stores a session cipher reads and writes. Everything lives in one
SQLite file.

## Install

```
pip install signallink
```

For running the test suite:

```
pip install "signallink[test]"
pytest
```

## Modules

- `signallink.keys` - `IdentityKey`, `IdentityKeyPair` (X25519, generated
  with `cryptography`), `ProtocolAddress`, the `LinkStatus` and
  `IdentityKind` enums, the `Identity` record and the error classes.
- `signallink.schema` - `connect(path)` and `initialize(connection)`, which
  open a database and create its tables (WAL journaling for files).
- `signallink.store` - `SqliteStore`, the main entry point.
- `signallink.sessions` - `SessionStore`, sessions keyed by address.
- `signallink.scoped` - `IdentityScopedStore`, plus the `IdentityChange`
  and `Direction` enums.
- `signallink.tx` / `signallink.txstores` - `TxStore` and the
  transaction-bound views it hands out.
- `signallink.provisioning` - `ProvisionMessage`, `LinkOutcome`,
  `build_provisioning_uri` and `generate_registration_id`.
- `signallink.link` - `persist_provision_message` and `mark_linked`.

## What a store holds

- **Identity bundle** - identity keypair, registration id, account number,
  device id and a `LinkStatus` (`IDENTITY_PERSISTED` while linking is only
  half done, `LINKED` once finished).
- **Account extras** - ACI, PNI, PNI identity keypair and registration id,
  profile key, provisioning code, device password, a cached sender
  certificate with its expiry, and profile keys learned from peers.
- **Protocol stores** - sessions keyed by `ProtocolAddress`, and identity,
  one-time prekey, signed prekey and Kyber prekey stores scoped by
  `IdentityKind` (`ACI` or `PNI`), so both identities can use the same
  prekey ids without colliding. Session and prekey records are opaque
  byte strings.

## Opening a store

```python
from signallink.keys import IdentityKeyPair, IdentityKind, LinkStatus
from signallink.store import SqliteStore

with SqliteStore.open("state/store.db") as store:
    keypair = IdentityKeyPair.generate()
    store.save_identity_bundle(keypair, 1234, "account-1", 0, LinkStatus.IDENTITY_PERSISTED)

    identity = store.load_identity()
    print(identity.account_number, identity.link_status)
```

`load_identity` returns the bundle whatever its link status. It raises
`NotLinkedError` when no identity keypair is stored and `CorruptStoreError`
when another identity row is missing or malformed; both derive from
`StoreError`. Key bytes that do not parse raise `InvalidKeyError`.

`SqliteStore.open_in_memory()` gives a throw-away store, handy in tests.

## Linking

The primary device scans a `sgnl://linkdevice` URI:

```python
from signallink.provisioning import build_provisioning_uri

uri = build_provisioning_uri(public_key_bytes, server_address)
```

Given an already decrypted `ProvisionMessage`, store its identity and,
once the rest of linking has succeeded, mark the device as linked:

```python
from signallink.link import mark_linked, persist_provision_message

outcome = persist_provision_message(store, message)
print(outcome.account_number, outcome.device_id)   # device_id is 0 until assigned
mark_linked(store)
```

`persist_provision_message` generates a fresh registration id in
`1..16380`. It raises `MissingFieldError` when the ACI keypair or number is
absent and `InvalidIdentityKeyError` when the ACI keys do not parse; nothing
is written in either case. Both derive from `LinkError`.

## Scoped, session and transactional stores

```python
aci = store.scoped(IdentityKind.ACI)
aci.save_pre_key(42, record_bytes)
aci.get_pre_key(42)
aci.remove_pre_key(42)     # get_pre_key(42) now raises MissingPreKeyError

sessions = store.sessions()
sessions.store_session(address, session_bytes)
sessions.session_device_ids_for_service_id("peer-service-id")
```

Peer identities follow trust on first use: `is_trusted_identity` is true for
an unknown address and otherwise only when the key matches the stored one.
`mark_kyber_pre_key_used` deletes the Kyber prekey.

To make a group of protocol-store writes atomic, open a transaction. The
views it hands out all share it; leaving the block without `commit()` rolls
every write back, and any use after commit or rollback raises `StoreError`.

```python
with store.begin() as tx:
    tx.pre_key_store(IdentityKind.ACI).remove_pre_key(42)
    tx.session_store().store_session(address, session_bytes)
    tx.commit()
```

## What this package does not do

It keeps state only. It does not connect to any server, run the
provisioning exchange, decrypt provisioning envelopes, generate or upload
prekeys, encrypt or decrypt messages, or provide a command-line program.