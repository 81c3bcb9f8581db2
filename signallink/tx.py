"""A transaction that hands out storage views sharing one commit or rollback."""

from __future__ import annotations

import sqlite3

from .keys import IdentityKind, ProtocolAddress
from .txstores import (
    TxIdentityStore,
    TxKyberPreKeyStore,
    TxPreKeyStore,
    TxSessionStore,
    TxSignedPreKeyStore,
    _SharedTransaction,
)


class TxStore:
    """One open transaction plus the storage views that run inside it.

    Views minted from the same TxStore share the transaction. Call
    :meth:`commit` to make their writes visible; leaving the ``with`` block
    or calling :meth:`rollback` without committing discards them. Any use
    after the transaction has finished raises StoreError.
    """

    def __init__(self, connection: sqlite3.Connection):
        self._transaction = _SharedTransaction(connection)

    def __repr__(self) -> str:
        state = "active" if self._transaction.active else "finished"
        return f"TxStore({state})"

    def commit(self) -> None:
        """Commit the transaction; a second commit or rollback raises StoreError."""
        self._transaction.finish(commit=True)

    def rollback(self) -> None:
        """Discard every write; a second commit or rollback raises StoreError."""
        self._transaction.finish(commit=False)

    def __enter__(self) -> TxStore:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._transaction.active:
            self.rollback()

    def session_store(self) -> TxSessionStore:
        return TxSessionStore(self._transaction)

    def identity_store(self, identity_kind: IdentityKind) -> TxIdentityStore:
        return TxIdentityStore(self._transaction, identity_kind)

    def pre_key_store(self, identity_kind: IdentityKind) -> TxPreKeyStore:
        return TxPreKeyStore(self._transaction, identity_kind)

    def signed_pre_key_store(self, identity_kind: IdentityKind) -> TxSignedPreKeyStore:
        return TxSignedPreKeyStore(self._transaction, identity_kind)

    def kyber_pre_key_store(self, identity_kind: IdentityKind) -> TxKyberPreKeyStore:
        return TxKyberPreKeyStore(self._transaction, identity_kind)

    def load_session(self, address: ProtocolAddress) -> bytes | None:
        return self.session_store().load_session(address)

    def store_session(self, address: ProtocolAddress, record: bytes) -> None:
        self.session_store().store_session(address, record)