"""Pool-level session storage keyed by protocol address."""

from __future__ import annotations

import re
import sqlite3

from .keys import ProtocolAddress
from .schema import SELECT_SESSION, UPSERT_SESSION

_SELECT_SESSION_ADDRESSES = "SELECT address FROM sessions WHERE address LIKE ?"
_DEVICE_ID = re.compile(r"\+?[0-9]+")
_MAX_DEVICE_ID = 0xFFFFFFFF


def _parse_device_id(text: str) -> int | None:
    if not _DEVICE_ID.fullmatch(text):
        return None
    value = int(text)
    return value if value <= _MAX_DEVICE_ID else None


class SessionStore:
    """Session records stored against ``name.device_id`` addresses.

    Records are opaque byte strings; the address already carries the
    identity, so no identity-kind scoping applies here.
    """

    def __init__(self, connection: sqlite3.Connection):
        self._connection = connection

    def load_session(self, address: ProtocolAddress) -> bytes | None:
        """Return the stored record for ``address``, or None."""
        row = self._connection.execute(SELECT_SESSION, (str(address),)).fetchone()
        return None if row is None else bytes(row[0])

    def store_session(self, address: ProtocolAddress, record: bytes) -> None:
        """Insert or overwrite the record for ``address``."""
        self._connection.execute(UPSERT_SESSION, (str(address), bytes(record)))

    def session_device_ids_for_service_id(self, service_id: str) -> list[int]:
        """Device ids that already have a session under ``service_id``."""
        prefix = f"{service_id}."
        rows = self._connection.execute(_SELECT_SESSION_ADDRESSES, (f"{prefix}%",)).fetchall()
        device_ids = []
        for (address,) in rows:
            if not address.startswith(prefix):
                continue
            device_id = _parse_device_id(address[len(prefix):])
            if device_id is not None:
                device_ids.append(device_id)
        return device_ids