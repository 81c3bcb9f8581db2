"""Provisioning message fields, link outcome and the ``sgnl://`` URI."""

from __future__ import annotations

import base64
import secrets
from dataclasses import dataclass

PROVISIONING_URI_SCHEME = "sgnl"

REGISTRATION_ID_MIN = 1
REGISTRATION_ID_MAX = 16380

_UNRESERVED = frozenset(b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~")


@dataclass
class ProvisionMessage:
    """Decrypted identity bundle forwarded by the primary device."""

    aci_identity_key_public: bytes | None = None
    aci_identity_key_private: bytes | None = None
    pni_identity_key_public: bytes | None = None
    pni_identity_key_private: bytes | None = None
    aci: str | None = None
    pni: str | None = None
    number: str | None = None
    provisioning_code: str | None = None
    user_agent: str | None = None
    profile_key: bytes | None = None
    read_receipts: bool | None = None
    provisioning_version: int | None = None
    ephemeral_backup_key: bytes | None = None
    account_entropy_pool: str | None = None
    media_root_backup_key: bytes | None = None
    aci_binary: bytes | None = None
    pni_binary: bytes | None = None


@dataclass(frozen=True)
class LinkOutcome:
    """Account number and device id once linking has progressed."""

    account_number: str
    device_id: int


def _url_encode(text: str) -> str:
    """Percent-encode everything outside the RFC 3986 unreserved set."""
    return "".join(
        chr(byte) if byte in _UNRESERVED else f"%{byte:02X}" for byte in text.encode("utf-8")
    )


def build_provisioning_uri(public_key: bytes, address: str) -> str:
    """Build the ``sgnl://linkdevice`` URI the primary device scans."""
    pub_b64 = base64.b64encode(bytes(public_key)).decode("ascii").rstrip("=")
    return (
        f"{PROVISIONING_URI_SCHEME}://linkdevice"
        f"?uuid={_url_encode(address)}&pub_key={_url_encode(pub_b64)}"
    )


def generate_registration_id() -> int:
    """A random registration id in ``1..=16380`` from the OS CSPRNG."""
    return REGISTRATION_ID_MIN + secrets.randbelow(REGISTRATION_ID_MAX - REGISTRATION_ID_MIN + 1)