"""Key material, identifiers, link state and error types for the store."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

DJB_TYPE = 0x05
KEY_LENGTH = 32
SERIALIZED_PUBLIC_KEY_LENGTH = KEY_LENGTH + 1

_PUBLIC_FIELD = 1
_PRIVATE_FIELD = 2
_WIRE_LENGTH_DELIMITED = 2


class StoreError(Exception):
    """Base class for storage failures."""


class NotLinkedError(StoreError):
    """No identity has been persisted in this state directory."""

    def __init__(self, message: str = "identity not persisted - this state dir has not been linked"):
        super().__init__(message)


class PartiallyLinkedError(StoreError):
    """The identity exists but linking did not finish."""

    def __init__(self, status: LinkStatus):
        self.status = status
        super().__init__(
            f"identity is partially persisted (link_status={status}); re-run link to resume"
        )


class CorruptStoreError(StoreError):
    """A stored value could not be decoded."""


class InvalidKeyError(ValueError):
    """Key bytes are malformed."""


class MissingPreKeyError(LookupError):
    """A requested prekey is not in the store."""

    def __init__(self, kind: str, prekey_id: int):
        self.kind = kind
        self.prekey_id = prekey_id
        super().__init__(f"no {kind} prekey with id {prekey_id}")


class LinkStatus(enum.Enum):
    """Handshake state of the linked device."""

    IDENTITY_PERSISTED = "identity_persisted"
    LINKED = "linked"

    def __str__(self) -> str:
        return self.value

    def as_db(self) -> str:
        """The form written to the ``identity.link_status`` row."""
        return _LINK_STATUS_DB[self]

    @classmethod
    def from_db(cls, value: str) -> LinkStatus:
        """Parse the on-disk form; raise ValueError for anything else."""
        for status, name in _LINK_STATUS_DB.items():
            if name == value:
                return status
        raise ValueError(f"unknown link_status value {value!r}")


_LINK_STATUS_DB = {
    LinkStatus.IDENTITY_PERSISTED: "IdentityPersisted",
    LinkStatus.LINKED: "Linked",
}


class IdentityKind(enum.Enum):
    """Which of the account's two identities a key belongs to."""

    ACI = "aci"
    PNI = "pni"

    def as_db(self) -> str:
        """The form stored in ``identity_kind`` columns."""
        return self.value


@dataclass(frozen=True)
class ProtocolAddress:
    """A peer's service id plus device id."""

    name: str
    device_id: int

    def __str__(self) -> str:
        return f"{self.name}.{self.device_id}"


@dataclass(frozen=True)
class IdentityKey:
    """A Curve25519 public identity key."""

    public_key: bytes

    def __post_init__(self) -> None:
        if len(self.public_key) != KEY_LENGTH:
            raise InvalidKeyError(f"public key must be {KEY_LENGTH} bytes, got {len(self.public_key)}")

    @classmethod
    def decode(cls, data: bytes) -> IdentityKey:
        """Parse the type-prefixed 33-byte serialized form."""
        data = bytes(data)
        if not data:
            raise InvalidKeyError("empty public key")
        if data[0] != DJB_TYPE:
            raise InvalidKeyError(f"bad key type 0x{data[0]:02x}")
        if len(data) != SERIALIZED_PUBLIC_KEY_LENGTH:
            raise InvalidKeyError(
                f"serialized public key must be {SERIALIZED_PUBLIC_KEY_LENGTH} bytes, got {len(data)}"
            )
        return cls(data[1:])

    def serialize(self) -> bytes:
        return bytes([DJB_TYPE]) + self.public_key


def _encode_varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise InvalidKeyError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
        shift += 7
        if shift > 63:
            raise InvalidKeyError("varint too long")


def _encode_field(number: int, payload: bytes) -> bytes:
    tag = (number << 3) | _WIRE_LENGTH_DELIMITED
    return _encode_varint(tag) + _encode_varint(len(payload)) + payload


def _decode_fields(data: bytes) -> dict[int, bytes]:
    fields: dict[int, bytes] = {}
    pos = 0
    while pos < len(data):
        tag, pos = _read_varint(data, pos)
        if tag & 0x07 != _WIRE_LENGTH_DELIMITED:
            raise InvalidKeyError(f"unexpected wire type {tag & 0x07}")
        length, pos = _read_varint(data, pos)
        end = pos + length
        if end > len(data):
            raise InvalidKeyError("truncated field")
        fields[tag >> 3] = data[pos:end]
        pos = end
    return fields


def _private_bytes(key: X25519PrivateKey) -> bytes:
    return key.private_bytes(
        serialization.Encoding.Raw,
        serialization.PrivateFormat.Raw,
        serialization.NoEncryption(),
    )


def _public_bytes(key: X25519PrivateKey) -> bytes:
    return key.public_key().public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)


@dataclass(frozen=True, repr=False)
class IdentityKeyPair:
    """An identity key together with its 32-byte private half."""

    identity_key: IdentityKey
    private_key: bytes

    def __post_init__(self) -> None:
        if len(self.private_key) != KEY_LENGTH:
            raise InvalidKeyError(f"private key must be {KEY_LENGTH} bytes, got {len(self.private_key)}")

    def __repr__(self) -> str:
        return f"IdentityKeyPair(identity_key={self.identity_key!r}, private_key=<elided>)"

    @classmethod
    def generate(cls) -> IdentityKeyPair:
        key = X25519PrivateKey.generate()
        return cls(IdentityKey(_public_bytes(key)), _private_bytes(key))

    @classmethod
    def from_parts(cls, public: bytes, private: bytes) -> IdentityKeyPair:
        """Build from a serialized public key and a raw private key."""
        return cls(IdentityKey.decode(public), bytes(private))

    def serialize(self) -> bytes:
        return _encode_field(_PUBLIC_FIELD, self.identity_key.serialize()) + _encode_field(
            _PRIVATE_FIELD, self.private_key
        )

    @classmethod
    def deserialize(cls, data: bytes) -> IdentityKeyPair:
        fields = _decode_fields(bytes(data))
        try:
            public = fields[_PUBLIC_FIELD]
            private = fields[_PRIVATE_FIELD]
        except KeyError as missing:
            raise InvalidKeyError(f"identity keypair is missing field {missing.args[0]}") from None
        return cls.from_parts(public, private)


@dataclass(repr=False)
class Identity:
    """Identity-level state persisted during linking."""

    identity_keypair: IdentityKeyPair
    registration_id: int
    account_number: str
    device_id: int
    link_status: LinkStatus

    def __repr__(self) -> str:
        return (
            "Identity(identity_keypair=<elided>, "
            f"registration_id={self.registration_id!r}, "
            f"account_number={self.account_number!r}, "
            f"device_id={self.device_id!r}, "
            f"link_status={self.link_status!r})"
        )