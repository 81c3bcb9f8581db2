"""Persisting a decrypted provisioning message and finishing the link."""

from __future__ import annotations

import logging

from .keys import IdentityKeyPair, InvalidKeyError, LinkStatus
from .provisioning import LinkOutcome, ProvisionMessage, generate_registration_id
from .store import SqliteStore

_log = logging.getLogger(__name__)

# The real device id is assigned by the server when linking completes.
PLACEHOLDER_DEVICE_ID = 0


class LinkError(Exception):
    """Linking could not proceed."""


class MissingFieldError(LinkError):
    """The provisioning message lacks a field linking needs."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"ProvisionMessage missing required field: {field}")


class InvalidIdentityKeyError(LinkError):
    """The provisioning message carries key bytes that do not parse."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(
            f"ProvisionMessage carries an invalid identity keypair: {detail}; "
            "linking aborted before persisting"
        )


def _keypair(public: bytes, private: bytes, label: str) -> IdentityKeyPair:
    try:
        return IdentityKeyPair.from_parts(public, private)
    except InvalidKeyError as error:
        raise InvalidIdentityKeyError(f"{label}: {error}") from error


def persist_provision_message(store: SqliteStore, msg: ProvisionMessage) -> LinkOutcome:
    """Store the identity from ``msg`` with link status IDENTITY_PERSISTED.

    The ACI keypair and number are required and validated before anything
    is written. Optional fields (ACI, PNI, PNI keypair, profile key and
    provisioning code) are stored when present.
    """
    _log.debug(
        "persist_provision_message: number=%s provisioning_version=%s",
        msg.number if msg.number is not None else "<missing>",
        msg.provisioning_version,
    )
    if msg.aci_identity_key_public is None:
        raise MissingFieldError("aciIdentityKeyPublic")
    if msg.aci_identity_key_private is None:
        raise MissingFieldError("aciIdentityKeyPrivate")
    if msg.number is None:
        raise MissingFieldError("number")
    number = msg.number

    try:
        from .keys import IdentityKey

        identity_public = IdentityKey.decode(msg.aci_identity_key_public)
    except InvalidKeyError as error:
        raise InvalidIdentityKeyError(f"aci pub: {error}") from error
    try:
        identity_keypair = IdentityKeyPair(identity_public, bytes(msg.aci_identity_key_private))
    except InvalidKeyError as error:
        raise InvalidIdentityKeyError(f"aci priv: {error}") from error

    store.save_identity_bundle(
        identity_keypair,
        generate_registration_id(),
        number,
        PLACEHOLDER_DEVICE_ID,
        LinkStatus.IDENTITY_PERSISTED,
    )

    if msg.aci is not None:
        store.set_aci(msg.aci)
    if msg.pni is not None:
        store.set_pni(msg.pni)
    if msg.pni_identity_key_public is not None and msg.pni_identity_key_private is not None:
        try:
            from .keys import IdentityKey

            pni_public = IdentityKey.decode(msg.pni_identity_key_public)
        except InvalidKeyError as error:
            raise InvalidIdentityKeyError(f"pni pub: {error}") from error
        try:
            pni_keypair = IdentityKeyPair(pni_public, bytes(msg.pni_identity_key_private))
        except InvalidKeyError as error:
            raise InvalidIdentityKeyError(f"pni priv: {error}") from error
        store.set_pni_identity_keypair(pni_keypair)
    if msg.profile_key is not None:
        store.set_profile_key(msg.profile_key)
    if msg.provisioning_code is not None:
        store.set_provisioning_code(msg.provisioning_code)

    _log.info(
        "persist_provision_message: persisted identity for %s link_status=identity_persisted",
        number,
    )
    return LinkOutcome(account_number=number, device_id=PLACEHOLDER_DEVICE_ID)


def mark_linked(store: SqliteStore) -> None:
    """Move the stored link status to LINKED."""
    _log.debug("mark_linked: transitioning identity_persisted -> linked")
    store.set_link_status(LinkStatus.LINKED)