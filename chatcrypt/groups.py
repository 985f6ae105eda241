"""
Group key distribution.

A group shares one AES-256 key. The creator wraps it separately for each
member: a fresh ephemeral P-256 pair is generated per member, ECDH with
the member's identity key yields the wrapping key, and the group key is
sealed under it. No member's private key leaves their device.
"""

import hmac
import logging
from typing import Dict, Mapping, Union
from dataclasses import dataclass
from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import ValidationError

from .config import KEY_SIZE, NONCE_SIZE, TAG_SIZE, GROUP_KEY_SEPARATOR
from .ecdh import EphemeralKeyPair, generate_keypair, export_public_key, import_public_key, exchange_key, fingerprint
from .primitives import (
    SymmetricKey,
    EncryptedEnvelope,
    EncodingFailure,
    KeyImportFailure,
    encrypt,
    decrypt,
    decode_text,
    random_bytes,
    b64encode,
    b64decode,
)
from .wire import GroupKeyPayload

logger = logging.getLogger(__name__)


class GroupKey(SymmetricKey):
    """
    AES-256 key shared by every member of a group.

    Unlike keys derived from an exchange, a group key can be exported,
    since it has to be wrapped for members and cached between sessions.
    """

    __slots__ = ("_raw",)

    def __init__(self, key_bytes: bytes):
        super().__init__(key_bytes)
        self._raw = bytes(key_bytes)

    def export(self) -> bytes:
        return self._raw

    def __eq__(self, other) -> bool:
        if not isinstance(other, GroupKey):
            return NotImplemented
        return hmac.compare_digest(self._raw, other._raw)

    __hash__ = None


@dataclass
class GroupKeyEnvelope:
    """
    A group key wrapped for exactly one member.

    Attributes:
        ciphertext: Wrapped key (AES-GCM, tag appended)
        nonce: 12-byte nonce of the wrapping encryption
        ephemeral_public_key: Raw public key of the wrapping ephemeral pair
    """
    ciphertext: bytes
    nonce: bytes
    ephemeral_public_key: bytes

    def combined(self) -> str:
        """The "<base64 ciphertext>:<base64 nonce>" string"""
        return b64encode(self.ciphertext) + GROUP_KEY_SEPARATOR + b64encode(self.nonce)

    def to_wire(self) -> GroupKeyPayload:
        return GroupKeyPayload(
            encrypted_group_key=self.combined(),
            ephemeral_public_key=b64encode(self.ephemeral_public_key),
        )

    def to_dict(self) -> dict:
        return self.to_wire().to_dict()

    @classmethod
    def from_wire(cls, data: Union[GroupKeyPayload, Mapping]) -> 'GroupKeyEnvelope':
        """
        Parse the wire form of a wrapped group key.

        Raises:
            EncodingFailure: If the separator or either half is missing or malformed
        """
        if not isinstance(data, GroupKeyPayload):
            try:
                data = GroupKeyPayload.model_validate(data)
            except ValidationError as e:
                raise EncodingFailure(f"Malformed group key payload: {e}") from e

        parts = data.encrypted_group_key.split(GROUP_KEY_SEPARATOR)
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise EncodingFailure("Wrapped group key must be '<ciphertext>:<nonce>'")

        ciphertext = b64decode(parts[0])
        nonce = b64decode(parts[1])
        if len(nonce) != NONCE_SIZE:
            raise EncodingFailure(f"Wrapped group key nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")
        if len(ciphertext) < TAG_SIZE:
            raise EncodingFailure("Wrapped group key ciphertext is shorter than its tag")

        return cls(
            ciphertext=ciphertext,
            nonce=nonce,
            ephemeral_public_key=b64decode(data.ephemeral_public_key),
        )


def create_group_key() -> GroupKey:
    """Generate a fresh random 256-bit group key"""
    logger.debug("Generated group key")
    return GroupKey(random_bytes(KEY_SIZE))


def export_group_key(group_key: GroupKey) -> bytes:
    """Raw 32-byte form of a group key"""
    return group_key.export()


def import_group_key(key_bytes: bytes) -> GroupKey:
    """
    Rebuild a group key from its raw form.

    Raises:
        KeyImportFailure: If key_bytes is not 32 bytes long
    """
    return GroupKey(key_bytes)


def wrap_for_member(group_key: GroupKey, member_public_key: ec.EllipticCurvePublicKey) -> GroupKeyEnvelope:
    """
    Wrap the group key for one member.

    Every call uses its own ephemeral pair, which is dropped as soon as the
    wrapping key has been derived. The sealed payload is the base64 text
    of the raw key, the form existing clients expect.
    """
    ephemeral: EphemeralKeyPair = generate_keypair()
    wrapping_key = exchange_key(ephemeral.private_key, member_public_key)

    sealed = encrypt(b64encode(group_key.export()).encode("ascii"), wrapping_key)

    logger.debug("Wrapped group key for member %s", fingerprint(member_public_key))
    return GroupKeyEnvelope(
        ciphertext=sealed.ciphertext,
        nonce=sealed.nonce,
        ephemeral_public_key=export_public_key(ephemeral),
    )


def wrap_for_members(group_key: GroupKey,
                     members: Mapping[str, ec.EllipticCurvePublicKey]) -> Dict[str, GroupKeyEnvelope]:
    """
    Wrap the group key for every member of a new group.

    Args:
        group_key: Key from create_group_key()
        members: Member identifier -> identity public key

    Returns:
        Member identifier -> that member's envelope
    """
    return {member_id: wrap_for_member(group_key, public_key) for member_id, public_key in members.items()}


def unwrap_for_self(envelope: Union[GroupKeyEnvelope, GroupKeyPayload, Mapping],
                    my_private: ec.EllipticCurvePrivateKey) -> GroupKey:
    """
    Recover the group key from an envelope addressed to us.

    Args:
        envelope: The envelope, or its wire form
        my_private: Our identity private key

    Returns:
        The group key

    Raises:
        EncodingFailure: If the wire form is malformed
        KeyImportFailure: If the ephemeral key or recovered key is invalid
        DecryptionFailure: If the envelope was not wrapped for this key
    """
    if not isinstance(envelope, GroupKeyEnvelope):
        envelope = GroupKeyEnvelope.from_wire(envelope)

    ephemeral_public = import_public_key(envelope.ephemeral_public_key)
    wrapping_key = exchange_key(my_private, ephemeral_public)

    sealed = decrypt(EncryptedEnvelope(ciphertext=envelope.ciphertext, nonce=envelope.nonce), wrapping_key)
    key_bytes = b64decode(decode_text(sealed))
    if len(key_bytes) != KEY_SIZE:
        raise KeyImportFailure(f"Unwrapped group key is {len(key_bytes)} bytes")

    logger.debug("Unwrapped group key")
    return GroupKey(key_bytes)


def encrypt_group_message(message: str, group_key: GroupKey) -> EncryptedEnvelope:
    """Encrypt a group message under the shared group key"""
    return encrypt(message.encode("utf-8"), group_key)


def decrypt_group_message(envelope: EncryptedEnvelope, group_key: GroupKey) -> str:
    """Decrypt a group message with the shared group key"""
    return decode_text(decrypt(envelope, group_key))
