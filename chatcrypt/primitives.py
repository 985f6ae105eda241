"""
Cryptographic Primitives for End-to-End Encryption

This module provides the foundational operations shared by direct and
group messaging: the error taxonomy, base64 transcoding for the wire,
opaque AES key handles and AES-256-GCM authenticated encryption.
"""

import os
import base64
import binascii
import logging
from typing import Optional, Mapping, Union
from dataclasses import dataclass
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import ValidationError

from .config import KEY_SIZE, NONCE_SIZE, TAG_SIZE
from .wire import EnvelopePayload

logger = logging.getLogger(__name__)


class CryptoError(Exception):
    """Base exception for cryptographic errors"""
    pass


class KeyGenerationFailure(CryptoError):
    """The platform could not produce a key or random bytes"""
    pass


class KeyImportFailure(CryptoError):
    """Key bytes have the wrong length, curve or structure"""
    pass


class EncodingFailure(CryptoError):
    """Malformed base64 text or wire payload"""
    pass


class KeyExchangeFailure(CryptoError):
    """ECDH could not be performed with the given keys"""
    pass


class DecryptionFailure(CryptoError):
    """Authentication tag mismatch: corrupted data or the wrong key"""
    pass


class WrongPassword(DecryptionFailure):
    """A password-protected record did not open with the given password"""
    pass


def b64encode(data: bytes) -> str:
    """
    Encode binary data as standard base64 text for transport.

    Raises:
        EncodingFailure: If data is empty or not bytes-like
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise EncodingFailure(f"Cannot encode {type(data).__name__} as base64")
    if len(data) == 0:
        raise EncodingFailure("Refusing to encode an empty buffer")
    return base64.b64encode(bytes(data)).decode("ascii")


def b64decode(text: str) -> bytes:
    """
    Decode base64 text received from the wire.

    Raises:
        EncodingFailure: If text is empty, not a string or not valid base64
    """
    if not text or not isinstance(text, str):
        raise EncodingFailure("Invalid base64 input")
    try:
        return base64.b64decode(text.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncodingFailure(f"Malformed base64: {e}") from e


def random_bytes(length: int) -> bytes:
    """
    Read bytes from the operating system CSPRNG.

    Raises:
        KeyGenerationFailure: If no secure random source is available
    """
    try:
        return os.urandom(length)
    except NotImplementedError as e:
        raise KeyGenerationFailure("No secure random source available") from e


class SymmetricKey:
    """
    Opaque AES-256-GCM key handle.

    The raw key bytes are handed to the cipher at construction time and
    not kept on the handle, so a derived key cannot be read back out.
    """

    __slots__ = ("_cipher",)

    def __init__(self, key_bytes: bytes):
        if len(key_bytes) != KEY_SIZE:
            raise KeyImportFailure(f"AES-256 key must be {KEY_SIZE} bytes, got {len(key_bytes)}")
        self._cipher = AESGCM(bytes(key_bytes))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} AES-256-GCM>"


@dataclass
class EncryptedEnvelope:
    """
    Ciphertext plus the nonce needed to open it.

    Attributes:
        ciphertext: AES-GCM output, tag appended (16 bytes)
        nonce: 12-byte nonce used for this encryption only
        ephemeral_public_key: Raw public key of the exchange that produced
            the key, when the envelope came from an ECDH derivation
    """
    ciphertext: bytes
    nonce: bytes
    ephemeral_public_key: Optional[bytes] = None

    def to_wire(self) -> EnvelopePayload:
        """Base64 form of ciphertext and nonce"""
        return EnvelopePayload(
            encrypted_data=b64encode(self.ciphertext),
            nonce=b64encode(self.nonce),
        )

    @classmethod
    def from_wire(cls, payload: Union[EnvelopePayload, Mapping]) -> 'EncryptedEnvelope':
        """
        Parse a base64 payload back into an envelope.

        Raises:
            EncodingFailure: If a field is missing or not valid base64
        """
        if not isinstance(payload, EnvelopePayload):
            try:
                payload = EnvelopePayload.model_validate(payload)
            except ValidationError as e:
                raise EncodingFailure(f"Malformed envelope: {e}") from e
        return cls(
            ciphertext=b64decode(payload.encrypted_data),
            nonce=b64decode(payload.nonce),
        )


def encrypt(plaintext: bytes, key: SymmetricKey) -> EncryptedEnvelope:
    """
    Encrypt a payload using AES-256-GCM.

    A fresh random 96-bit nonce is drawn for every call.

    Args:
        plaintext: Bytes to encrypt
        key: Key handle to encrypt under

    Returns:
        EncryptedEnvelope with ciphertext (tag appended) and nonce
    """
    nonce = random_bytes(NONCE_SIZE)
    ciphertext = key._cipher.encrypt(nonce, bytes(plaintext), None)
    logger.debug("Encrypted %d bytes -> %d bytes", len(plaintext), len(ciphertext))
    return EncryptedEnvelope(ciphertext=ciphertext, nonce=nonce)


def decrypt(envelope: EncryptedEnvelope, key: SymmetricKey) -> bytes:
    """
    Verify and decrypt an AES-256-GCM envelope.

    Args:
        envelope: Ciphertext and nonce from encrypt()
        key: Key handle the envelope was produced with

    Returns:
        Decrypted plaintext

    Raises:
        DecryptionFailure: If the data was altered or the key is wrong
    """
    if len(envelope.nonce) != NONCE_SIZE:
        raise DecryptionFailure(f"Nonce must be {NONCE_SIZE} bytes")
    if len(envelope.ciphertext) < TAG_SIZE:
        raise DecryptionFailure("Ciphertext too short")

    try:
        return key._cipher.decrypt(envelope.nonce, envelope.ciphertext, None)
    except InvalidTag as e:
        logger.warning("AES-GCM authentication failed")
        raise DecryptionFailure("Decryption failed: wrong key or corrupted data") from e


def decode_text(data: bytes) -> str:
    """
    Decode authenticated plaintext as UTF-8 message text.

    Raises:
        EncodingFailure: If the plaintext is not valid UTF-8
    """
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise EncodingFailure("Decrypted payload is not UTF-8 text") from e
