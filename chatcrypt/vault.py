"""
Password vault for the long-term private key.

The serialized private key is encrypted under an AES key derived from
the user's password with PBKDF2-SHA256, so only the encrypted record ever
leaves the device.
"""

import logging
from dataclasses import dataclass
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import ValidationError

from .config import KEY_SIZE, SALT_SIZE, NONCE_SIZE, PBKDF2_ITERATIONS
from .ecdh import IdentityKeyPair, load_private_key
from .primitives import (
    SymmetricKey,
    EncryptedEnvelope,
    DecryptionFailure,
    EncodingFailure,
    WrongPassword,
    encrypt,
    decrypt,
    random_bytes,
    b64encode,
    b64decode,
)
from .wire import ProtectedKeyPayload

logger = logging.getLogger(__name__)


@dataclass
class PasswordProtectedRecord:
    """
    Private key encrypted under a password-derived key.

    Attributes:
        ciphertext: AES-GCM ciphertext of the serialized private key
        salt: 16-byte PBKDF2 salt
        iv: 12-byte AES-GCM nonce
    """
    ciphertext: bytes
    salt: bytes
    iv: bytes

    def to_wire(self) -> ProtectedKeyPayload:
        """Convert to the base64 form stored by the server"""
        return ProtectedKeyPayload(
            encrypted_private_key=b64encode(self.ciphertext),
            salt=b64encode(self.salt),
            iv=b64encode(self.iv),
        )

    def to_dict(self) -> dict:
        return self.to_wire().to_dict()

    @classmethod
    def from_dict(cls, data: dict) -> 'PasswordProtectedRecord':
        """
        Parse a record as returned by the server.

        Raises:
            EncodingFailure: If a field is missing or not valid base64
        """
        try:
            payload = ProtectedKeyPayload.model_validate(data)
        except ValidationError as e:
            raise EncodingFailure(f"Malformed key record: {e}") from e
        return cls(
            ciphertext=b64decode(payload.encrypted_private_key),
            salt=b64decode(payload.salt),
            iv=b64decode(payload.iv),
        )


def derive_key_from_password(password: str, salt: bytes) -> SymmetricKey:
    """
    Derive an AES-256 key from a password using PBKDF2.

    Args:
        password: User's password
        salt: Salt for key derivation

    Returns:
        Key handle for AES-256-GCM
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return SymmetricKey(kdf.derive(password.encode("utf-8")))


def protect(private_key_serialized: bytes, password: str) -> PasswordProtectedRecord:
    """
    Encrypt a serialized private key under a password.

    A fresh salt and IV are drawn on every call, so protecting the same
    key twice gives unrelated records.
    """
    salt = random_bytes(SALT_SIZE)
    key = derive_key_from_password(password, salt)
    envelope = encrypt(private_key_serialized, key)

    logger.debug("Protected %d-byte private key", len(private_key_serialized))
    return PasswordProtectedRecord(ciphertext=envelope.ciphertext, salt=salt, iv=envelope.nonce)


def unprotect(record: PasswordProtectedRecord, password: str) -> bytes:
    """
    Recover the serialized private key from a record.

    Raises:
        WrongPassword: If the record does not open with this password
    """
    if len(record.salt) != SALT_SIZE or len(record.iv) != NONCE_SIZE:
        raise EncodingFailure("Key record has a malformed salt or IV")

    key = derive_key_from_password(password, record.salt)
    try:
        return decrypt(EncryptedEnvelope(ciphertext=record.ciphertext, nonce=record.iv), key)
    except DecryptionFailure as e:
        raise WrongPassword("Incorrect password") from e


def unlock_identity(record: PasswordProtectedRecord, password: str) -> IdentityKeyPair:
    """
    Open a record and load the identity key pair it protects.

    This is the login path: the record comes from the server, the
    password from the user.
    """
    return load_private_key(unprotect(record, password))
