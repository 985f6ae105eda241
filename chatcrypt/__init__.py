"""
End-to-end encryption engine for chat clients.

Implements the client-side cryptography of a chat application:
- ECDH (P-256) key exchange with HKDF-SHA256 key derivation
- AES-256-GCM authenticated encryption of messages
- PBKDF2 password protection of the long-term private key
- Group key distribution wrapped per member
"""

from .primitives import (
    CryptoError,
    KeyGenerationFailure,
    KeyImportFailure,
    EncodingFailure,
    KeyExchangeFailure,
    DecryptionFailure,
    WrongPassword,
    SymmetricKey,
    EncryptedEnvelope,
    encrypt,
    decrypt,
    b64encode,
    b64decode,
)
from .ecdh import (
    IdentityKeyPair,
    generate_keypair,
    export_public_key,
    import_public_key,
    serialize_private_key,
    load_private_key,
    derive_shared_secret,
    derive_symmetric_key,
)
from .vault import PasswordProtectedRecord, protect, unprotect, unlock_identity
from .groups import (
    GroupKey,
    GroupKeyEnvelope,
    create_group_key,
    wrap_for_member,
    unwrap_for_self,
    encrypt_group_message,
    decrypt_group_message,
)
from .direct import DirectMessage, encrypt_direct_message, decrypt_received, decrypt_sent

__all__ = [
    'CryptoError',
    'KeyGenerationFailure',
    'KeyImportFailure',
    'EncodingFailure',
    'KeyExchangeFailure',
    'DecryptionFailure',
    'WrongPassword',
    'SymmetricKey',
    'EncryptedEnvelope',
    'encrypt',
    'decrypt',
    'b64encode',
    'b64decode',
    'IdentityKeyPair',
    'generate_keypair',
    'export_public_key',
    'import_public_key',
    'serialize_private_key',
    'load_private_key',
    'derive_shared_secret',
    'derive_symmetric_key',
    'PasswordProtectedRecord',
    'protect',
    'unprotect',
    'unlock_identity',
    'GroupKey',
    'GroupKeyEnvelope',
    'create_group_key',
    'wrap_for_member',
    'unwrap_for_self',
    'encrypt_group_message',
    'decrypt_group_message',
    'DirectMessage',
    'encrypt_direct_message',
    'decrypt_received',
    'decrypt_sent',
]
