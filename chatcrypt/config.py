"""
Protocol constants for the chat encryption engine.

Both ends of a conversation must agree on every value here, so none of
them is read from the environment.
"""

# Elliptic curve used for identity and ephemeral keys (NIST P-256)
CURVE_NAME = "secp256r1"
JWK_CURVE = "P-256"
SCALAR_SIZE = 32
PUBLIC_KEY_SIZE = 65  # 0x04 || X || Y
SHARED_SECRET_SIZE = 32

# AES-256-GCM
KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16

# Password vault
SALT_SIZE = 16
PBKDF2_ITERATIONS = 100000

# HKDF stage turning an ECDH secret into an AES key
HKDF_SALT = b"\x00" * 32
HKDF_INFO = b"chat-encryption-v1"

# Separates ciphertext and nonce in a wrapped group key
GROUP_KEY_SEPARATOR = ":"
