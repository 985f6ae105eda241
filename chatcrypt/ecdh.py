"""
Elliptic-Curve Diffie-Hellman over NIST P-256

Identity and ephemeral key pairs, raw public key encoding, and the
derivation of an AES-256 key from an ECDH shared secret via HKDF-SHA256.
"""

import json
import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .config import CURVE_NAME, JWK_CURVE, SCALAR_SIZE, PUBLIC_KEY_SIZE, SHARED_SECRET_SIZE, KEY_SIZE, HKDF_SALT, HKDF_INFO
from .primitives import (
    SymmetricKey,
    KeyGenerationFailure,
    KeyImportFailure,
    KeyExchangeFailure,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdentityKeyPair:
    """
    A P-256 key pair.

    The same shape serves as a user's long-term identity and as the
    single-use ephemeral pair generated for one exchange.
    """
    private_key: ec.EllipticCurvePrivateKey
    public_key: ec.EllipticCurvePublicKey

    def __repr__(self) -> str:
        return f"<IdentityKeyPair {fingerprint(self.public_key)}>"


EphemeralKeyPair = IdentityKeyPair


def _encode_point(public_key: ec.EllipticCurvePublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint
    )


def fingerprint(public_key: ec.EllipticCurvePublicKey) -> str:
    """Short hex digest of a public key, safe to log"""
    return hashlib.sha256(_encode_point(public_key)).hexdigest()[:16]


def generate_keypair() -> IdentityKeyPair:
    """
    Generate a fresh P-256 key pair from the secure random source.

    Raises:
        KeyGenerationFailure: If the backend cannot generate P-256 keys
    """
    try:
        private_key = ec.generate_private_key(ec.SECP256R1())
    except (UnsupportedAlgorithm, NotImplementedError) as e:
        raise KeyGenerationFailure(f"Cannot generate P-256 key pair: {e}") from e

    pair = IdentityKeyPair(private_key=private_key, public_key=private_key.public_key())
    logger.debug("Generated key pair %s", fingerprint(pair.public_key))
    return pair


def export_public_key(pair: IdentityKeyPair) -> bytes:
    """Serialize the public half to its 65-byte uncompressed point"""
    return _encode_point(pair.public_key)


def import_public_key(key_bytes: bytes) -> ec.EllipticCurvePublicKey:
    """
    Parse a raw uncompressed P-256 point.

    Raises:
        KeyImportFailure: If the length is wrong or the point is not on the curve
    """
    if len(key_bytes) != PUBLIC_KEY_SIZE or key_bytes[0] != 0x04:
        raise KeyImportFailure(
            f"Expected {PUBLIC_KEY_SIZE}-byte uncompressed P-256 point, got {len(key_bytes)} bytes"
        )
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), bytes(key_bytes))
    except ValueError as e:
        raise KeyImportFailure(f"Invalid P-256 point: {e}") from e


def _jwk_coordinate(value: int) -> str:
    return base64.urlsafe_b64encode(value.to_bytes(SCALAR_SIZE, "big")).rstrip(b"=").decode("ascii")


def _jwk_integer(jwk: dict, name: str) -> int:
    text = jwk.get(name)
    if not isinstance(text, str) or not text:
        raise KeyImportFailure(f"JWK is missing '{name}'")
    try:
        raw = base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
    except (binascii.Error, ValueError) as e:
        raise KeyImportFailure(f"JWK field '{name}' is not base64url: {e}") from e
    if len(raw) != SCALAR_SIZE:
        raise KeyImportFailure(f"JWK field '{name}' must be {SCALAR_SIZE} bytes")
    return int.from_bytes(raw, "big")


def serialize_private_key(pair: IdentityKeyPair) -> bytes:
    """
    Serialize the private half as a JSON Web Key (UTF-8 JSON).

    This is the form browser clients export with WebCrypto, so records
    protected by either side open on the other. Only ever pass the result
    to the password vault.
    """
    numbers = pair.private_key.private_numbers()
    jwk = {
        "crv": JWK_CURVE,
        "d": _jwk_coordinate(numbers.private_value),
        "ext": True,
        "key_ops": ["deriveKey", "deriveBits"],
        "kty": "EC",
        "x": _jwk_coordinate(numbers.public_numbers.x),
        "y": _jwk_coordinate(numbers.public_numbers.y),
    }
    return json.dumps(jwk).encode("utf-8")


def _load_jwk(key_bytes: bytes) -> ec.EllipticCurvePrivateKey:
    try:
        jwk = json.loads(key_bytes.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise KeyImportFailure(f"Cannot parse JWK: {e}") from e

    if not isinstance(jwk, dict) or jwk.get("kty") != "EC" or jwk.get("crv") != JWK_CURVE:
        raise KeyImportFailure("JWK is not a P-256 EC key")

    try:
        private_key = ec.derive_private_key(_jwk_integer(jwk, "d"), ec.SECP256R1())
    except ValueError as e:
        raise KeyImportFailure(f"Invalid P-256 private scalar: {e}") from e

    # x and y are optional, but when present they must match d
    public_numbers = private_key.public_key().public_numbers()
    for name, expected in (("x", public_numbers.x), ("y", public_numbers.y)):
        if name in jwk and _jwk_integer(jwk, name) != expected:
            raise KeyImportFailure(f"JWK '{name}' does not match the private key")

    return private_key


def load_private_key(key_bytes: bytes) -> IdentityKeyPair:
    """
    Restore a key pair from a serialized private key.

    Accepts the JWK form written by serialize_private_key() and by
    WebCrypto clients, as well as PKCS#8 DER.

    Raises:
        KeyImportFailure: If the bytes do not hold a P-256 private key
    """
    if bytes(key_bytes).lstrip()[:1] == b"{":
        private_key = _load_jwk(bytes(key_bytes))
    else:
        try:
            private_key = serialization.load_der_private_key(key_bytes, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise KeyImportFailure(f"Cannot load private key: {e}") from e

    if not isinstance(private_key, ec.EllipticCurvePrivateKey) or private_key.curve.name != CURVE_NAME:
        raise KeyImportFailure("Private key is not a P-256 key")

    return IdentityKeyPair(private_key=private_key, public_key=private_key.public_key())


def _check_curve(key, kind: str):
    curve = getattr(key, "curve", None)
    if curve is None or curve.name != CURVE_NAME:
        found = curve.name if curve is not None else type(key).__name__
        raise KeyExchangeFailure(f"{kind} is not a P-256 key ({found})")


def derive_shared_secret(my_private: ec.EllipticCurvePrivateKey,
                         their_public: ec.EllipticCurvePublicKey) -> bytes:
    """
    Perform ECDH and return the 32-byte x-coordinate of the shared point.

    derive_shared_secret(a.private, b.public) == derive_shared_secret(b.private, a.public)

    Raises:
        KeyExchangeFailure: If either key is not a P-256 key of the right kind
    """
    if not isinstance(my_private, ec.EllipticCurvePrivateKey):
        raise KeyExchangeFailure("Own key must be an EC private key")
    if not isinstance(their_public, ec.EllipticCurvePublicKey):
        raise KeyExchangeFailure("Peer key must be an EC public key")
    _check_curve(my_private, "Own key")
    _check_curve(their_public, "Peer key")

    try:
        secret = my_private.exchange(ec.ECDH(), their_public)
    except ValueError as e:
        raise KeyExchangeFailure(f"ECDH failed: {e}") from e

    logger.debug("Derived shared secret with %s", fingerprint(their_public))
    return secret


def derive_symmetric_key(secret: bytes) -> SymmetricKey:
    """
    Turn a shared secret into an AES-256 key with HKDF-SHA256.

    The salt and info label are fixed, so the result depends only on the
    secret; both parties arrive at the same key.
    """
    if len(secret) != SHARED_SECRET_SIZE:
        raise KeyExchangeFailure(f"Shared secret must be {SHARED_SECRET_SIZE} bytes")

    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=HKDF_SALT,
        info=HKDF_INFO
    )
    return SymmetricKey(hkdf.derive(secret))


def exchange_key(my_private: ec.EllipticCurvePrivateKey,
                 their_public: ec.EllipticCurvePublicKey) -> SymmetricKey:
    """ECDH followed by HKDF, the usual path to a message key"""
    return derive_symmetric_key(derive_shared_secret(my_private, their_public))
