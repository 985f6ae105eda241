"""
Direct message encryption.

Each direct message is sealed twice, each time under its own ephemeral
key pair and nonce:

- for the receiver: ECDH(ephemeral_1, receiver identity key)
- for the sender:   ECDH(ephemeral_2, sender identity key)

The second copy lets the sender read their own sent history later
without keeping any ephemeral private key around.
"""

import logging
from typing import Optional, Mapping, Union
from dataclasses import dataclass
from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import ValidationError

from .ecdh import EphemeralKeyPair, generate_keypair, export_public_key, import_public_key, exchange_key
from .primitives import (
    EncryptedEnvelope,
    EncodingFailure,
    encrypt,
    decrypt,
    decode_text,
    b64encode,
    b64decode,
)
from .wire import DirectMessagePayload

logger = logging.getLogger(__name__)


@dataclass
class DirectMessage:
    """
    Both encrypted copies of one direct message.

    Attributes:
        for_receiver: Envelope readable with the receiver's identity key,
            carrying the sender's ephemeral public key
        for_sender: Envelope readable with the sender's identity key, or
            None for messages stored before the sender copy existed
    """
    for_receiver: EncryptedEnvelope
    for_sender: Optional[EncryptedEnvelope] = None

    def to_wire(self) -> DirectMessagePayload:
        payload = {
            'encrypted_data': b64encode(self.for_receiver.ciphertext),
            'nonce': b64encode(self.for_receiver.nonce),
            'sender_ephemeral_public_key': b64encode(self.for_receiver.ephemeral_public_key),
        }
        if self.for_sender is not None:
            payload.update({
                'sender_encrypted_data': b64encode(self.for_sender.ciphertext),
                'sender_nonce': b64encode(self.for_sender.nonce),
                'sender_ephemeral_public_key_for_self': b64encode(self.for_sender.ephemeral_public_key),
            })
        return DirectMessagePayload(**payload)

    def to_dict(self) -> dict:
        return self.to_wire().to_dict()

    @classmethod
    def from_wire(cls, data: Union[DirectMessagePayload, Mapping]) -> 'DirectMessage':
        """
        Parse a direct message as delivered by the server.

        Raises:
            EncodingFailure: If a field is missing or not valid base64
        """
        if not isinstance(data, DirectMessagePayload):
            try:
                data = DirectMessagePayload.model_validate(data)
            except ValidationError as e:
                raise EncodingFailure(f"Malformed direct message: {e}") from e

        for_receiver = EncryptedEnvelope(
            ciphertext=b64decode(data.encrypted_data),
            nonce=b64decode(data.nonce),
            ephemeral_public_key=b64decode(data.sender_ephemeral_public_key),
        )

        sender_fields = (data.sender_encrypted_data, data.sender_nonce, data.sender_ephemeral_public_key_for_self)
        for_sender = None
        if all(sender_fields):
            for_sender = EncryptedEnvelope(
                ciphertext=b64decode(data.sender_encrypted_data),
                nonce=b64decode(data.sender_nonce),
                ephemeral_public_key=b64decode(data.sender_ephemeral_public_key_for_self),
            )
        elif any(sender_fields):
            raise EncodingFailure("Sender copy is incomplete")

        return cls(for_receiver=for_receiver, for_sender=for_sender)


def _seal_for(plaintext: bytes, recipient_public: ec.EllipticCurvePublicKey) -> EncryptedEnvelope:
    ephemeral: EphemeralKeyPair = generate_keypair()
    envelope = encrypt(plaintext, exchange_key(ephemeral.private_key, recipient_public))
    envelope.ephemeral_public_key = export_public_key(ephemeral)
    return envelope


def _open(envelope: EncryptedEnvelope, my_private: ec.EllipticCurvePrivateKey) -> str:
    if not envelope.ephemeral_public_key:
        raise EncodingFailure("Envelope carries no ephemeral public key")
    key = exchange_key(my_private, import_public_key(envelope.ephemeral_public_key))
    return decode_text(decrypt(envelope, key))


def encrypt_direct_message(message: str,
                           receiver_public: ec.EllipticCurvePublicKey,
                           sender_public: ec.EllipticCurvePublicKey) -> DirectMessage:
    """
    Encrypt a direct message for the receiver and for the sender's history.

    Args:
        message: Message text
        receiver_public: Receiver's identity public key
        sender_public: Our own identity public key

    Returns:
        DirectMessage holding both envelopes
    """
    plaintext = message.encode("utf-8")
    for_receiver = _seal_for(plaintext, receiver_public)
    for_sender = _seal_for(plaintext, sender_public)

    logger.debug("Encrypted direct message (%d bytes)", len(plaintext))
    return DirectMessage(for_receiver=for_receiver, for_sender=for_sender)


def decrypt_received(message: DirectMessage, my_private: ec.EllipticCurvePrivateKey) -> str:
    """
    Decrypt a message addressed to us.

    Raises:
        DecryptionFailure: If the message was not encrypted for this key
    """
    return _open(message.for_receiver, my_private)


def decrypt_sent(message: DirectMessage, my_private: ec.EllipticCurvePrivateKey) -> str:
    """
    Decrypt our own copy of a message we sent.

    Raises:
        EncodingFailure: If the message has no sender copy
        DecryptionFailure: If the sender copy was not encrypted for this key
    """
    if message.for_sender is None:
        raise EncodingFailure("Message has no copy encrypted for its sender")
    return _open(message.for_sender, my_private)
