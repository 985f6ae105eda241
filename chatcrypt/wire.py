"""
Wire payloads exchanged with the chat server.

Every binary value is carried as base64 text. Field names on the wire
are camelCase; the Python attributes are snake_case.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class WirePayload(BaseModel):
    """Base model accepting either attribute names or wire aliases"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_dict(self) -> dict:
        """Serialize with wire field names"""
        return self.model_dump(by_alias=True, exclude_none=True)


class EnvelopePayload(WirePayload):
    """Ciphertext and nonce, as used for group messages"""
    encrypted_data: str = Field(alias="encryptedData")
    nonce: str


class DirectMessagePayload(WirePayload):
    """
    A direct message encrypted twice: once for the receiver and once for
    the sender's own history. Messages stored before the sender copy was
    introduced carry only the receiver triple.
    """
    encrypted_data: str = Field(alias="encryptedData")
    nonce: str
    sender_ephemeral_public_key: str = Field(alias="senderEphemeralPublicKey")
    sender_encrypted_data: Optional[str] = Field(default=None, alias="senderEncryptedData")
    sender_nonce: Optional[str] = Field(default=None, alias="senderNonce")
    sender_ephemeral_public_key_for_self: Optional[str] = Field(
        default=None, alias="senderEphemeralPublicKeyForSelf"
    )


class GroupKeyPayload(WirePayload):
    """Group key wrapped for one member: "<ciphertext>:<nonce>" plus ephemeral key"""
    encrypted_group_key: str = Field(alias="encryptedGroupKey")
    ephemeral_public_key: str = Field(alias="ephemeralPublicKey")


class ProtectedKeyPayload(WirePayload):
    """Private key encrypted under a password-derived key"""
    encrypted_private_key: str = Field(alias="encryptedPrivateKey")
    salt: str
    iv: str
