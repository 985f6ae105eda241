"""
Local key-value storage for unwrapped group keys.

The engine only needs a get/set contract from its host application.
MemoryStore covers tests and short-lived sessions; SQLiteStore keeps
values on disk, each one encrypted under a key derived from the user's
password.
"""

import sqlite3
import logging
from typing import Optional, Dict, Protocol
from pathlib import Path

from .config import SALT_SIZE, NONCE_SIZE
from .primitives import (
    EncryptedEnvelope,
    DecryptionFailure,
    WrongPassword,
    encrypt,
    decrypt,
    random_bytes,
    b64encode,
    b64decode,
)
from .groups import GroupKey, export_group_key, import_group_key
from .vault import derive_key_from_password

logger = logging.getLogger(__name__)

_CHECK_VALUE = b"chatcrypt-store"


class KeyValueStore(Protocol):
    """Persistent string store keyed by string identifiers"""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryStore:
    """Dictionary-backed store; contents are lost with the process"""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class SQLiteStore:
    """
    Encrypted key-value store in a SQLite database.

    Values are encrypted with AES-256-GCM under a key derived from the
    user's password. The PBKDF2 salt and an encrypted check value live in
    a metadata table, so opening with the wrong password fails at once
    instead of on the first read.
    """

    def __init__(self, db_path: str, password: str):
        """
        Open or create the store.

        Args:
            db_path: Path of the SQLite database file
            password: User's password

        Raises:
            WrongPassword: If the database was created with another password
            sqlite3.DatabaseError: If db_path is not a SQLite database
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db = sqlite3.connect(str(self.db_path))
        try:
            self._init_database()
            self._unlock(password)
        except Exception:
            self.close()
            raise

    def _unlock(self, password: str):
        """Derive the store key, creating salt and check value on first use"""
        salt = self._get_metadata("salt")
        if salt is None:
            salt = random_bytes(SALT_SIZE)
            self._key = derive_key_from_password(password, salt)
            check = self._seal(_CHECK_VALUE)
            # Salt and check value land together or not at all
            with self.db:
                self.db.executemany(
                    "INSERT OR REPLACE INTO metadata (name, value) VALUES (?, ?)",
                    [("salt", salt), ("check", check)]
                )
            logger.debug("Created key store at %s", self.db_path)
        else:
            self._key = derive_key_from_password(password, salt)
            try:
                self._unseal(self._get_metadata("check"))
            except DecryptionFailure as e:
                raise WrongPassword("Incorrect password for key store") from e

    def _init_database(self):
        """Create tables if missing"""
        cursor = self.db.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                key TEXT PRIMARY KEY,
                encrypted_value BLOB NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS metadata (
                name TEXT PRIMARY KEY,
                value BLOB NOT NULL
            )
        """)
        self.db.commit()

    def _get_metadata(self, name: str) -> Optional[bytes]:
        cursor = self.db.cursor()
        cursor.execute("SELECT value FROM metadata WHERE name = ?", (name,))
        row = cursor.fetchone()
        return bytes(row[0]) if row else None

    def _seal(self, data: bytes) -> bytes:
        envelope = encrypt(data, self._key)
        return envelope.nonce + envelope.ciphertext

    def _unseal(self, blob: Optional[bytes]) -> bytes:
        if not blob or len(blob) <= NONCE_SIZE:
            raise DecryptionFailure("Stored value is truncated")
        return decrypt(EncryptedEnvelope(ciphertext=blob[NONCE_SIZE:], nonce=blob[:NONCE_SIZE]), self._key)

    def get(self, key: str) -> Optional[str]:
        cursor = self.db.cursor()
        cursor.execute("SELECT encrypted_value FROM entries WHERE key = ?", (key,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._unseal(bytes(row[0])).decode("utf-8")

    def set(self, key: str, value: str) -> None:
        self.db.execute(
            "INSERT OR REPLACE INTO entries (key, encrypted_value) VALUES (?, ?)",
            (key, self._seal(value.encode("utf-8")))
        )
        self.db.commit()

    def delete(self, key: str) -> None:
        self.db.execute("DELETE FROM entries WHERE key = ?", (key,))
        self.db.commit()

    def close(self):
        """Close database connection"""
        if self.db:
            self.db.close()
            self.db = None


class GroupKeyCache:
    """
    Caches unwrapped group keys by group identifier.

    Values are the base64 text of the raw 32-byte key.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    def put(self, group_id: str, group_key: GroupKey):
        self.store.set(group_id, b64encode(export_group_key(group_key)))

    def get(self, group_id: str) -> Optional[GroupKey]:
        """
        Look up a cached group key.

        Raises:
            EncodingFailure: If the cached value is not valid base64
            KeyImportFailure: If the cached value is not a 32-byte key
        """
        value = self.store.get(group_id)
        if value is None:
            return None
        return import_group_key(b64decode(value))

    def forget(self, group_id: str):
        self.store.delete(group_id)
