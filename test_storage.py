#!/usr/bin/env python3
"""
Tests for the group key cache and its stores.
"""

import sys
import sqlite3
import tempfile
from pathlib import Path

from chatcrypt.primitives import EncodingFailure, KeyImportFailure, WrongPassword
from chatcrypt.groups import create_group_key, export_group_key
from chatcrypt.storage import MemoryStore, SQLiteStore, GroupKeyCache


def test_memory_cache():
    """Test caching group keys in memory"""
    print("Testing memory cache...")

    store = MemoryStore()
    cache = GroupKeyCache(store)
    group_key = create_group_key()

    assert cache.get("group-1") is None, "Empty cache returned a key"
    cache.put("group-1", group_key)
    assert cache.get("group-1") == group_key, "Cached key differs"

    # Stored shape: base64 text of the raw key
    assert len(store.get("group-1")) == 44, "Unexpected cached value shape"

    cache.forget("group-1")
    assert cache.get("group-1") is None, "Forgotten key still cached"
    cache.forget("group-1")

    print("✓ Memory cache works")


def test_corrupt_cache_values():
    """Corrupt cached values raise instead of returning a bad key"""
    print("Testing corrupt cache values...")

    store = MemoryStore()
    cache = GroupKeyCache(store)

    store.set("bad-base64", "***")
    try:
        cache.get("bad-base64")
        assert False, "Bad base64 accepted"
    except EncodingFailure:
        pass

    store.set("short", "c2hvcnQ=")
    try:
        cache.get("short")
        assert False, "Short key accepted"
    except KeyImportFailure:
        pass

    print("✓ Corrupt values are rejected")


def test_sqlite_store():
    """Test the encrypted SQLite store across reopen"""
    print("Testing SQLite store...")

    with tempfile.TemporaryDirectory() as tmp:
        db_path = Path(tmp) / "alice" / "keys.db"
        group_key = create_group_key()

        store = SQLiteStore(str(db_path), "correct-horse")
        GroupKeyCache(store).put("group-1", group_key)
        store.set("note", "plain value")
        store.close()

        # Values are not stored in the clear
        raw_db = sqlite3.connect(str(db_path))
        blobs = [bytes(row[0]) for row in raw_db.execute("SELECT encrypted_value FROM entries")]
        raw_db.close()
        assert len(blobs) == 2, "Wrong number of entries"
        assert all(b"plain value" not in blob for blob in blobs), "Value stored in the clear"
        assert all(export_group_key(group_key) not in blob for blob in blobs), "Key stored in the clear"

        store = SQLiteStore(str(db_path), "correct-horse")
        assert GroupKeyCache(store).get("group-1") == group_key, "Key lost across reopen"
        assert store.get("note") == "plain value", "Value lost across reopen"
        assert store.get("missing") is None, "Missing key returned a value"
        store.delete("note")
        assert store.get("note") is None, "Deleted value still present"
        store.close()

    print("✓ SQLite store works")


def test_sqlite_wrong_password():
    """Opening a store with another password fails immediately"""
    print("Testing SQLite store password...")

    with tempfile.TemporaryDirectory() as tmp:
        db_path = str(Path(tmp) / "keys.db")
        SQLiteStore(db_path, "correct-horse").close()

        try:
            SQLiteStore(db_path, "wrong-horse")
            assert False, "Wrong password opened the store"
        except WrongPassword:
            pass

    print("✓ SQLite store password is checked")


def test_sqlite_corrupt_file():
    """A file that is not a database raises and closes its connection"""
    print("Testing corrupt SQLite file...")

    closed = []

    class RecordingStore(SQLiteStore):
        def close(self):
            closed.append(self.db is not None)
            super().close()

    with tempfile.TemporaryDirectory() as tmp:
        db_path = Path(tmp) / "keys.db"
        db_path.write_bytes(b"not a database" * 100)

        try:
            RecordingStore(str(db_path), "correct-horse")
            assert False, "Corrupt file opened as a store"
        except sqlite3.DatabaseError:
            pass

        assert closed == [True], "Connection left open after failure"

    print("✓ Corrupt file is rejected")


def test_sqlite_interrupted_creation():
    """A failure while creating the store leaves no partial metadata"""
    print("Testing interrupted SQLite store creation...")

    class FailingStore(SQLiteStore):
        def _seal(self, data):
            raise RuntimeError("sealing failed")

    with tempfile.TemporaryDirectory() as tmp:
        db_path = str(Path(tmp) / "keys.db")

        try:
            FailingStore(db_path, "correct-horse")
            assert False, "Failing store was created"
        except RuntimeError:
            pass

        raw_db = sqlite3.connect(db_path)
        rows = raw_db.execute("SELECT name FROM metadata").fetchall()
        raw_db.close()
        assert rows == [], "Salt written without its check value"

        # The next open starts from scratch
        store = SQLiteStore(db_path, "correct-horse")
        store.set("note", "value")
        store.close()
        store = SQLiteStore(db_path, "correct-horse")
        assert store.get("note") == "value", "Value lost after recovery"
        store.close()

    print("✓ Store creation is atomic")


def run_all_tests():
    """Run all tests"""
    print("\n" + "="*50)
    print("Running Storage Tests")
    print("="*50 + "\n")

    try:
        test_memory_cache()
        test_corrupt_cache_values()
        test_sqlite_store()
        test_sqlite_wrong_password()
        test_sqlite_corrupt_file()
        test_sqlite_interrupted_creation()

        print("\n" + "="*50)
        print("✓ All tests passed!")
        print("="*50 + "\n")
        return 0

    except AssertionError as e:
        print(f"\n✗ Test failed: {e}")
        return 1
    except Exception as e:
        print(f"\n✗ Unexpected error: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(run_all_tests())
