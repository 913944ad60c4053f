"""
Key-value storage for snapshots

Every backend stores plain strings under string keys, like browser local
storage. Use get_storage() to build the backend configured by the environment:
MongoDB when DATABASE_URL and DATABASE_NAME are set, files under STORAGE_DIR
otherwise.
"""
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional

from pymongo import MongoClient
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
STORAGE_DIR = os.getenv("STORAGE_DIR", ".lojasimples")


class StorageError(Exception):
    """Raised when a backend cannot read or write a key."""


class MemoryStorage:
    def __init__(self, items: Optional[Dict[str, str]] = None):
        self.items: Dict[str, str] = dict(items or {})

    def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


class FileStorage:
    """One `<key>.json` file per key inside `directory`."""

    def __init__(self, directory):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Cannot read {path}: {e}") from e

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            # unique temp file per write, concurrent writers must not share it
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.directory, prefix=f"{key}.", suffix=".tmp", delete=False
            ) as f:
                tmp = f.name
                f.write(value)
            os.replace(tmp, path)
        except OSError as e:
            if tmp is not None:
                Path(tmp).unlink(missing_ok=True)
            raise StorageError(f"Cannot write {path}: {e}") from e

    def remove_item(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot remove {key}: {e}") from e


class MongoStorage:
    """
    Snapshots collection schema
    Collection name: "snapshot", one document {"_id": key, "value": str} per key
    """

    def __init__(self, db, collection: str = "snapshot"):
        self.db = db
        self.collection = db[collection]

    def get_item(self, key: str) -> Optional[str]:
        try:
            doc = self.collection.find_one({"_id": key})
        except PyMongoError as e:
            raise StorageError(str(e)) from e
        return doc.get("value") if doc else None

    def set_item(self, key: str, value: str) -> None:
        try:
            self.collection.update_one({"_id": key}, {"$set": {"value": value}}, upsert=True)
        except PyMongoError as e:
            raise StorageError(str(e)) from e

    def remove_item(self, key: str) -> None:
        try:
            self.collection.delete_one({"_id": key})
        except PyMongoError as e:
            raise StorageError(str(e)) from e


def get_storage():
    if DATABASE_URL and DATABASE_NAME:
        client = MongoClient(DATABASE_URL)
        logger.info("Using MongoDB storage (database %s)", DATABASE_NAME)
        return MongoStorage(client[DATABASE_NAME])
    logger.info("Using file storage in %s", STORAGE_DIR)
    return FileStorage(STORAGE_DIR)
