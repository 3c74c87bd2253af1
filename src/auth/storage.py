"""
Local Session Storage Module.

Persists the single StoredState record (identifier, Session, Profile) under a
fixed key. The record is always written whole and cleared whole; there are no
partial updates.

Backends:
- FileSessionStore: JSON file on local disk (the default)
- DynamoDBSessionStore: one DynamoDB item keyed by the storage key

DynamoDB Table Schema:
- storageKey (PK): Fixed storage key (default "userData")
- data: JSON-serialized StoredState
- updatedAt: ISO 8601 timestamp of the last write

Usage:
    from auth.storage import create_session_store, StorageConfig

    store = create_session_store(StorageConfig(backend="file", path="/tmp/auth.json"))
    await store.save(state)
    state = await store.load()
    await store.clear()
"""

import os
import json
import logging
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any
from dataclasses import dataclass, field

import boto3
from botocore.exceptions import ClientError
from pydantic import ValidationError

from auth.models import StoredState


logger = logging.getLogger(__name__)


DEFAULT_STORAGE_PATH = os.path.join(os.path.expanduser("~"), ".cognito-session", "state.json")


# ============================================================
# Configuration
# ============================================================

@dataclass
class StorageConfig:
    """Configuration for local session storage.

    Attributes:
        backend: Storage backend, "file" or "dynamodb"
        key: Fixed key the record is stored under
        path: File path for the file backend
        table_name: DynamoDB table name for the dynamodb backend
        region: AWS region for DynamoDB
        endpoint_url: Optional DynamoDB endpoint URL (for local development)
    """
    backend: str = field(default_factory=lambda: os.getenv(
        "AUTH_STORAGE_BACKEND", "file"
    ))
    key: str = field(default_factory=lambda: os.getenv(
        "AUTH_STORAGE_KEY", "userData"
    ))
    path: str = field(default_factory=lambda: os.getenv(
        "AUTH_STORAGE_PATH", DEFAULT_STORAGE_PATH
    ))
    table_name: str = field(default_factory=lambda: os.getenv(
        "AUTH_STORAGE_TABLE", "auth-session-state"
    ))
    region: str = field(default_factory=lambda: os.getenv(
        "AWS_DEFAULT_REGION", "us-east-1"
    ))
    endpoint_url: Optional[str] = field(default_factory=lambda: os.getenv(
        "DYNAMODB_ENDPOINT_URL"
    ))

    @classmethod
    def from_env(cls) -> "StorageConfig":
        """Create configuration from environment variables.

        Environment variables:
            AUTH_STORAGE_BACKEND: "file" (default) or "dynamodb"
            AUTH_STORAGE_KEY: Fixed record key (default: userData)
            AUTH_STORAGE_PATH: JSON file path for the file backend
            AUTH_STORAGE_TABLE: DynamoDB table name
            AWS_DEFAULT_REGION: AWS region
            DYNAMODB_ENDPOINT_URL: Optional endpoint URL for local dev
        """
        return cls()


def serialize_state(state: StoredState) -> str:
    """Serialize a record deterministically."""
    return json.dumps(state.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))


def deserialize_state(raw: str) -> Optional[StoredState]:
    """Parse a stored record, returning None for corrupt data."""
    try:
        return StoredState.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as e:
        logger.warning(f"Discarding unreadable session record: {e}")
        return None


# ============================================================
# Stores
# ============================================================

class SessionStore(ABC):
    """Key-value store holding one StoredState record under a fixed key."""

    @abstractmethod
    async def load(self) -> Optional[StoredState]:
        """Return the stored record, or None if nothing is stored."""

    @abstractmethod
    async def save(self, state: StoredState) -> None:
        """Overwrite the stored record."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove the stored record. Clearing an empty store is a no-op."""


class FileSessionStore(SessionStore):
    """Stores the record in a JSON file mapping storage keys to records.

    Other keys present in the file are preserved.
    """

    def __init__(self, path: str, key: str = "userData"):
        self.path = Path(path)
        self.key = key

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            content = json.loads(self.path.read_text(encoding="utf-8"))
        except ValueError as e:
            logger.warning(f"Session file is not valid JSON, ignoring: {e}")
            return {}
        return content if isinstance(content, dict) else {}

    def _write_all(self, content: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".state-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(content, f, sort_keys=True)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def load(self) -> Optional[StoredState]:
        raw = self._read_all().get(self.key)
        if raw is None:
            return None
        return deserialize_state(raw)

    async def save(self, state: StoredState) -> None:
        content = self._read_all()
        content[self.key] = serialize_state(state)
        self._write_all(content)
        logger.debug(f"Session record saved: key={self.key}")

    async def clear(self) -> None:
        content = self._read_all()
        if self.key in content:
            del content[self.key]
            self._write_all(content)
            logger.debug(f"Session record cleared: key={self.key}")


class DynamoDBSessionStore(SessionStore):
    """Stores the record as a single DynamoDB item."""

    def __init__(self, config: StorageConfig):
        self.config = config
        self._dynamodb = None
        self._table = None

    @property
    def dynamodb(self):
        """Lazy initialization of DynamoDB resource."""
        if self._dynamodb is None:
            self._dynamodb = boto3.resource(
                "dynamodb",
                region_name=self.config.region,
                endpoint_url=self.config.endpoint_url
            )
        return self._dynamodb

    @property
    def table(self):
        """Lazy initialization of DynamoDB table."""
        if self._table is None:
            self._table = self.dynamodb.Table(self.config.table_name)
        return self._table

    async def load(self) -> Optional[StoredState]:
        try:
            response = self.table.get_item(Key={"storageKey": self.config.key})
        except ClientError as e:
            logger.error(
                f"Failed to load session record: {e.response['Error']['Message']}",
                extra={"storage_key": self.config.key}
            )
            raise

        item = response.get("Item")
        if not item:
            return None
        return deserialize_state(item["data"])

    async def save(self, state: StoredState) -> None:
        item = {
            "storageKey": self.config.key,
            "data": serialize_state(state),
            "updatedAt": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.table.put_item(Item=item)
            logger.debug(f"Session record saved: key={self.config.key}")
        except ClientError as e:
            logger.error(
                f"Failed to save session record: {e.response['Error']['Message']}",
                extra={"storage_key": self.config.key}
            )
            raise

    async def clear(self) -> None:
        try:
            self.table.delete_item(Key={"storageKey": self.config.key})
            logger.debug(f"Session record cleared: key={self.config.key}")
        except ClientError as e:
            logger.error(
                f"Failed to clear session record: {e.response['Error']['Message']}",
                extra={"storage_key": self.config.key}
            )
            raise


def create_session_store(config: Optional[StorageConfig] = None) -> SessionStore:
    """Build the store selected by ``config.backend``.

    Raises:
        ValueError: If the backend is unknown
    """
    config = config or StorageConfig.from_env()
    if config.backend == "file":
        return FileSessionStore(config.path, key=config.key)
    if config.backend == "dynamodb":
        return DynamoDBSessionStore(config)
    raise ValueError(f"Unknown storage backend: {config.backend}")
