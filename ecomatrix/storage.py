import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional, Protocol

from .config import STORE_QUOTA_BYTES
from .errors import StorageFailure, StorageQuotaExceeded

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


def _usage(items: Dict[str, str]) -> int:
    return sum(len(k.encode("utf-8")) + len(v.encode("utf-8")) for k, v in items.items())


class MemoryStore:
    """In-process store with the same quota semantics as the file store."""

    def __init__(self, quota_bytes: int = STORE_QUOTA_BYTES,
                 initial: Optional[Dict[str, str]] = None):
        self.quota_bytes = quota_bytes
        self.items: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set(self, key: str, value: str) -> None:
        candidate = dict(self.items)
        candidate[key] = value
        if _usage(candidate) > self.quota_bytes:
            raise StorageQuotaExceeded("Storage is full.")
        self.items = candidate

    def remove(self, key: str) -> None:
        self.items.pop(key, None)


class JsonFileStore:
    """
    Key-value store backed by one JSON object on disk.
    Writes go through a temp file and an atomic replace.
    """

    def __init__(self, path: Path, quota_bytes: int = STORE_QUOTA_BYTES):
        self.path = Path(path)
        self.quota_bytes = quota_bytes

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StorageFailure(f"Could not read {self.path}: {e}", cause=e)
        if not isinstance(data, dict):
            raise StorageFailure(f"{self.path} does not hold a JSON object")
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write_all(self, items: Dict[str, str]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(items), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            raise StorageFailure(f"Could not write {self.path}: {e}", cause=e)

    def get(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        items = self._read_all()
        items[key] = value
        if _usage(items) > self.quota_bytes:
            raise StorageQuotaExceeded("Storage is full.")
        self._write_all(items)

    def remove(self, key: str) -> None:
        items = self._read_all()
        if key in items:
            del items[key]
            self._write_all(items)
