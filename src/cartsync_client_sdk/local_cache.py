from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from platformdirs import user_data_dir
from pydantic import ValidationError as PydanticValidationError

from .logging_utils import get_logger
from .models import CartLine, CartSnapshot

CACHE_KEY_SUFFIXES = ("snapshot", "items_count")

logger = get_logger(__name__)


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


@dataclass
class MemoryStorage:
    values: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str) -> Any | None:
        return self.values.get(key)

    def set(self, key: str, value: Any) -> None:
        self.values[key] = value

    def delete(self, key: str) -> None:
        self.values.pop(key, None)


@dataclass
class JsonFileStorage:
    """Key/value pairs kept in one JSON document under the user data dir."""

    app_name: str = "cartsync"
    filename: str = "cart_cache.json"
    directory: Path | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _path(self) -> Path:
        base = self.directory or Path(user_data_dir(self.app_name, "cartsync"))
        base.mkdir(parents=True, exist_ok=True)
        return base / self.filename

    def _read_all(self) -> dict[str, Any]:
        path = self._path()
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            path.unlink(missing_ok=True)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict[str, Any]) -> None:
        path = self._path()
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        try:
            path.chmod(0o600)
        except OSError:
            pass

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            if data.pop(key, None) is not None:
                self._write_all(data)


def cache_key(identity_id: str, suffix: str) -> str:
    return f"cart:{identity_id}:{suffix}"


class LocalCartCache:
    """Per-identity snapshots used to paint the cart before the first sync."""

    def __init__(self, storage: KeyValueStorage | None = None) -> None:
        self.storage: KeyValueStorage = storage if storage is not None else MemoryStorage()

    def save(self, identity_id: str, snapshot: CartSnapshot) -> None:
        if not identity_id:
            raise ValueError("identity_id is required")
        if snapshot.identity_id != identity_id:
            raise ValueError("snapshot belongs to a different identity")
        payload = {
            "identity_id": identity_id,
            "lines": [
                line.model_copy(update={"pending": False}).model_dump(mode="json")
                for line in snapshot.lines.values()
            ],
        }
        self.storage.set(cache_key(identity_id, "snapshot"), payload)
        self.storage.set(cache_key(identity_id, "items_count"), snapshot.total_items)

    def load(self, identity_id: str) -> CartSnapshot | None:
        if not identity_id:
            return None
        key = cache_key(identity_id, "snapshot")
        payload = self.storage.get(key)
        if payload is None:
            return None
        if not isinstance(payload, dict) or payload.get("identity_id") != identity_id:
            logger.warning("discarding cart cache entry %s: wrong shape or owner", key)
            self.clear(identity_id)
            return None
        try:
            lines = [CartLine.model_validate(raw) for raw in payload.get("lines") or []]
        except PydanticValidationError:
            logger.warning("discarding corrupt cart cache entry %s", key)
            self.clear(identity_id)
            return None
        return CartSnapshot.from_lines(identity_id, lines, enabled=None)

    def clear(self, identity_id: str) -> None:
        for suffix in CACHE_KEY_SUFFIXES:
            self.storage.delete(cache_key(identity_id, suffix))
