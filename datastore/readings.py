from __future__ import annotations
import json
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Tuple

from app.schemas import deserialize_reading, serialize_reading
from models.records import Reading
from settings import get_settings


class PersistenceError(RuntimeError):
    """Raised when a reading could not be durably stored."""


class MockReadingTable:
    """Document-store stand-in holding readings keyed by ``reading_id``."""

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._items: Dict[str, Reading] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def put_item(self, item: Reading) -> None:
        with self._lock:
            previous = self._items.get(item.reading_id)
            self._items[item.reading_id] = item
            try:
                self._persist()
            except (OSError, TypeError, ValueError) as exc:
                if previous is None:
                    del self._items[item.reading_id]
                else:
                    self._items[item.reading_id] = previous
                raise PersistenceError(
                    f"Could not store reading {item.reading_id!r} in table {self.name!r}."
                ) from exc

    def get_item(self, key: str) -> Optional[Reading]:
        with self._lock:
            return self._items.get(key)

    def latest(self, kind: str) -> Optional[Reading]:
        items = self.query(kind)
        return items[-1] if items else None

    def latest_per_device(self, kind: str) -> List[Reading]:
        newest: Dict[str, Reading] = {}
        for item in self.query(kind):
            newest[item.device_id] = item
        return [newest[device_id] for device_id in sorted(newest)]

    def query(
        self,
        kind: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        device_id: Optional[str] = None,
    ) -> List[Reading]:
        """Return readings of one kind ordered by timestamp, oldest first."""

        with self._lock:
            items = [item for item in self._items.values() if item.kind == kind]
        if device_id is not None:
            items = [item for item in items if item.device_id == device_id]
        if start is not None:
            items = [item for item in items if item.timestamp >= start]
        if end is not None:
            items = [item for item in items if item.timestamp <= end]
        return sorted(items, key=lambda item: item.timestamp)

    def page(self, kind: str, page: int, limit: int) -> Tuple[List[Reading], int]:
        """Return one page of readings, newest first, and the total count."""

        items = self.query(kind)
        items.reverse()
        offset = (page - 1) * limit
        return items[offset : offset + limit], len(items)

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            reading_id: {"kind": item.kind, "reading": serialize_reading(item)}
            for reading_id, item in self._items.items()
        }
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for reading_id, entry in data.items():
            self._items[reading_id] = deserialize_reading(entry["kind"], entry["reading"])


@lru_cache
def build_default_table(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> MockReadingTable:
    settings = get_settings()
    table_name = settings.table_name if name is None else name
    table_path = settings.table_persistence_path if path is None else path
    persistence = Path(table_path) if table_path else None
    return MockReadingTable(name=table_name, persistence_path=persistence)
