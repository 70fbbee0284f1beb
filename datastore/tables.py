from __future__ import annotations
import json
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, Generic, Iterable, Optional, Type, TypeVar

from pydantic import BaseModel

from app.schemas import (
    Anomaly,
    EmissionFactor,
    ImportJob,
    ImportLog,
    PiTag,
    Reading,
    User,
)
from settings import get_settings

RecordT = TypeVar("RecordT", bound=BaseModel)


class RecordTable(Generic[RecordT]):
    """In-memory table of pydantic records with optional JSON persistence."""

    def __init__(
        self,
        name: str,
        model: Type[RecordT],
        key_field: str = "id",
        persistence_path: Optional[Path] = None,
    ) -> None:
        self.name = name
        self.model = model
        self.key_field = key_field
        self._items: Dict[str, RecordT] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def put_item(self, item: RecordT) -> None:
        key = getattr(item, self.key_field)
        with self._lock:
            self._items[key] = item.model_copy(deep=True)
            self._persist()

    def put_items(self, items: Iterable[RecordT]) -> None:
        """Store several records and persist them in a single write."""
        with self._lock:
            for item in items:
                self._items[getattr(item, self.key_field)] = item.model_copy(deep=True)
            self._persist()

    def get_item(self, key: str) -> Optional[RecordT]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            return item.model_copy(deep=True)

    def delete_item(self, key: str) -> bool:
        with self._lock:
            removed = self._items.pop(key, None)
            if removed is not None:
                self._persist()
            return removed is not None

    def scan(self, predicate: Optional[Callable[[RecordT], bool]] = None) -> list[RecordT]:
        """Return deep copies of stored records, optionally filtered."""

        with self._lock:
            return [
                item.model_copy(deep=True)
                for item in self._items.values()
                if predicate is None or predicate(item)
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {key: item.model_dump(mode="json") for key, item in self._items.items()}
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for key, payload in data.items():
            self._items[key] = self.model.model_validate(payload)


class Tables:
    """The set of tables backing the console."""

    def __init__(self, data_dir: Optional[Path] = None) -> None:
        self.data_dir = data_dir
        self.readings = self._table("readings", Reading)
        self.anomalies = self._table("anomalies", Anomaly)
        self.import_jobs = self._table("import_jobs", ImportJob, key_field="file_id")
        self.import_logs = self._table("import_logs", ImportLog)
        self.emission_factors = self._table("emission_factors", EmissionFactor)
        self.users = self._table("users", User)
        self.pi_tags = self._table("pi_tags", PiTag, key_field="name")

    def _table(
        self, name: str, model: Type[RecordT], key_field: str = "id"
    ) -> RecordTable[RecordT]:
        path = self.data_dir / f"{name}.json" if self.data_dir else None
        return RecordTable(name=name, model=model, key_field=key_field, persistence_path=path)


@lru_cache
def build_default_tables(data_dir: Optional[str] = None) -> Tables:
    settings = get_settings()
    directory = settings.data_dir if data_dir is None else data_dir
    return Tables(data_dir=Path(directory) if directory else None)
