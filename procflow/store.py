"""
Record stores for marshalled procedures.

A store maps string ids to JSON-compatible records:
    store.put(id, record); store.get(id); store.flush()
"""

import json
import os
from pathlib import Path
from typing import Dict, Iterator

from . import config


class MemoryStore:
    """In-memory store. `flush` is a no-op."""

    def __init__(self):
        self._records: Dict[str, dict] = {}

    def put(self, record_id: str, record: dict) -> None:
        # Round-trip through JSON so stored records never alias live objects
        self._records[record_id] = json.loads(json.dumps(record))

    def get(self, record_id: str) -> dict:
        try:
            return json.loads(json.dumps(self._records[record_id]))
        except KeyError:
            raise KeyError(f"no record {record_id!r}") from None

    def delete(self, record_id: str) -> None:
        self._records.pop(record_id, None)

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._records

    def ids(self) -> Iterator[str]:
        return iter(list(self._records))

    def __len__(self) -> int:
        return len(self._records)

    def flush(self) -> None:
        pass


class JsonStore(MemoryStore):
    """
    Store persisted to a single JSON file.

    Records are loaded when the store is opened and written back on
    `flush()`. The file is replaced atomically, so readers see either the
    previous or the new content.
    """

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        with open(self.path) as f:
            data = json.load(f)
        if data.get("version") != config.STORE_VERSION:
            raise ValueError(
                f"{self.path}: unsupported store version {data.get('version')!r}")
        self._records = dict(data.get("records", {}))

    def flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, 'w') as f:
            json.dump({"version": config.STORE_VERSION,
                       "records": self._records}, f, indent=1)
        os.replace(tmp, self.path)
