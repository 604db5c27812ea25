from __future__ import annotations

import copy
import json
from typing import Any, Protocol

from linkgrove.extensions import db
from linkgrove.models import KeyValueEntry


class KeyValueStore(Protocol):
    def read(self, key: str) -> Any | None: ...

    def write(self, key: str, value: Any) -> None: ...

    def write_many(self, values: dict[str, Any]) -> None: ...

class MemoryKeyValueStore:
    """Dict-backed store. Values are JSON round-tripped like the real one."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.write(key, value)

    def read(self, key: str) -> Any | None:
        raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def write(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def write_many(self, values: dict[str, Any]) -> None:
        for key, value in values.items():
            self.write(key, value)

    def keys(self) -> list[str]:
        return list(self._data)


class SqlKeyValueStore:
    """Key-value rows in the ``kv_entries`` table; every write commits."""

    def read(self, key: str) -> Any | None:
        entry = db.session.get(KeyValueEntry, key)
        if entry is None:
            return None
        return copy.deepcopy(entry.value)

    def write(self, key: str, value: Any) -> None:
        self.write_many({key: value})

    def write_many(self, values: dict[str, Any]) -> None:
        """Write every key in one transaction."""
        try:
            for key, value in values.items():
                payload = json.loads(json.dumps(value))
                entry = db.session.get(KeyValueEntry, key)
                if entry is None:
                    db.session.add(KeyValueEntry(key=key, value=payload))
                else:
                    entry.value = payload
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
