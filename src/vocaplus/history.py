import json
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from pydantic import ValidationError

from .config import settings
from .database import get_db_connection
from .models import HistoryEntry

logger = logging.getLogger(__name__)

HISTORY_KEY = "voca_plus_test_history_v1"


class HistoryStore(ABC):
    """Persistent bounded list of finished sessions, most recent first."""

    @abstractmethod
    def read_history(self) -> List[HistoryEntry]:
        pass

    @abstractmethod
    def write_history(self, entries: List[HistoryEntry]) -> None:
        pass


class InMemoryHistoryStore(HistoryStore):
    def __init__(self, entries: Optional[List[HistoryEntry]] = None):
        self._entries = list(entries or [])

    def read_history(self) -> List[HistoryEntry]:
        return list(self._entries)

    def write_history(self, entries: List[HistoryEntry]) -> None:
        self._entries = list(entries)


def parse_history(raw: Optional[str], limit: int = settings.HISTORY_LIMIT) -> List[HistoryEntry]:
    """Decode a stored history document; anything malformed reads as empty."""
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("Stored history is not valid JSON; ignoring it")
        return []
    if not isinstance(parsed, list):
        return []

    entries = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        try:
            entries.append(HistoryEntry.model_validate(item))
        except ValidationError:
            continue
    return entries[:limit]


def dump_history(entries: List[HistoryEntry]) -> str:
    data: List[Any] = [entry.model_dump(mode="json") for entry in entries]
    return json.dumps(data, ensure_ascii=False)


class SQLiteHistoryStore(HistoryStore):
    """Keeps the whole list as one JSON document; last write wins."""

    def __init__(self, db_path: Optional[str] = None, key: str = HISTORY_KEY):
        self.db_path = db_path
        self.key = key

    def read_history(self) -> List[HistoryEntry]:
        conn = get_db_connection(self.db_path)
        try:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (self.key,)).fetchone()
        finally:
            conn.close()
        return parse_history(row["value"] if row else None)

    def write_history(self, entries: List[HistoryEntry]) -> None:
        conn = get_db_connection(self.db_path)
        try:
            with conn:
                conn.execute(
                    "INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP",
                    (self.key, dump_history(entries)),
                )
        finally:
            conn.close()


def push_history_entry(
    store: HistoryStore, entry: HistoryEntry, limit: int = settings.HISTORY_LIMIT
) -> List[HistoryEntry]:
    """Prepend ``entry``, trim to ``limit`` and persist. Returns the new list."""
    history = [entry, *store.read_history()][:limit]
    store.write_history(history)
    logger.info(f"History now holds {len(history)} entries (latest {entry.verification_code})")
    return history
