from typing import Optional

from .config import settings
from .database import default_db_path
from .engine import ExamEngine
from .history import SQLiteHistoryStore
from .repository import VocabularyRepository
from .sources import CsvRowSource

repository = VocabularyRepository(CsvRowSource(settings.VOCAB_DIR))
history_store = SQLiteHistoryStore(default_db_path())

_engine: Optional[ExamEngine] = None


def get_engine() -> ExamEngine:
    """Process-wide engine; history is read on first use, after init_db()."""
    global _engine
    if _engine is None:
        _engine = ExamEngine(repository, history_store)
    return _engine
