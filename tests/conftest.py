import random
import sys
from pathlib import Path

import pytest

# Add src to sys.path so we can import vocaplus
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if SRC_PATH.as_posix() not in sys.path:
    sys.path.insert(0, SRC_PATH.as_posix())

from vocaplus.engine import ExamEngine  # noqa: E402
from vocaplus.history import InMemoryHistoryStore  # noqa: E402
from vocaplus.repository import VocabularyRepository  # noqa: E402
from vocaplus.sources import InMemoryRowSource  # noqa: E402

ETYMOLOGY_ROWS = [
    {"chapter": "ch1", "toc": "toc1", "word": "abduct", "meaning": "유괴하다"},
    {"chapter": "ch1", "toc": "toc1", "word": "abstain", "meaning": "삼가다"},
    {"chapter": "ch1", "toc": "toc1", "word": "abnormal", "meaning": "비정상적인"},
    {"chapter": "ch1", "toc": "toc1", "word": "absent", "meaning": "결석한"},
    {"chapter": "ch1", "toc": "toc2", "word": "produce", "meaning": "생산하다"},
    {"chapter": "ch1", "toc": "toc2", "word": "promote", "meaning": "승진시키다"},
    {"chapter": "ch1", "toc": "toc2", "word": "prolong", "meaning": "연장하다"},
    {"chapter": "ch2", "toc": "toc3", "word": "transport", "meaning": "수송하다"},
    {"chapter": "ch2", "toc": "toc3", "word": "transfer", "meaning": "옮기다"},
    {"chapter": "ch2", "toc": "toc3", "word": "translate", "meaning": "번역하다"},
    # Same card as the first row once normalized
    {"chapter": " ch1 ", "toc": "toc1", "word": "abduct", "meaning": "유괴하다 "},
]


def make_basic_rows(count=120):
    rows = []
    for i in range(count):
        row = {"단어": f"word{i}", "의미": f"뜻{i}"}
        if i % 10 == 0:
            row["파생어1"] = f"word{i}ly"
            row["파생어1 뜻"] = f"뜻{i} 부사"
            row["파생어2"] = f"word{i}"  # same as the base word
            row["파생어2 뜻"] = "무시됨"
        rows.append(row)
    return rows


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class RecordingSink:
    def __init__(self, ok=True):
        self.ok = ok
        self.copied = []

    def copy_text(self, text):
        self.copied.append(text)
        return self.ok


@pytest.fixture
def source():
    return InMemoryRowSource(
        {
            "etymology": ETYMOLOGY_ROWS,
            "basic": make_basic_rows(),
        }
    )


@pytest.fixture
def repository(source):
    return VocabularyRepository(source)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def history_store():
    return InMemoryHistoryStore()


@pytest.fixture
def engine(repository, history_store, clock):
    return ExamEngine(repository, history_store, clock=clock, rng=random.Random(7))


@pytest.fixture
def etymology_config():
    return {
        "book_key": "etymology",
        "chapter_id": "ch1",
        "selected_tocs": ["toc1", "toc2"],
        "exam_type": "E2K",
        "time_limit_minutes": 20,
        "shuffle_questions": False,
    }
