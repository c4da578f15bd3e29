"""Text rules shared by the repository, question builder and scorer.

Every comparison in the engine (dedup keys, topic matching, distractor
uniqueness, scoring) goes through ``normalize_text`` so that the same
visible string always compares equal regardless of stray BOMs, full-width
forms or doubled spaces in the source CSV.
"""

import math
import re
import unicodedata
from typing import Any, Iterable, List, Tuple

_CONTROL_CHARS = re.compile(r"[\u0000-\u001F\u007F]")
_WHITESPACE = re.compile(r"\s+")
_DAY_LABEL = re.compile(r"^DAY\s*0?(\d{1,2})$", re.IGNORECASE)
_DIGITS = re.compile(r"(\d+)")


def normalize_text(value: Any) -> str:
    """Strip BOMs, NFKC-normalize, blank control chars, collapse whitespace."""
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    text = str(value).replace("\ufeff", "")
    text = unicodedata.normalize("NFKC", text)
    text = _CONTROL_CHARS.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def normalize_key(value: Any) -> str:
    return normalize_text(value).lower()


def build_card_id(book_key: str, chapter: str, toc: str, word: str, meaning: str) -> str:
    """Content identity of a vocabulary card.

    Two rows with the same normalized (book, chapter, toc, word, meaning)
    always get the same id, independent of where they sit in the source.
    """
    return "|".join(normalize_key(part) for part in (book_key, chapter, toc, word, meaning))


def build_day_label(row_index: int, day_size: int = 50) -> str:
    return f"DAY {row_index // day_size + 1:02d}"


def day_label_to_number(label: str) -> float:
    match = _DAY_LABEL.match(normalize_text(label))
    return int(match.group(1)) if match else math.inf


def is_day_label(label: str) -> bool:
    return _DAY_LABEL.match(normalize_text(label)) is not None


def _natural_key(label: str) -> Tuple[Any, ...]:
    parts = _DIGITS.split(normalize_text(label).casefold())
    return tuple((0, int(part)) if part.isdigit() else (1, part) for part in parts if part)


def sort_labels(labels: Iterable[str]) -> List[str]:
    """Sort topic labels: ``DAY n`` labels by n first, then natural string order."""
    return sorted(labels, key=lambda label: (day_label_to_number(label), _natural_key(label)))
