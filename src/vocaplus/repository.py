"""Dataset repository: raw rows in, deduplicated per-book datasets out.

The repository is constructed once per process and handed to the exam
engine by reference. Each book is fetched at most once; a failed fetch
leaves the book uncached so the next call retries.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .config import settings
from .errors import SourceUnavailableError, UnsupportedBookError
from .models import BookKey, Dataset, Derivative, WordEntry
from .sources import Row, RowSource
from .text import (
    build_card_id,
    build_day_label,
    is_day_label,
    normalize_key,
    normalize_text,
    sort_labels,
)

logger = logging.getLogger(__name__)

BOOK_KEYS = [book.value for book in BookKey]
DERIVATIVE_BOOKS = {BookKey.BASIC.value, BookKey.ADVANCED.value}
DAY_CHAPTER = "DAY"

# Accepted column headers per logical field, in priority order.
FIELD_ALIASES: Dict[str, Dict[str, List[str]]] = {
    "etymology": {
        "chapter": ["chapter", "챕터", "대분류"],
        "toc": ["toc", "목차", "소분류"],
        "word": ["word", "단어"],
        "meaning": ["meaning", "의미", "뜻"],
    },
    "day": {
        "word": ["단어", "word"],
        "meaning": ["의미", "meaning", "뜻"],
    },
}
DERIVATIVE_WORD_ALIASES = ["파생어{i}", "파생어 {i}", "derivative{i}"]
DERIVATIVE_MEANING_ALIASES = ["파생어{i} 뜻", "파생어 {i} 뜻", "derivative{i} meaning"]


def normalize_book_key(book_key: Any) -> str:
    """Return the canonical book key, or ``""`` when it is not supported."""
    normalized = normalize_key(book_key)
    return normalized if normalized in BOOK_KEYS else ""


def get_field(row: Mapping[str, Any], aliases: Sequence[str]) -> str:
    """First non-empty value among ``aliases``.

    Headers are tried verbatim first, then compared after normalization
    and lower-casing so ``" Word "`` or a BOM-prefixed header still match.
    """
    if not isinstance(row, Mapping):
        return ""

    for key in aliases:
        value = normalize_text(row.get(key, row.get(f"\ufeff{key}")))
        if value:
            return value

    normalized_row: Dict[str, Any] = {}
    for raw_key, raw_value in row.items():
        normalized_row.setdefault(normalize_key(raw_key), raw_value)

    for key in aliases:
        normalized = normalize_key(key)
        if not normalized:
            continue
        value = normalize_text(normalized_row.get(normalized))
        if value:
            return value
    return ""


def _make_entry(book_key: str, chapter: str, toc: str, word: str, meaning: str, **extra) -> WordEntry:
    return WordEntry(
        book_key=book_key,
        chapter=chapter,
        toc=toc,
        word=word,
        meaning=meaning,
        card_id=build_card_id(book_key, chapter, toc, word, meaning),
        **extra,
    )


# --- Per-book row adapters ---
def map_etymology_rows(book_key: str, rows: Iterable[Row]) -> List[WordEntry]:
    aliases = FIELD_ALIASES["etymology"]
    entries = []
    for row in rows:
        word = get_field(row, aliases["word"])
        if not word:
            continue
        entries.append(
            _make_entry(
                book_key,
                get_field(row, aliases["chapter"]),
                get_field(row, aliases["toc"]),
                word,
                get_field(row, aliases["meaning"]),
            )
        )
    return entries


def extract_derivatives(row: Row, base_word: str) -> List[Derivative]:
    base_key = base_word.lower()
    derivatives = []
    seen = set()
    for i in range(1, settings.MAX_DERIVATIVES + 1):
        word = get_field(row, [alias.format(i=i) for alias in DERIVATIVE_WORD_ALIASES])
        if not word or word.lower() == base_key:
            continue
        meaning = get_field(row, [alias.format(i=i) for alias in DERIVATIVE_MEANING_ALIASES])
        key = f"{word.lower()}|{meaning.lower()}"
        if key in seen:
            continue
        seen.add(key)
        derivatives.append(Derivative(word=word, meaning=meaning))
    return derivatives


def map_day_rows(book_key: str, rows: Iterable[Row]) -> List[WordEntry]:
    """Group fixed-size row windows into ``DAY NN`` topics."""
    aliases = FIELD_ALIASES["day"]
    entries = []
    for index, row in enumerate(rows):
        if index // settings.DAY_SIZE + 1 > settings.MAX_DAYS:
            break
        word = get_field(row, aliases["word"])
        if not word:
            continue
        entries.append(
            _make_entry(
                book_key,
                DAY_CHAPTER,
                build_day_label(index, settings.DAY_SIZE),
                word,
                get_field(row, aliases["meaning"]),
                derivatives=extract_derivatives(row, word),
            )
        )
    return entries


BOOK_ADAPTERS: Dict[str, Callable[[str, Iterable[Row]], List[WordEntry]]] = {
    BookKey.ETYMOLOGY.value: map_etymology_rows,
    BookKey.BASIC.value: map_day_rows,
    BookKey.ADVANCED.value: map_day_rows,
}


def dedupe_by_card_id(entries: Iterable[WordEntry]) -> List[WordEntry]:
    """Drop repeated ``card_id`` values, keeping first-seen order."""
    deduped: Dict[str, WordEntry] = {}
    for entry in entries:
        if entry.card_id and entry.card_id not in deduped:
            deduped[entry.card_id] = entry
    return list(deduped.values())


def build_dataset(book_key: str, entries: Iterable[WordEntry]) -> Dataset:
    rows = dedupe_by_card_id(entries)
    words_by_toc: Dict[str, List[WordEntry]] = {}
    for row in rows:
        toc = normalize_text(row.toc)
        if toc:
            words_by_toc.setdefault(toc, []).append(row)
    return Dataset(book_key=book_key, rows=rows, words_by_toc=words_by_toc, tocs=list(words_by_toc))


def expand_entries(entries: Iterable[WordEntry], book_key: str, include_derivatives: bool) -> List[WordEntry]:
    """Flatten entries (and optionally their derivatives) into a unique pool."""
    expand = include_derivatives and book_key in DERIVATIVE_BOOKS
    expanded = []
    for entry in entries:
        word = normalize_text(entry.word)
        if not word:
            continue
        chapter = normalize_text(entry.chapter)
        toc = normalize_text(entry.toc)
        expanded.append(_make_entry(book_key, chapter, toc, word, normalize_text(entry.meaning)))

        if not expand:
            continue
        for derivative in entry.derivatives:
            derivative_word = normalize_text(derivative.word)
            if not derivative_word:
                continue
            expanded.append(
                _make_entry(
                    book_key,
                    chapter,
                    toc,
                    derivative_word,
                    normalize_text(derivative.meaning),
                    is_derivative=True,
                )
            )
    return dedupe_by_card_id(expanded)


class VocabularyRepository:
    """Loads, normalizes and caches vocabulary datasets per book."""

    def __init__(self, source: RowSource):
        self.source = source
        self._cache: Dict[str, Dataset] = {}

    def _require_book(self, book_key: Any) -> str:
        normalized = normalize_book_key(book_key)
        if not normalized:
            raise UnsupportedBookError(book_key)
        return normalized

    def load_dataset(self, book_key: Any) -> Dataset:
        key = self._require_book(book_key)
        if key in self._cache:
            return self._cache[key]

        try:
            raw_rows = self.source.fetch_rows(key)
        except SourceUnavailableError:
            logger.error(f"Failed to load book '{key}'", exc_info=True)
            raise
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load book '{key}': {e}")
            raise SourceUnavailableError(key, str(e)) from e

        dataset = build_dataset(key, BOOK_ADAPTERS[key](key, raw_rows))
        self._cache[key] = dataset
        logger.info(f"Loaded {len(dataset.rows)} words in {len(dataset.tocs)} topics for '{key}'")
        return dataset

    def load_all(self) -> Dict[str, Dataset]:
        """Warm the cache for every book whose source is available."""
        loaded = {}
        for key in BOOK_KEYS:
            try:
                loaded[key] = self.load_dataset(key)
            except SourceUnavailableError as e:
                logger.warning(f"Skipping {key}: {e}")
        return loaded

    def invalidate(self, book_key: Optional[str] = None) -> None:
        if book_key is None:
            self._cache.clear()
        else:
            self._cache.pop(normalize_book_key(book_key), None)

    def is_cached(self, book_key: str) -> bool:
        return normalize_book_key(book_key) in self._cache

    def supports_derivatives(self, book_key: str) -> bool:
        return normalize_book_key(book_key) in DERIVATIVE_BOOKS

    def list_chapters(self, book_key: str) -> List[str]:
        dataset = self.load_dataset(book_key)
        chapters = {normalize_text(row.chapter) for row in dataset.rows}
        chapters.discard("")
        return sort_labels(chapters)

    def list_topics_for_chapter(self, book_key: str, chapter_id: str = "") -> List[str]:
        dataset = self.load_dataset(book_key)
        if dataset.book_key in DERIVATIVE_BOOKS:
            return sort_labels({toc for toc in dataset.tocs if is_day_label(toc)})

        chapter = normalize_text(chapter_id)
        tocs = {
            normalize_text(row.toc)
            for row in dataset.rows
            if normalize_text(row.chapter) == chapter
        }
        tocs.discard("")
        return sort_labels(tocs)

    def get_scope_pool(
        self,
        book_key: str,
        chapter_id: str = "",
        selected_topics: Optional[Iterable[str]] = None,
        include_derivatives: bool = False,
    ) -> List[WordEntry]:
        """Entries matching the chapter/topic selection.

        An empty topic selection yields ``[]`` rather than the whole book.
        """
        dataset = self.load_dataset(book_key)
        selected = {normalize_text(toc) for toc in (selected_topics or [])}
        selected.discard("")
        if not selected:
            return []

        chapter = normalize_text(chapter_id) if dataset.book_key not in DERIVATIVE_BOOKS else ""
        scoped = [
            row
            for row in dataset.rows
            if normalize_text(row.toc) in selected
            and (not chapter or normalize_text(row.chapter) == chapter)
        ]
        return expand_entries(scoped, dataset.book_key, include_derivatives)

    def get_all_pool(self, book_key: str, include_derivatives: bool = False) -> List[WordEntry]:
        dataset = self.load_dataset(book_key)
        return expand_entries(dataset.rows, dataset.book_key, include_derivatives)
