"""Tests for dataset loading, caching and scope pools."""
import pytest

from vocaplus.config import settings
from vocaplus.errors import SourceUnavailableError, UnsupportedBookError
from vocaplus.repository import (
    VocabularyRepository,
    expand_entries,
    get_field,
    map_day_rows,
    normalize_book_key,
)
from vocaplus.sources import CsvRowSource, InMemoryRowSource, RowSource


class FlakySource(RowSource):
    """Fails on the first fetch, succeeds afterwards."""

    def __init__(self, rows):
        self.rows = rows
        self.calls = 0

    def fetch_rows(self, book_key):
        self.calls += 1
        if self.calls == 1:
            raise OSError("network down")
        return list(self.rows)


class TestLoadDataset:
    def test_unsupported_book_raises(self, repository):
        with pytest.raises(UnsupportedBookError):
            repository.load_dataset("novel")

    def test_book_key_is_normalized(self, repository):
        assert repository.load_dataset("  Etymology ").book_key == "etymology"
        assert normalize_book_key("BASIC") == "basic"
        assert normalize_book_key("unknown") == ""

    def test_missing_source_raises_and_is_not_cached(self, repository):
        with pytest.raises(SourceUnavailableError):
            repository.load_dataset("advanced")
        assert not repository.is_cached("advanced")

    def test_failed_load_can_be_retried(self):
        source = FlakySource([{"단어": "run", "의미": "달리다"}])
        repository = VocabularyRepository(source)

        with pytest.raises(SourceUnavailableError):
            repository.load_dataset("basic")
        dataset = repository.load_dataset("basic")

        assert [row.word for row in dataset.rows] == ["run"]
        assert source.calls == 2

    def test_dataset_is_cached(self, repository, source):
        first = repository.load_dataset("etymology")
        second = repository.load_dataset("etymology")
        assert first is second
        assert source.fetch_count == 1

    def test_invalidate_forces_refetch(self, repository, source):
        repository.load_dataset("etymology")
        repository.invalidate("etymology")
        repository.load_dataset("etymology")
        assert source.fetch_count == 2

    def test_duplicates_collapse_keeping_first_seen_order(self, repository):
        dataset = repository.load_dataset("etymology")
        words = [row.word for row in dataset.rows]
        assert len(words) == 10
        assert words[0] == "abduct"
        assert len({row.card_id for row in dataset.rows}) == 10

    def test_loading_twice_is_idempotent(self, source):
        a = VocabularyRepository(source).load_dataset("etymology")
        b = VocabularyRepository(source).load_dataset("etymology")
        assert [r.card_id for r in a.rows] == [r.card_id for r in b.rows]
        assert a.tocs == b.tocs == ["toc1", "toc2", "toc3"]

    def test_words_by_toc_index(self, repository):
        dataset = repository.load_dataset("etymology")
        assert [row.word for row in dataset.words_by_toc["toc2"]] == ["produce", "promote", "prolong"]

    def test_load_all_skips_unavailable_books(self, repository):
        loaded = repository.load_all()
        assert set(loaded) == {"etymology", "basic"}


class TestDayBooks:
    def test_rows_are_grouped_into_days(self, repository):
        dataset = repository.load_dataset("basic")
        assert dataset.tocs == ["DAY 01", "DAY 02", "DAY 03"]
        assert len(dataset.words_by_toc["DAY 01"]) == 50
        assert len(dataset.words_by_toc["DAY 03"]) == 20
        assert {row.chapter for row in dataset.rows} == {"DAY"}

    def test_rows_past_the_last_day_are_dropped(self, monkeypatch):
        monkeypatch.setattr(settings, "DAY_SIZE", 2)
        monkeypatch.setattr(settings, "MAX_DAYS", 2)
        rows = [{"word": f"w{i}", "meaning": f"m{i}"} for i in range(7)]

        entries = map_day_rows("basic", rows)

        assert [e.word for e in entries] == ["w0", "w1", "w2", "w3"]
        assert [e.toc for e in entries] == ["DAY 01", "DAY 01", "DAY 02", "DAY 02"]

    def test_blank_rows_still_take_a_day_slot(self, monkeypatch):
        monkeypatch.setattr(settings, "DAY_SIZE", 2)
        rows = [{"word": "a"}, {"word": ""}, {"word": "c"}]
        assert [(e.word, e.toc) for e in map_day_rows("basic", rows)] == [("a", "DAY 01"), ("c", "DAY 02")]

    def test_derivatives_skip_base_word_and_repeats(self):
        rows = [
            {
                "word": "act",
                "meaning": "행동하다",
                "파생어1": "action",
                "파생어1 뜻": "행동",
                "파생어 2": "ACT",
                "파생어 2 뜻": "행동하다",
                "derivative3": "Action",
                "derivative3 meaning": "행동",
                "파생어4": "active",
            }
        ]
        entry = map_day_rows("basic", rows)[0]
        assert [(d.word, d.meaning) for d in entry.derivatives] == [("action", "행동"), ("active", "")]

    def test_topics_are_day_labels_sorted(self, repository):
        assert repository.list_topics_for_chapter("basic") == ["DAY 01", "DAY 02", "DAY 03"]


class TestFieldAliases:
    def test_first_non_empty_alias_wins(self):
        row = {"단어": "", "word": "run"}
        assert get_field(row, ["단어", "word"]) == "run"

    def test_headers_match_case_and_space_insensitively(self):
        row = {" Word ": "run", "\ufeffMeaning": "달리다"}
        assert get_field(row, ["word"]) == "run"
        assert get_field(row, ["meaning"]) == "달리다"

    def test_korean_headers_for_etymology(self):
        source = InMemoryRowSource(
            {"etymology": [{"대분류": "ch1", "소분류": "t1", "단어": "abduct", "뜻": "유괴하다"}]}
        )
        entry = VocabularyRepository(source).load_dataset("etymology").rows[0]
        assert (entry.chapter, entry.toc, entry.word, entry.meaning) == ("ch1", "t1", "abduct", "유괴하다")

    def test_missing_row_yields_empty(self):
        assert get_field(None, ["word"]) == ""


class TestProjections:
    def test_list_chapters(self, repository):
        assert repository.list_chapters("etymology") == ["ch1", "ch2"]

    def test_list_topics_for_chapter(self, repository):
        assert repository.list_topics_for_chapter("etymology", "ch1") == ["toc1", "toc2"]
        assert repository.list_topics_for_chapter("etymology", "ch2") == ["toc3"]
        assert repository.list_topics_for_chapter("etymology", "nope") == []


class TestScopePool:
    def test_empty_selection_returns_nothing(self, repository):
        assert repository.get_scope_pool("etymology", "ch1", [], False) == []
        assert repository.get_scope_pool("basic", "", ["  "], True) == []

    def test_filters_by_chapter_and_topic(self, repository):
        pool = repository.get_scope_pool("etymology", "ch1", ["toc1"])
        assert [e.word for e in pool] == ["abduct", "abstain", "abnormal", "absent"]

    def test_chapter_mismatch_yields_nothing(self, repository):
        assert repository.get_scope_pool("etymology", "ch2", ["toc1"]) == []

    def test_without_chapter_only_topics_matter(self, repository):
        pool = repository.get_scope_pool("etymology", "", ["toc3"])
        assert len(pool) == 3

    def test_etymology_never_expands_derivatives(self, repository):
        pool = repository.get_scope_pool("etymology", "ch1", ["toc1"], include_derivatives=True)
        assert not any(e.is_derivative for e in pool)

    def test_derivatives_become_their_own_entries(self, repository):
        plain = repository.get_scope_pool("basic", "", ["DAY 01"], include_derivatives=False)
        expanded = repository.get_scope_pool("basic", "", ["DAY 01"], include_derivatives=True)

        assert len(plain) == 50
        assert len(expanded) == 55
        derived = [e for e in expanded if e.is_derivative]
        assert {e.word for e in derived} == {f"word{i}ly" for i in range(0, 50, 10)}
        assert all(e.toc == "DAY 01" for e in derived)
        assert len({e.card_id for e in expanded}) == 55

    def test_pool_entries_are_unique(self, repository):
        dataset = repository.load_dataset("etymology")
        doubled = expand_entries(dataset.rows + dataset.rows, "etymology", False)
        assert len(doubled) == len(dataset.rows)

    def test_all_pool_covers_whole_book(self, repository):
        assert len(repository.get_all_pool("etymology")) == 10
        assert len(repository.get_all_pool("basic", include_derivatives=True)) == 132


class TestCsvRowSource:
    def test_reads_csv_with_bom(self, tmp_path):
        (tmp_path / "root.csv").write_text(
            "chapter,toc,word,meaning\nch1,toc1,abduct,유괴하다\nch1,toc1,null,없음\n",
            encoding="utf-8-sig",
        )
        repository = VocabularyRepository(CsvRowSource(str(tmp_path)))

        dataset = repository.load_dataset("etymology")

        assert [row.word for row in dataset.rows] == ["abduct", "null"]

    def test_missing_file_is_source_unavailable(self, tmp_path):
        repository = VocabularyRepository(CsvRowSource(str(tmp_path)))
        with pytest.raises(SourceUnavailableError):
            repository.load_dataset("basic")
        assert not repository.is_cached("basic")
