import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

import pandas as pd

from .config import settings
from .errors import SourceUnavailableError

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class RowSource(ABC):
    """Abstract fetch of header-keyed raw rows for one book."""

    @abstractmethod
    def fetch_rows(self, book_key: str) -> List[Row]:
        pass


class CsvRowSource(RowSource):
    """Reads one CSV file per book from a vocabulary directory."""

    def __init__(self, directory: str, book_files: Optional[Mapping[str, str]] = None):
        self.directory = directory
        self.book_files = dict(book_files or settings.BOOK_FILES)

    def path_for(self, book_key: str) -> str:
        file_name = self.book_files.get(book_key)
        if not file_name:
            raise SourceUnavailableError(book_key, "no CSV file configured")
        return os.path.join(self.directory, file_name)

    def fetch_rows(self, book_key: str) -> List[Row]:
        file_path = self.path_for(book_key)
        try:
            df = pd.read_csv(
                file_path,
                encoding="utf-8-sig",
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
            )
        except FileNotFoundError as e:
            raise SourceUnavailableError(book_key, f"{file_path} not found") from e
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise SourceUnavailableError(book_key, f"cannot parse {file_path}: {e}") from e
        except OSError as e:
            raise SourceUnavailableError(book_key, str(e)) from e

        logger.info(f"Read {len(df)} rows for '{book_key}' from {file_path}")
        return df.to_dict("records")


class InMemoryRowSource(RowSource):
    """Serves rows held in memory; used for embedding and tests."""

    def __init__(self, rows_by_book: Mapping[str, List[Row]]):
        self.rows_by_book = {key: list(rows) for key, rows in rows_by_book.items()}
        self.fetch_count = 0

    def fetch_rows(self, book_key: str) -> List[Row]:
        self.fetch_count += 1
        if book_key not in self.rows_by_book:
            raise SourceUnavailableError(book_key, "no rows registered")
        return [dict(row) for row in self.rows_by_book[book_key]]
