"""
Pull-based reader for one split of an extraction.

The reader walks its split page by page:

    reader = SplitReader(split, source)
    with reader:
        while reader.has_next():
            record = reader.next()
            key = reader.current_key()

Each page is requested with skip = rows already read + split.start - 1 and
a limit of min(remaining rows, split.page_size). Iteration stops when the
split's length is reached, when the source returns an empty page, or once
a page flagged as the last one has been consumed.
"""

from typing import Any, Iterator, List, Optional
import enum
import logging

from core.exceptions import ReaderStateError, RemoteError
from ingestion.base import RemoteDataSource
from ingestion.classifier import ErrorClassifier
from schemas.partition import Split

logger = logging.getLogger(__name__)


class ReaderPhase(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    FETCHING = "fetching"
    HAS_BUFFERED_ROWS = "has_buffered_rows"
    NEEDS_NEXT_PAGE = "needs_next_page"
    EXHAUSTED = "exhausted"
    CLOSED = "closed"


class SplitReader:
    """
    Reads the records of one split from a RemoteDataSource.

    A reader is owned by a single worker and is not thread-safe. Remote
    failures surface as RemoteError subclasses; records already returned
    are never rolled back and nothing is retried here.

    Attributes:
        split: Range of the record space this reader owns
        source: Source the pages are fetched from
        classifier: Classifies failures the source did not classify itself
        rows_processed: Records returned by next() so far
        phase: Current lifecycle phase
    """

    def __init__(
        self,
        split: Split,
        source: RemoteDataSource,
        classifier: Optional[ErrorClassifier] = None
    ):
        self.split = split
        self.source = source
        self.classifier = classifier or source.classifier
        self.rows_processed = 0
        self.pages_fetched = 0
        self.phase = ReaderPhase.UNINITIALIZED

        self._buffer: List[Any] = []
        self._position = 0
        self._last_page = False
        self._current_key: Optional[int] = None

    def initialize(self) -> None:
        """
        Open the source session and fetch the first page.

        Raises:
            ReaderStateError: if the reader was closed
            RemoteError: if the first page cannot be fetched
        """
        self._ensure_not_closed("initialize")
        if self.phase != ReaderPhase.UNINITIALIZED:
            return

        logger.info(
            f"Initializing reader for split {self.split.start}..{self.split.end} "
            f"of {self.source.source_name}"
        )
        self.source.open()
        self.phase = ReaderPhase.NEEDS_NEXT_PAGE
        self._fetch_next_page()

    def has_next(self) -> bool:
        """
        True if next() will return a record.

        Fetches the next page only when the buffer is drained and the split
        still has rows left.
        """
        self._ensure_not_closed("has_next")
        if self.phase == ReaderPhase.UNINITIALIZED:
            self.initialize()

        if self.rows_processed >= self.split.length:
            self._mark_exhausted()
            return False

        if self._buffered() > 0:
            return True

        if self.phase == ReaderPhase.EXHAUSTED or self._last_page:
            self._mark_exhausted()
            return False

        self._fetch_next_page()
        return self._buffered() > 0

    def next(self) -> Any:
        """
        Return the next record of the split.

        Raises:
            ReaderStateError: if no record is buffered (has_next() was not
                called, or returned False)
        """
        self._ensure_not_closed("next")
        if (
            self.phase != ReaderPhase.HAS_BUFFERED_ROWS
            or self._buffered() == 0
            or self.rows_processed >= self.split.length
        ):
            raise ReaderStateError(
                "next() called without a record available, call has_next() first",
                context={"phase": self.phase.value, "rows_processed": self.rows_processed}
            )

        record = self._buffer[self._position]
        self._position += 1
        self._current_key = self.split.start - 1 + self.rows_processed
        self.rows_processed += 1

        if self.rows_processed >= self.split.length:
            self._mark_exhausted()
        elif self._buffered() == 0:
            if self._last_page:
                self._mark_exhausted()
            else:
                self.phase = ReaderPhase.NEEDS_NEXT_PAGE

        return record

    def current_key(self) -> Optional[int]:
        """0-based ordinal of the last returned record in the whole extraction"""
        return self._current_key

    def progress_fraction(self) -> float:
        """Share of the split already returned, between 0.0 and 1.0"""
        length = self.split.length
        if length <= 0:
            return 0.0
        return min(1.0, self.rows_processed / length)

    def close(self) -> None:
        """Release the source session. Safe to call more than once."""
        if self.phase == ReaderPhase.CLOSED:
            return

        self._buffer = []
        self._position = 0
        self.phase = ReaderPhase.CLOSED
        self.source.close()
        logger.info(
            f"Closed reader for split {self.split.start}..{self.split.end}: "
            f"{self.rows_processed} records in {self.pages_fetched} pages"
        )

    def _fetch_next_page(self) -> None:
        remaining = self.split.length - self.rows_processed
        if remaining <= 0:
            self._mark_exhausted()
            return

        skip = self.rows_processed + self.split.start - 1
        top = min(remaining, self.split.page_size)

        self.phase = ReaderPhase.FETCHING
        logger.debug(f"Fetching {top} records from {self.source.source_name} (skip: {skip})")

        try:
            page = self.source.fetch_page(skip, top)
        except RemoteError:
            logger.error(f"Failed to pull records (skip: {skip}, top: {top}) from {self.source.source_name}")
            raise
        except Exception as e:
            logger.error(f"Failed to pull records (skip: {skip}, top: {top}) from {self.source.source_name}")
            error = self.classifier.classify(e, stage=f"Failed to pull records (skip: {skip}, top: {top})")
            raise error from e

        self.pages_fetched += 1
        self._buffer = list(page.records)
        self._position = 0
        self._last_page = page.is_end

        if not self._buffer:
            logger.info(f"No records found for skip: {skip}, top: {top} in {self.source.source_name}")
            self._mark_exhausted()
            return

        self.phase = ReaderPhase.HAS_BUFFERED_ROWS

    def _buffered(self) -> int:
        return len(self._buffer) - self._position

    def _mark_exhausted(self) -> None:
        if self.phase != ReaderPhase.CLOSED:
            self.phase = ReaderPhase.EXHAUSTED

    def _ensure_not_closed(self, operation: str) -> None:
        if self.phase == ReaderPhase.CLOSED:
            raise ReaderStateError(
                f"Cannot call {operation}() on a closed reader",
                context={"split_start": self.split.start, "split_end": self.split.end}
            )

    def __enter__(self) -> "SplitReader":
        try:
            self.initialize()
        except BaseException:
            # __exit__ does not run when __enter__ fails
            self.close()
            raise
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __iter__(self) -> Iterator[Any]:
        while self.has_next():
            yield self.next()
