"""
Abstract base class for remote SAP data sources
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import logging

from ingestion.classifier import ErrorClassifier
from schemas.extraction import Page
from schemas.partition import PlatformCapacity, UnitKind

logger = logging.getLogger(__name__)


class RemoteDataSource(ABC):
    """
    Abstract base class for all SAP sources.

    Responsibilities:
    - Session lifecycle (open / close, usable as a context manager)
    - Paged reads addressed by a 0-based skip and a limit
    - Reporting the available record count and, for RFC sources, the
      platform capacity used by the partition planner

    Attributes:
        source_name: Human-readable name used in logs
        unit: What one record of this source is (rows, packages, entries)
        classifier: Maps raw failures of this source to RemoteError
    """

    unit: UnitKind = UnitKind.ROWS

    def __init__(self, source_name: str, classifier: Optional[ErrorClassifier] = None):
        self.source_name = source_name
        self.classifier = classifier or ErrorClassifier()
        self._is_open = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    def open(self) -> None:
        """Acquire the remote session. Calling open() twice is a no-op."""
        if self._is_open:
            return
        self._open()
        self._is_open = True
        logger.debug(f"Opened session for {self.source_name}")

    def close(self) -> None:
        """Release the remote session. Calling close() twice is a no-op."""
        if not self._is_open:
            return
        try:
            self._close()
        finally:
            self._is_open = False
            logger.debug(f"Closed session for {self.source_name}")

    def _open(self) -> None:
        """Hook for subclasses holding a connection"""
        pass

    def _close(self) -> None:
        pass

    @abstractmethod
    def fetch_page(self, skip: int, limit: int) -> Page:
        """
        Fetch one page of records.

        Args:
            skip: Number of records to skip from the start of the record space
            limit: Maximum number of records to return

        Returns:
            Page with at most limit records, empty when nothing is left

        Raises:
            RemoteError: classified remote failure
        """
        pass

    @abstractmethod
    def get_available_count(self) -> int:
        """Total number of records the source currently exposes"""
        pass

    def get_platform_capacity(self) -> Optional[PlatformCapacity]:
        """Work-process snapshot for the planner, None for HTTP sources"""
        return None

    def get_unit_size_bytes(self) -> Optional[int]:
        """Bytes per unit used to cap the page size by memory, None if unknown"""
        return None

    def export_runtime(self) -> Dict[str, Any]:
        """State captured while planning that every split source must share"""
        return {}

    def bind_runtime(self, runtime: Dict[str, Any]) -> None:
        """Adopt the state exported by the planning source"""
        pass

    def __enter__(self) -> "RemoteDataSource":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(source_name={self.source_name!r}, unit={self.unit.value})"
