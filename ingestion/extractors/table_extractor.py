"""
SAP table / view source read through /GOOG/RFC_READ_TABLE.

Rows come back as fixed-width strings in the WA column of the DATA table.
The record size (offset plus length of the last field) is used by the
planner to keep one page within the work-process memory ceiling.
"""

from typing import Any, Dict, List, Optional
import logging

from core.exceptions import UnknownRemoteError
from ingestion.classifier import ErrorClassifier
from ingestion.destinations import DestinationRegistry
from ingestion.extractors.rfc_extractor import RfcExtractor
from schemas.extraction import Page
from schemas.partition import UnitKind

logger = logging.getLogger(__name__)


READ_TABLE_FUNCTION = "/GOOG/RFC_READ_TABLE"

# Maximum length of one OPTIONS line (ABAP type SO_TEXT)
MAX_OPTION_LENGTH = 72


def wrap_options(where_clause: Optional[str]) -> List[Dict[str, str]]:
    """
    Split a WHERE clause into OPTIONS rows of at most 72 characters.

    Lines are broken at the last blank before the limit so that literals
    and field names stay intact where possible.
    """
    text = (where_clause or "").strip()
    options = []
    while text:
        if len(text) <= MAX_OPTION_LENGTH:
            chunk = text
        else:
            cut = text.rfind(" ", 0, MAX_OPTION_LENGTH + 1)
            chunk = text[:cut] if cut > 0 else text[:MAX_OPTION_LENGTH]
        options.append({"TEXT": chunk})
        text = text[len(chunk):].lstrip(" ")
    return options


class TableExtractor(RfcExtractor):
    """
    Extract rows of one SAP table or view.

    Attributes:
        table_name: Table or view name, e.g. MARA
        filter_options: ABAP WHERE clause without the WHERE keyword
    """

    unit = UnitKind.ROWS

    def __init__(
        self,
        registry: DestinationRegistry,
        destination: str,
        table_name: str,
        filter_options: Optional[str] = None,
        source_name: Optional[str] = None
    ):
        super().__init__(
            registry=registry,
            destination=destination,
            source_name=source_name or table_name,
            classifier=ErrorClassifier(object_name=table_name, object_field="table_name")
        )
        self.table_name = table_name.strip().upper()
        self.filter_options = filter_options
        self._record_count: Optional[int] = None
        self._record_size: Optional[int] = None

    def _base_params(self) -> Dict[str, Any]:
        params = {"QUERY_TABLE": self.table_name}
        options = wrap_options(self.filter_options)
        if options:
            params["OPTIONS"] = options
        return params

    def read_table_info(self) -> Dict[str, int]:
        """
        Record count and size of one record in bytes.

        The result is cached for the lifetime of the source.
        """
        if self._record_count is None:
            result = self.call(
                READ_TABLE_FUNCTION,
                "Failed to fetch the total record count",
                NO_DATA="X",
                IM_REC_COUNT="X",
                **self._base_params()
            )
            try:
                self._record_count = int(result.get("EX_COUNT") or 0)
                self._record_size = self._record_size_from_fields(result.get("FIELDS", []))
            except (TypeError, ValueError) as e:
                raise UnknownRemoteError(
                    f"Unexpected response from {READ_TABLE_FUNCTION} for {self.table_name}",
                    context={"table_name": self.table_name},
                    original_exception=e
                )

            logger.info(
                f"Table {self.table_name}: {self._record_count} rows, "
                f"{self._record_size} bytes per row"
            )

        return {"record_count": self._record_count, "record_size": self._record_size}

    @staticmethod
    def _record_size_from_fields(fields: List[Dict[str, Any]]) -> int:
        if not fields:
            return 0
        last = fields[-1]
        return int(last.get("OFFSET") or 0) + int(last.get("LENGTH") or 0)

    def get_available_count(self) -> int:
        return self.read_table_info()["record_count"]

    def get_unit_size_bytes(self) -> Optional[int]:
        return self.read_table_info()["record_size"] or None

    def fetch_page(self, skip: int, limit: int) -> Page:
        result = self.call(
            READ_TABLE_FUNCTION,
            f"Failed to pull records (skip: {skip}, top: {limit})",
            ROWSKIPS=skip,
            ROWCOUNT=limit,
            **self._base_params()
        )
        rows = [row.get("WA", "") for row in result.get("DATA", [])]

        logger.debug(f"Fetched {len(rows)} rows from {self.table_name} (skip: {skip}, top: {limit})")
        return Page(records=rows, is_end=len(rows) < limit)
