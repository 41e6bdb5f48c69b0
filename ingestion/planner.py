"""
Partition planner shared by the OData, table and ODP connectors.

Splits are given priority over the page size: when the page size asked
for is larger than what a split owns, the split's page size is reduced to
its own load. Example:

    available records       123
    records to fetch        100
    records to skip          19
    requested splits          7
    requested page size      30

    extraction window       20 .. 119
    load per split          14 (2 splits carry one extra record)
    page size per split     15, 15, 14, 14, 14, 14, 14

The requested page size (30) is overridden so that every split fetches
its whole load in one call.
"""

from typing import List, Optional
import logging

from core.config import settings
from core.exceptions import (
    NoRecordsToExtractError,
    NoWorkProcessesAvailableError,
    NoMemoryAvailableError,
)
from schemas.partition import (
    ExtractionRequest,
    PlatformCapacity,
    Split,
    UnitKind,
    UnitProfile,
)

logger = logging.getLogger(__name__)


ODATA_PROFILE = UnitProfile(
    unit=UnitKind.ENTRIES,
    default_page_size=settings.ODATA_DEFAULT_PAGE_SIZE,
    max_page_size=settings.ODATA_MAX_PAGE_SIZE,
)

TABLE_PROFILE = UnitProfile(
    unit=UnitKind.ROWS,
    default_page_size=settings.TABLE_DEFAULT_PAGE_SIZE,
    max_page_size=settings.TABLE_MAX_PAGE_SIZE,
)

# ODP extractors hand out exactly one package per call
ODP_PROFILE = UnitProfile(
    unit=UnitKind.PACKAGES,
    default_page_size=1,
    max_page_size=1,
)


def resolve_record_window(request: ExtractionRequest) -> int:
    """
    Number of records to extract after applying skip and fetch.

    Raises:
        NoRecordsToExtractError: if the window is empty
    """
    available = request.available_record_count
    skip = request.skip_row_count

    if request.fetch_row_count == 0:
        records = available - skip
    else:
        records = request.fetch_row_count

    if skip + records > available:
        records = available - skip

    if records <= 0:
        raise NoRecordsToExtractError(
            "Found no record to extract. Please check the 'Number of rows to skip' "
            "and 'Number of rows to fetch' properties.",
            context={
                "available_record_count": available,
                "fetch_row_count": request.fetch_row_count,
                "skip_row_count": skip,
            }
        )

    return records


def max_units_for_memory(capacity: PlatformCapacity, unit_size_bytes: int) -> int:
    """
    Largest number of units a single work process may safely hold.

    Raises:
        NoMemoryAvailableError: if not even one unit fits
    """
    usable_memory = capacity.max_memory_per_work_process * settings.MEMORY_USAGE_FACTOR
    max_units = int(usable_memory // unit_size_bytes) if unit_size_bytes > 0 else 0

    if max_units < 1:
        raise NoMemoryAvailableError(
            "SAP work processes do not have enough memory for the extraction. "
            "Please retry when the SAP system is less busy.",
            context={
                "max_memory_per_work_process": capacity.max_memory_per_work_process,
                "unit_size_bytes": unit_size_bytes,
            }
        )

    return max_units


def max_splits_for_capacity(capacity: PlatformCapacity) -> int:
    """
    Largest split count the SAP system can serve in parallel.

    Raises:
        NoWorkProcessesAvailableError: if less than one work process may be used
    """
    max_splits = int(capacity.available_work_processes * settings.WORK_PROCESS_USAGE_FACTOR)

    if max_splits < 1:
        raise NoWorkProcessesAvailableError(
            "No SAP dialog work process is available for the extraction. "
            "Please retry when the SAP system is less busy.",
            context={
                "total_work_processes": capacity.total_work_processes,
                "available_work_processes": capacity.available_work_processes,
            }
        )

    return max_splits


def resolve_package_size_bytes(requested_bytes: int, capacity: Optional[PlatformCapacity]) -> int:
    """
    Byte size of one ODP package sent to SAP when preparing an extraction.

    Defaults to 50 MB and never exceeds the usable work-process memory.
    """
    package_size = requested_bytes if requested_bytes > 0 else settings.ODP_DEFAULT_PACKAGE_SIZE_BYTES

    if capacity is not None:
        # One package must fit into one work process
        max_bytes = max_units_for_memory(capacity, 1)
        package_size = min(package_size, max_bytes)

    logger.info(f"Package size resolved to {package_size} bytes")
    return package_size


class PartitionPlanner:
    """
    Turns an extraction window into an ordered list of splits.

    The planner is pure and deterministic: the same request, capacity and
    unit size always produce the same splits.

    Attributes:
        profile: Unit semantics (default page size and hard ceiling)
        max_split_count: Split ceiling used when no platform capacity is known
    """

    def __init__(self, profile: UnitProfile, max_split_count: Optional[int] = None):
        self.profile = profile
        self.max_split_count = max_split_count or settings.MAX_SPLIT_COUNT

    def plan(
        self,
        request: ExtractionRequest,
        capacity: Optional[PlatformCapacity] = None,
        unit_size_bytes: Optional[int] = None
    ) -> List[Split]:
        """
        Build the split plan for one extraction job.

        Args:
            request: Extraction window and user preferences
            capacity: SAP work-process snapshot, None for HTTP sources
            unit_size_bytes: Bytes per unit, used to cap page size by memory

        Returns:
            Contiguous, non-overlapping splits covering the whole window

        Raises:
            NoRecordsToExtractError: if skip/fetch leave nothing to extract
            NoWorkProcessesAvailableError: if SAP has no free work process
            NoMemoryAvailableError: if SAP memory cannot hold a single unit
        """
        records = resolve_record_window(request)
        page_size = self._resolve_page_size(request.requested_page_size, records, capacity, unit_size_bytes)
        split_count = self._resolve_split_count(request.requested_split_count, records, page_size, capacity)

        start_index = request.skip_row_count + 1
        end_index = request.skip_row_count + records

        logger.info(f"Total available {self.profile.unit.value}: {request.available_record_count}")
        logger.info(f"Skipped {self.profile.unit.value}: {request.skip_row_count}")
        logger.info(f"{self.profile.unit.value.capitalize()} to extract: {records}")
        logger.info(f"Extraction window: {start_index} .. {end_index}")
        logger.info(f"Calculated number of splits: {split_count}")
        logger.info(f"Page size: {page_size}")

        splits = build_splits(records, split_count, page_size, start_index)

        for split in splits:
            logger.debug(
                f"Split start: {split.start}, end: {split.end}, "
                f"length: {split.length}, page size: {split.page_size}"
            )

        return splits

    def _resolve_page_size(
        self,
        requested: int,
        records: int,
        capacity: Optional[PlatformCapacity],
        unit_size_bytes: Optional[int]
    ) -> int:
        page_size = requested if requested > 0 else self.profile.default_page_size
        page_size = min(page_size, self.profile.max_page_size)

        if capacity is not None and unit_size_bytes:
            page_size = min(page_size, max_units_for_memory(capacity, unit_size_bytes))

        return min(page_size, records)

    def _resolve_split_count(
        self,
        requested: int,
        records: int,
        page_size: int,
        capacity: Optional[PlatformCapacity]
    ) -> int:
        if requested > 0:
            split_count = requested
        else:
            split_count = max(1, records // page_size)

        # Never split more finely than one record per split
        split_count = min(split_count, records)

        if capacity is not None:
            max_splits = max_splits_for_capacity(capacity)
            logger.info(f"Found {capacity.available_work_processes} available work processes")
        else:
            max_splits = self.max_split_count

        return min(split_count, max_splits)


def build_splits(records: int, split_count: int, page_size: int, start_index: int) -> List[Split]:
    """
    Distribute records over split_count contiguous splits.

    The first (records % split_count) splits carry one extra record. The
    last split ends exactly at the end of the window.
    """
    base_load = records // split_count
    remainder = records % split_count
    end_index = start_index + records - 1

    splits = []
    start = start_index
    for i in range(split_count - 1):
        load = base_load + (1 if i < remainder else 0)
        end = start + load - 1
        splits.append(Split(start=start, end=end, page_size=min(page_size, load)))
        start = end + 1

    last_load = end_index - start + 1
    splits.append(Split(start=start, end=end_index, page_size=min(page_size, last_load)))

    return splits
