# ============================================================================
# File: ingestion/runner.py
# Description: Extraction orchestrator tying planner, sources and readers together
# ============================================================================
"""
Extraction Runner - Plans a job and drains every split.

This module provides:
- Planning with a single source session (count and capacity read once)
- Sequential reading of every split with its own source session
- Structured error context and logging on failure

Parallel execution of splits belongs to the host framework: it can call
plan_job() once, ship the serialized splits to its workers and call
read_split() on each of them.
"""

from typing import Any, Callable, Dict, List, Optional
import logging

from core.exceptions import ETLException, ExtractionError
from ingestion.base import RemoteDataSource
from ingestion.planner import PartitionPlanner
from ingestion.reader import SplitReader
from schemas.extraction import ExtractionPlan
from schemas.partition import ExtractionRequest, Split

logger = logging.getLogger(__name__)


RecordCallback = Callable[[int, Any], None]


class ExtractionRunner:
    """
    Extraction orchestrator.

    Responsibilities:
    - Build the split plan from one planning session
    - Open a fresh source per split and hand it the planning state
    - Close every session, also on failure
    - Report extraction statistics

    Attributes:
        source_factory: Returns a new, unopened RemoteDataSource per call
        planner: Partition planner matching the source's unit profile
    """

    def __init__(self, source_factory: Callable[[], RemoteDataSource], planner: PartitionPlanner):
        self.source_factory = source_factory
        self.planner = planner

    def plan_job(
        self,
        fetch_row_count: int = 0,
        skip_row_count: int = 0,
        requested_split_count: int = 0,
        requested_page_size: int = 0
    ) -> ExtractionPlan:
        """
        Plan one extraction job.

        Returns:
            ExtractionPlan with the splits and the source state shared by
            every split reader

        Raises:
            CallerInputError: if skip/fetch leave nothing to extract
            CapacityExhaustedError: if SAP cannot serve the extraction now
            RemoteError: if the count or capacity cannot be read
        """
        with self.source_factory() as source:
            logger.info(f"Planning extraction for {source.source_name}")

            available = source.get_available_count()
            capacity = source.get_platform_capacity()
            unit_size = source.get_unit_size_bytes()

            request = ExtractionRequest(
                available_record_count=available,
                fetch_row_count=fetch_row_count,
                skip_row_count=skip_row_count,
                requested_split_count=requested_split_count,
                requested_page_size=requested_page_size,
            )
            splits = self.planner.plan(request, capacity=capacity, unit_size_bytes=unit_size)

            return ExtractionPlan(
                splits=splits,
                available_record_count=available,
                capacity=capacity,
                runtime=source.export_runtime(),
            )

    def read_split(
        self,
        split: Split,
        runtime: Optional[Dict[str, Any]] = None,
        on_record: Optional[RecordCallback] = None
    ) -> List[Any]:
        """
        Drain one split.

        Args:
            split: Split to read
            runtime: Source state exported while planning
            on_record: Called with (key, record) for every record; when
                given, records are not collected

        Returns:
            Records of the split in remote order (empty when on_record is given)
        """
        source = self.source_factory()
        source.bind_runtime(runtime or {})

        records = []
        with SplitReader(split, source) as reader:
            while reader.has_next():
                record = reader.next()
                if on_record is not None:
                    on_record(reader.current_key(), record)
                else:
                    records.append(record)

            logger.info(
                f"Split {split.start}..{split.end} of {source.source_name} done: "
                f"{reader.rows_processed}/{split.length} records"
            )

        return records

    def run(
        self,
        fetch_row_count: int = 0,
        skip_row_count: int = 0,
        requested_split_count: int = 0,
        requested_page_size: int = 0,
        on_record: Optional[RecordCallback] = None
    ) -> Dict[str, Any]:
        """
        Plan and read a whole extraction sequentially.

        Returns:
            Dictionary with run statistics:
            - status: "success"
            - splits: Number of splits read
            - records_extracted: Number of records returned by the readers
            - records: Collected records (empty when on_record is given)

        Raises:
            ExtractionError: for planning, capacity and classified remote failures
            ETLException: for unexpected failures
        """
        records_extracted = 0
        splits_done = 0
        collected: List[Any] = []

        try:
            plan = self.plan_job(
                fetch_row_count=fetch_row_count,
                skip_row_count=skip_row_count,
                requested_split_count=requested_split_count,
                requested_page_size=requested_page_size,
            )

            for split in plan.splits:
                if on_record is not None:
                    counted = _CountingCallback(on_record)
                    self.read_split(split, plan.runtime, counted)
                    records_extracted += counted.count
                else:
                    split_records = self.read_split(split, plan.runtime)
                    collected.extend(split_records)
                    records_extracted += len(split_records)
                splits_done += 1

            result = {
                "status": "success",
                "splits": splits_done,
                "records_extracted": records_extracted,
                "records": collected,
            }

            logger.info(
                f"Extraction completed: {splits_done} splits, {records_extracted} records"
            )
            return result

        except ExtractionError as e:
            logger.error(
                f"Extraction failed: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            raise

        except ETLException:
            raise

        except Exception as e:
            logger.exception("Unexpected error in extraction")
            raise ETLException(
                "Unexpected error in extraction",
                context={
                    "splits_done": splits_done,
                    "records_extracted": records_extracted
                },
                original_exception=e
            )


class _CountingCallback:
    def __init__(self, callback: RecordCallback):
        self.callback = callback
        self.count = 0

    def __call__(self, key: int, record: Any) -> None:
        self.count += 1
        self.callback(key, record)
