"""
End-to-end tests of the extraction runner

Every test plans a job, then drains each split with its own source, the
same way a host framework would do on its workers.
"""

import httpx
import pytest

from core.exceptions import (
    ETLException,
    NoRecordsToExtractError,
    NoWorkProcessesAvailableError,
    TransportFailure,
)
from ingestion.extractors import ODataExtractor, OdpExtractor, TableExtractor
from ingestion.extractors.odp_extractor import EXTRACT_FUNCTION, FETCH_FUNCTION
from ingestion.extractors.table_extractor import READ_TABLE_FUNCTION
from ingestion.planner import ODATA_PROFILE, ODP_PROFILE, TABLE_PROFILE, PartitionPlanner
from ingestion.runner import ExtractionRunner
from schemas.partition import PlatformCapacity, Split, deserialize_splits, serialize_splits
from tests.fakes import FakeRfcConnection, FakeSource, memory_stats, wp_info


class SourceFactory:
    """Builds FakeSources over the same records and keeps every instance"""

    def __init__(self, records, **kwargs):
        self.records = records
        self.kwargs = kwargs
        self.sources = []

    def __call__(self):
        source = FakeSource(self.records, **self.kwargs)
        self.sources.append(source)
        return source


class TestExtractionRunner:
    """Test planning and reading with in-memory sources"""

    def test_run_extracts_every_record_once(self, sample_records):
        factory = SourceFactory(sample_records)
        runner = ExtractionRunner(factory, PartitionPlanner(TABLE_PROFILE))

        result = runner.run(requested_split_count=4, requested_page_size=10)

        assert result["status"] == "success"
        assert result["splits"] == 4
        assert result["records_extracted"] == 100
        assert result["records"] == sample_records

    def test_every_split_gets_its_own_session(self, sample_records):
        """Test one planning session plus one session per split, all closed"""
        factory = SourceFactory(sample_records)
        runner = ExtractionRunner(factory, PartitionPlanner(TABLE_PROFILE))

        runner.run(requested_split_count=3)

        assert len(factory.sources) == 4
        assert all(source.open_count == 1 and source.close_count == 1 for source in factory.sources)
        # The planning session never fetches pages
        assert factory.sources[0].calls == []

    def test_skip_and_fetch_window(self, sample_records):
        factory = SourceFactory(sample_records)
        runner = ExtractionRunner(factory, PartitionPlanner(TABLE_PROFILE))

        result = runner.run(fetch_row_count=30, skip_row_count=10, requested_split_count=3)

        assert [r["id"] for r in result["records"]] == list(range(10, 40))

    def test_callback_receives_keys(self, sample_records):
        """Test keys are continuous across splits when streaming records"""
        factory = SourceFactory(sample_records)
        runner = ExtractionRunner(factory, PartitionPlanner(TABLE_PROFILE))
        seen = []

        result = runner.run(
            skip_row_count=5,
            requested_split_count=4,
            on_record=lambda key, record: seen.append((key, record["id"]))
        )

        assert result["records"] == []
        assert result["records_extracted"] == 95
        assert seen == [(i, i) for i in range(5, 100)]

    def test_serialized_plan_can_be_read_elsewhere(self, sample_records):
        """Test splits shipped as JSON read the same records"""
        factory = SourceFactory(sample_records)
        runner = ExtractionRunner(factory, PartitionPlanner(TABLE_PROFILE))

        plan = runner.plan_job(requested_split_count=7, requested_page_size=6)
        shipped = deserialize_splits(serialize_splits(plan.splits))

        records = []
        for split in shipped:
            records.extend(runner.read_split(split, plan.runtime))

        assert records == sample_records

    def test_split_count_limited_by_capacity(self, sample_records):
        capacity = PlatformCapacity(
            total_work_processes=10,
            available_work_processes=4,
            max_memory_per_work_process=1024 * 1024
        )
        factory = SourceFactory(sample_records, capacity=capacity, unit_size_bytes=100)
        runner = ExtractionRunner(factory, PartitionPlanner(TABLE_PROFILE))

        plan = runner.plan_job(requested_split_count=10)

        assert len(plan.splits) == 2
        assert plan.capacity == capacity


class TestExtractionFailures:
    """Test error propagation through the runner"""

    def test_empty_source(self):
        runner = ExtractionRunner(SourceFactory([]), PartitionPlanner(TABLE_PROFILE))

        with pytest.raises(NoRecordsToExtractError):
            runner.run()

    def test_busy_system(self, sample_records):
        capacity = PlatformCapacity(
            total_work_processes=10,
            available_work_processes=0,
            max_memory_per_work_process=1024 * 1024
        )
        runner = ExtractionRunner(SourceFactory(sample_records, capacity=capacity), PartitionPlanner(TABLE_PROFILE))

        with pytest.raises(NoWorkProcessesAvailableError):
            runner.run()

    def test_remote_failure_closes_sessions(self, sample_records):
        factory = SourceFactory(sample_records, fail_on_call=2, failure=httpx.ReadTimeout("timed out"))
        runner = ExtractionRunner(factory, PartitionPlanner(TABLE_PROFILE))

        with pytest.raises(TransportFailure):
            runner.run(requested_split_count=2, requested_page_size=10)

        assert all(source.is_open is False for source in factory.sources)

    def test_first_page_failure_closes_split_session(self, sample_records):
        """Test a split whose first page fails still releases its session"""
        factory = SourceFactory(sample_records, fail_on_call=1, failure=TimeoutError("timed out"))
        runner = ExtractionRunner(factory, PartitionPlanner(TABLE_PROFILE))

        with pytest.raises(TransportFailure):
            runner.read_split(Split(start=1, end=10, page_size=5))

        split_source = factory.sources[0]
        assert split_source.open_count == 1
        assert split_source.close_count == 1
        assert split_source.is_open is False

    def test_unexpected_failure_is_wrapped(self, sample_records):
        class BrokenSource(FakeSource):
            def get_available_count(self):
                raise ValueError("broken")

        runner = ExtractionRunner(lambda: BrokenSource(sample_records), PartitionPlanner(TABLE_PROFILE))

        with pytest.raises(ETLException) as exc_info:
            runner.run()

        assert isinstance(exc_info.value.original_exception, ValueError)


class TestSapSources:
    """Test the runner with the real adapters over faked transports"""

    def test_odata_extraction(self):
        entries = [{"SalesOrder": str(i)} for i in range(12)]

        def handler(request):
            headers = {"dataserviceversion": "2.0"}
            if request.url.path.endswith("$count"):
                return httpx.Response(200, text=str(len(entries)), headers=headers)
            skip = int(request.url.params.get("$skip", "0"))
            top = int(request.url.params["$top"])
            return httpx.Response(200, json={"d": {"results": entries[skip:skip + top]}}, headers=headers)

        runner = ExtractionRunner(
            lambda: ODataExtractor(
                base_url="https://sap.example.com/sap/opu/odata/sap",
                service_name="API_SALES_ORDER_SRV",
                entity_name="A_SalesOrder",
                username="EXTRACT_USER",
                password="s3cret",
                transport=httpx.MockTransport(handler)
            ),
            PartitionPlanner(ODATA_PROFILE)
        )

        result = runner.run(requested_split_count=2, requested_page_size=5)

        assert result["records"] == entries
        assert result["splits"] == 2

    def test_table_extraction(self, make_registry):
        rows = [f"100MAT{i:04d}" for i in range(25)]

        def read_table(**params):
            if params.get("NO_DATA") == "X":
                return {"EX_COUNT": str(len(rows)), "FIELDS": [{"OFFSET": "000003", "LENGTH": "000040"}]}
            skip = params["ROWSKIPS"]
            return {"DATA": [{"WA": row} for row in rows[skip:skip + params["ROWCOUNT"]]]}

        connection = FakeRfcConnection({
            "TH_WPINFO": wp_info(total=10, waiting=8),
            "SAPTUNE_GET_SUMMARY_STATISTIC": memory_stats(100 * 1024 * 1024),
            READ_TABLE_FUNCTION: read_table,
        })
        registry = make_registry(connection)
        runner = ExtractionRunner(lambda: TableExtractor(registry, "S4H", "MARA"), PartitionPlanner(TABLE_PROFILE))

        result = runner.run(requested_split_count=3, requested_page_size=4)

        assert result["records"] == rows
        assert result["splits"] == 3
        # Capacity is read once per job
        assert len(connection.calls_to("TH_WPINFO")) == 1

    def test_odp_extraction_shares_the_job(self, make_registry):
        def fetch(I_JOBNAME, I_JOBCOUNT, I_PACKAGE_NO):
            return {"ET_DATA": [{"PACKAGE": I_PACKAGE_NO}]}

        connection = FakeRfcConnection({
            "TH_WPINFO": wp_info(total=10, waiting=8),
            "SAPTUNE_GET_SUMMARY_STATISTIC": memory_stats(100 * 1024 * 1024),
            EXTRACT_FUNCTION: {"E_TOT_PACKAGES": 3, "E_JOBNAME": "ODP_EXTRACT", "E_JOBCOUNT": "1", "T_RETURN": []},
            FETCH_FUNCTION: fetch,
        })
        registry = make_registry(connection)
        runner = ExtractionRunner(
            lambda: OdpExtractor(registry, "S4H", "2LIS_11_VAITM", "ETL"),
            PartitionPlanner(ODP_PROFILE)
        )

        result = runner.run()

        assert [package.package_number for package in result["records"]] == [1, 2, 3]
        assert result["splits"] == 3
        assert len(connection.calls_to(EXTRACT_FUNCTION)) == 1
