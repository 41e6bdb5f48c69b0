"""
Unit tests for the RFC based table and ODP extractors
"""

import pytest

from core.exceptions import (
    CallerInputError,
    InvalidFilterError,
    RemoteNotFoundError,
    RemoteUnauthorizedError,
)
from ingestion.destinations import DestinationRegistry
from ingestion.extractors.odp_extractor import (
    EXTRACT_FUNCTION,
    FETCH_FUNCTION,
    OdpExtractor,
    build_filter_rows,
)
from ingestion.extractors.table_extractor import (
    MAX_OPTION_LENGTH,
    READ_TABLE_FUNCTION,
    TableExtractor,
    wrap_options,
)
from ingestion.rfc import RfcCallError, RfcErrorGroup, check_return_table
from schemas.extraction import OdpJob
from tests.fakes import FakeRfcConnection, memory_stats, wp_info

MARA_FIELDS = [
    {"FIELDNAME": "MANDT", "OFFSET": "000000", "LENGTH": "000003"},
    {"FIELDNAME": "MATNR", "OFFSET": "000003", "LENGTH": "000040"},
    {"FIELDNAME": "ERSDA", "OFFSET": "000043", "LENGTH": "000008"},
]


def read_table_handler(rows):
    """RFC_READ_TABLE answering count calls and paged data calls over rows"""
    def handler(**params):
        if params.get("NO_DATA") == "X":
            return {"EX_COUNT": str(len(rows)), "FIELDS": MARA_FIELDS, "DATA": []}
        skip = params["ROWSKIPS"]
        chunk = rows[skip:skip + params["ROWCOUNT"]]
        return {"FIELDS": MARA_FIELDS, "DATA": [{"WA": row} for row in chunk]}

    return handler


class TestRfcPrimitives:
    """Test return table checks and capacity lookups"""

    def test_return_table_error_row(self):
        rows = [
            {"TYPE": "S", "MESSAGE": "Request created"},
            {"TYPE": "E", "ID": "DATA_SOURCE_NOT_EXIST", "MESSAGE": "Data source does not exist"},
        ]

        with pytest.raises(RfcCallError) as exc_info:
            check_return_table(EXTRACT_FUNCTION, rows)

        assert exc_info.value.key == "DATA_SOURCE_NOT_EXIST"
        assert exc_info.value.group == RfcErrorGroup.ABAP_APPLICATION

    def test_return_table_warnings_pass(self):
        check_return_table(EXTRACT_FUNCTION, [{"TYPE": "W", "MESSAGE": "Warning"}])
        check_return_table(EXTRACT_FUNCTION, [])

    def test_platform_capacity_counts_dialog_processes(self, make_registry):
        """Test only idle dialog work processes count as available"""
        connection = FakeRfcConnection({
            "TH_WPINFO": wp_info(total=12, waiting=6),
            "SAPTUNE_GET_SUMMARY_STATISTIC": memory_stats(2 * 1024 * 1024 * 1024),
        })
        extractor = TableExtractor(make_registry(connection), "S4H", "MARA")

        capacity = extractor.get_platform_capacity()
        extractor.get_platform_capacity()

        assert capacity.total_work_processes == 12
        assert capacity.available_work_processes == 6
        assert capacity.max_memory_per_work_process == 2 * 1024 * 1024 * 1024
        assert len(connection.calls_to("TH_WPINFO")) == 1


class TestTableExtractor:
    """Test reading SAP tables"""

    def test_count_and_record_size(self, make_registry):
        connection = FakeRfcConnection({READ_TABLE_FUNCTION: read_table_handler(["R"] * 250)})
        extractor = TableExtractor(make_registry(connection), "S4H", "mara")

        with extractor:
            assert extractor.get_available_count() == 250
            assert extractor.get_unit_size_bytes() == 51

        params = connection.calls_to(READ_TABLE_FUNCTION)
        assert len(params) == 1
        assert params[0]["QUERY_TABLE"] == "MARA"
        assert params[0]["IM_REC_COUNT"] == "X"
        assert connection.closed is True

    def test_fetch_page_returns_work_areas(self, make_registry):
        rows = [f"100MAT{i:04d}" for i in range(10)]
        connection = FakeRfcConnection({READ_TABLE_FUNCTION: read_table_handler(rows)})
        extractor = TableExtractor(make_registry(connection), "S4H", "MARA", filter_options="MTART = 'FERT'")

        with extractor:
            page = extractor.fetch_page(4, 4)
            last = extractor.fetch_page(8, 4)

        assert page.records == rows[4:8]
        assert page.is_end is False
        assert last.records == rows[8:]
        assert last.is_end is True

        params = connection.calls_to(READ_TABLE_FUNCTION)[0]
        assert params["ROWSKIPS"] == 4
        assert params["ROWCOUNT"] == 4
        assert params["OPTIONS"] == [{"TEXT": "MTART = 'FERT'"}]

    def test_missing_table(self, make_registry):
        connection = FakeRfcConnection({
            READ_TABLE_FUNCTION: RfcCallError(
                RfcErrorGroup.ABAP_APPLICATION,
                key="TABLE_NOT_AVAILABLE",
                message="TABLE_NOT_AVAILABLE"
            )
        })
        extractor = TableExtractor(make_registry(connection), "S4H", "ZMISSING")

        with extractor:
            with pytest.raises(RemoteNotFoundError) as exc_info:
                extractor.get_available_count()

        assert exc_info.value.field == "table_name"
        assert exc_info.value.context["function_name"] == READ_TABLE_FUNCTION

    def test_invalid_where_clause(self, make_registry):
        connection = FakeRfcConnection({
            READ_TABLE_FUNCTION: RfcCallError(RfcErrorGroup.ABAP_APPLICATION, key="OPTION_NOT_VALID")
        })
        extractor = TableExtractor(make_registry(connection), "S4H", "MARA", filter_options="MTART ==")

        with extractor:
            with pytest.raises(InvalidFilterError):
                extractor.fetch_page(0, 10)

    def test_logon_failure_on_open(self, sap_destination):
        """Test a rejected logon surfaces as Unauthorized when the session opens"""
        def factory(**params):
            raise RfcCallError(RfcErrorGroup.LOGON, key="RFC_LOGON_FAILURE", message="Name or password is incorrect")

        registry = DestinationRegistry(connection_factory=factory)
        registry.register(sap_destination)
        extractor = TableExtractor(registry, "S4H", "MARA")

        with pytest.raises(RemoteUnauthorizedError):
            extractor.open()

        assert extractor.is_open is False

    def test_wrap_options(self):
        """Test long WHERE clauses are broken into 72 character lines at blanks"""
        clause = " AND ".join(f"MATNR <> 'MATERIAL{i:03d}'" for i in range(8))

        options = wrap_options(clause)

        assert len(options) > 1
        assert all(len(option["TEXT"]) <= MAX_OPTION_LENGTH for option in options)
        assert " ".join(option["TEXT"] for option in options) == clause

    def test_wrap_options_empty(self):
        assert wrap_options(None) == []
        assert wrap_options("   ") == []


class TestOdpFilters:
    """Test ODP filter option parsing"""

    def test_equal_and_range_options(self):
        rows = build_filter_rows("vbeln:0000004711, ERDAT:20240101 AND 20241231")

        assert rows == [
            {"FIELDNAME": "VBELN", "SIGN": "I", "OPT": "EQ", "LOW": "0000004711"},
            {"FIELDNAME": "ERDAT", "SIGN": "I", "OPT": "BT", "LOW": "20240101", "HIGH": "20241231"},
        ]

    def test_list_of_options(self):
        assert build_filter_rows(["MATNR:100"]) == [
            {"FIELDNAME": "MATNR", "SIGN": "I", "OPT": "EQ", "LOW": "100"}
        ]

    @pytest.mark.parametrize("option", ["MATNR", ":100", "MATNR:"])
    def test_malformed_option(self, option):
        with pytest.raises(CallerInputError):
            build_filter_rows([option])


def odp_connection(total_packages=3, extract_return=None, memory=100 * 1024 * 1024):
    def fetch(I_JOBNAME, I_JOBCOUNT, I_PACKAGE_NO):
        return {"ET_DATA": [{"PACKAGE": I_PACKAGE_NO, "ROW": 1}], "T_RETURN": []}

    return FakeRfcConnection({
        "TH_WPINFO": wp_info(total=10, waiting=8),
        "SAPTUNE_GET_SUMMARY_STATISTIC": memory_stats(memory),
        EXTRACT_FUNCTION: {
            "E_TOT_PACKAGES": total_packages,
            "E_JOBNAME": "ODP_EXTRACT",
            "E_JOBCOUNT": "12345678",
            "T_RETURN": extract_return or [],
        },
        FETCH_FUNCTION: fetch,
    })


class TestOdpExtractor:
    """Test ODP preparation and package reads"""

    def test_invalid_extraction_mode(self, make_registry):
        with pytest.raises(CallerInputError):
            OdpExtractor(make_registry(odp_connection()), "S4H", "2LIS_11_VAITM", "ETL", extraction_mode="X")

    def test_prepare_schedules_job_once(self, make_registry):
        connection = odp_connection()
        extractor = OdpExtractor(
            make_registry(connection),
            "S4H",
            "2LIS_11_VAITM",
            "ETL",
            filter_options="VKORG:1000"
        )

        with extractor:
            assert extractor.get_available_count() == 3
            assert extractor.get_available_count() == 3

        calls = connection.calls_to(EXTRACT_FUNCTION)
        assert len(calls) == 1
        assert calls[0]["I_OLTPSOURCE"] == "2LIS_11_VAITM"
        assert calls[0]["I_EXTRACTION_MODE"] == "F"
        assert calls[0]["I_MAXPACKAGESIZE"] == 50 * 1024 * 1024
        assert calls[0]["I_SUBSCRIBER_RUN"].startswith("REQ_")
        assert calls[0]["T_FILTER"] == [{"FIELDNAME": "VKORG", "SIGN": "I", "OPT": "EQ", "LOW": "1000"}]
        assert extractor.get_unit_size_bytes() == 50 * 1024 * 1024

    def test_package_size_capped_by_memory(self, make_registry):
        connection = odp_connection(memory=10 * 1024 * 1024)
        extractor = OdpExtractor(make_registry(connection), "S4H", "2LIS_11_VAITM", "ETL")

        with extractor:
            job = extractor.prepare()

        assert job.package_size_bytes == int(10 * 1024 * 1024 * 0.7)

    def test_return_table_error(self, make_registry):
        connection = odp_connection(extract_return=[
            {"TYPE": "E", "ID": "DATA_SOURCE_NOT_EXIST", "MESSAGE": "Data source ZMISSING does not exist"}
        ])
        extractor = OdpExtractor(make_registry(connection), "S4H", "ZMISSING", "ETL")

        with extractor:
            with pytest.raises(RemoteNotFoundError) as exc_info:
                extractor.prepare()

        assert exc_info.value.field == "datasource_name"
        assert "ZMISSING" in exc_info.value.message

    def test_fetch_packages(self, make_registry):
        """Test skip/limit address package numbers starting at 1"""
        connection = odp_connection(total_packages=3)
        extractor = OdpExtractor(make_registry(connection), "S4H", "2LIS_11_VAITM", "ETL")

        with extractor:
            first = extractor.fetch_page(0, 1)
            last = extractor.fetch_page(2, 1)

        assert first.records[0].package_number == 1
        assert first.is_end is False
        assert last.records[0].package_number == 3
        assert last.records[0].rows == [{"PACKAGE": 3, "ROW": 1}]
        assert last.is_end is True
        assert [c["I_PACKAGE_NO"] for c in connection.calls_to(FETCH_FUNCTION)] == [1, 3]

    def test_bound_job_is_reused(self, make_registry):
        """Test a split source adopts the planning job instead of preparing again"""
        connection = odp_connection()
        planning = OdpExtractor(make_registry(connection), "S4H", "2LIS_11_VAITM", "ETL")
        with planning:
            planning.prepare()
            runtime = planning.export_runtime()

        worker = OdpExtractor(make_registry(connection), "S4H", "2LIS_11_VAITM", "ETL")
        worker.bind_runtime({"job": runtime["job"].model_dump()})

        with worker:
            worker.fetch_page(1, 1)

        assert isinstance(worker.job, OdpJob)
        assert worker.job.job_count == "12345678"
        assert len(connection.calls_to(EXTRACT_FUNCTION)) == 1
