"""
SAP ODP data source extractor.

Extraction runs in two phases:

1. prepare() calls /GOOG/ODP_DS_EXTRACT_DATA which schedules a background
   job on SAP that cuts the data source into packages of at most
   I_MAXPACKAGESIZE bytes and reports how many packages it produced.
2. fetch_page() reads packages of that job one by one through
   /GOOG/ODP_DS_FETCH_DATA. The record space of an ODP source is the
   package list, so skip/limit address package numbers.
"""

from typing import Any, Dict, List, Optional, Union
import logging
import re
import time

from core.exceptions import CallerInputError, UnknownRemoteError
from ingestion.classifier import ErrorClassifier
from ingestion.destinations import DestinationRegistry
from ingestion.extractors.rfc_extractor import RfcExtractor
from ingestion.planner import resolve_package_size_bytes
from ingestion.rfc import RfcCallError, check_return_table
from schemas.extraction import OdpJob, OdpPackage, Page
from schemas.partition import UnitKind

logger = logging.getLogger(__name__)


EXTRACT_FUNCTION = "/GOOG/ODP_DS_EXTRACT_DATA"
FETCH_FUNCTION = "/GOOG/ODP_DS_FETCH_DATA"

EXTRACTION_MODE_FULL = "F"
EXTRACTION_MODE_DELTA = "D"
EXTRACTION_MODE_RECOVERY = "R"
EXTRACTION_MODES = (EXTRACTION_MODE_FULL, EXTRACTION_MODE_DELTA, EXTRACTION_MODE_RECOVERY)

_RANGE_VALUE = re.compile(r"^(.+?)\s+AND\s+(.+)$", re.IGNORECASE)


def build_filter_rows(filter_options: Union[str, List[str], None]) -> List[Dict[str, str]]:
    """
    Turn FIELD:value and FIELD:low AND high options into T_FILTER rows.

    Options may be given as a list or as one comma separated string.

    Raises:
        CallerInputError: if an option has no field name or no value
    """
    if not filter_options:
        return []
    if isinstance(filter_options, str):
        filter_options = [option for option in filter_options.split(",") if option.strip()]

    rows = []
    for option in filter_options:
        field_name, sep, value = option.partition(":")
        if not sep or not field_name.strip() or not value.strip():
            raise CallerInputError(
                f"Filter option '{option}' must look like FIELD:value or FIELD:low AND high",
                context={"filter_option": option}
            )

        row = {"FIELDNAME": field_name.strip().upper(), "SIGN": "I"}
        match = _RANGE_VALUE.match(value.strip())
        if match:
            row.update({"OPT": "BT", "LOW": match.group(1).strip(), "HIGH": match.group(2).strip()})
        else:
            row.update({"OPT": "EQ", "LOW": value.strip()})
        rows.append(row)

    return rows


class OdpExtractor(RfcExtractor):
    """
    Extract the packages of one ODP data source.

    Attributes:
        datasource_name: ODP data source, e.g. 2LIS_11_VAITM
        extraction_mode: F (full), D (delta) or R (recovery of last delta)
        subscriber_name: ODQ subscriber the extraction is registered under
        package_size_bytes: Requested package size, 0 for the default
        job: Prepared extraction job, shared by every split
    """

    unit = UnitKind.PACKAGES

    def __init__(
        self,
        registry: DestinationRegistry,
        destination: str,
        datasource_name: str,
        subscriber_name: str,
        extraction_mode: str = EXTRACTION_MODE_FULL,
        filter_options: Union[str, List[str], None] = None,
        package_size_bytes: int = 0,
        job: Optional[OdpJob] = None,
        source_name: Optional[str] = None
    ):
        super().__init__(
            registry=registry,
            destination=destination,
            source_name=source_name or datasource_name,
            classifier=ErrorClassifier(object_name=datasource_name, object_field="datasource_name")
        )
        if extraction_mode not in EXTRACTION_MODES:
            raise CallerInputError(
                f"Invalid extraction mode '{extraction_mode}'",
                context={"extraction_mode": extraction_mode, "allowed": list(EXTRACTION_MODES)}
            )

        self.datasource_name = datasource_name.strip()
        self.subscriber_name = subscriber_name
        self.extraction_mode = extraction_mode
        self.filter_rows = build_filter_rows(filter_options)
        self.package_size_bytes = package_size_bytes
        self.job = job

    def prepare(self) -> OdpJob:
        """
        Schedule the extraction job on SAP.

        The package size is capped by the memory of one work process, so
        the platform capacity is read first.
        """
        if self.job is not None:
            return self.job

        capacity = self.get_platform_capacity()
        package_size = resolve_package_size_bytes(self.package_size_bytes, capacity)

        params = {
            "I_OLTPSOURCE": self.datasource_name,
            "I_EXTRACTION_MODE": self.extraction_mode,
            "I_SUBSCRIBER_NAME": self.subscriber_name,
            "I_SUBSCRIBER_PROCESS": self.subscriber_name,
            "I_SUBSCRIBER_RUN": f"REQ_{int(time.time() * 1000)}",
            "I_MAXPACKAGESIZE": package_size,
        }
        if self.filter_rows:
            params["T_FILTER"] = self.filter_rows

        result = self.call(EXTRACT_FUNCTION, "Failed to prepare the ODP extraction", **params)
        self._check_return(EXTRACT_FUNCTION, result)

        try:
            total_packages = int(result.get("E_TOT_PACKAGES") or 0)
        except (TypeError, ValueError) as e:
            raise UnknownRemoteError(
                f"Unexpected package count from {EXTRACT_FUNCTION}",
                context={"datasource_name": self.datasource_name},
                original_exception=e
            )

        self.job = OdpJob(
            job_name=str(result.get("E_JOBNAME", "")),
            job_count=str(result.get("E_JOBCOUNT", "")),
            total_packages=total_packages,
            package_size_bytes=package_size,
        )
        logger.info(
            f"Prepared ODP extraction of {self.datasource_name}: {total_packages} packages "
            f"(job {self.job.job_name}/{self.job.job_count})"
        )
        return self.job

    def get_available_count(self) -> int:
        return self.prepare().total_packages

    def get_unit_size_bytes(self) -> Optional[int]:
        return self.job.package_size_bytes if self.job is not None else None

    def export_runtime(self) -> Dict[str, Any]:
        return {"job": self.job} if self.job is not None else {}

    def bind_runtime(self, runtime: Dict[str, Any]) -> None:
        job = runtime.get("job")
        if job is not None:
            self.job = job if isinstance(job, OdpJob) else OdpJob.model_validate(job)

    def fetch_page(self, skip: int, limit: int) -> Page:
        job = self.prepare()
        packages = []
        first = skip + 1
        last = min(skip + limit, job.total_packages)

        for package_number in range(first, last + 1):
            result = self.call(
                FETCH_FUNCTION,
                f"Failed to pull package {package_number} of {job.total_packages}",
                I_JOBNAME=job.job_name,
                I_JOBCOUNT=job.job_count,
                I_PACKAGE_NO=package_number,
            )
            self._check_return(FETCH_FUNCTION, result)
            packages.append(OdpPackage(package_number=package_number, rows=result.get("ET_DATA", [])))

        logger.debug(f"Fetched packages {first}..{last} of {self.datasource_name}")
        return Page(records=packages, is_end=last >= job.total_packages)

    def _check_return(self, function_name: str, result: Dict[str, Any]) -> None:
        try:
            check_return_table(function_name, result.get("T_RETURN", []))
        except RfcCallError as e:
            raise self.classifier.classify_rfc(e, f"{function_name} reported an error") from e
