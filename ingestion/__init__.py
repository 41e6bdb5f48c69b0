"""
Extraction components for SAP sources.

This package contains everything needed to split an extraction into
parallel units of work and to read each unit page by page:

Modules:
    planner: Partition planner turning an extraction window into splits
    reader: Pull-based split reader with explicit lifecycle phases
    classifier: Maps raw SAP failures to the RemoteError taxonomy
    base: Abstract base class for remote data sources
    rfc: RFC connection protocol, RFC errors and capacity lookups
    destinations: Registry of named RFC destinations
    runner: Orchestrator planning a job and draining its splits

Subpackages:
    extractors: Source adapters (OData, table, ODP)

Architecture:
    An extraction runs in two phases:

    1. Plan - Read the available count and platform capacity once and
       build contiguous, non-overlapping splits
    2. Read - Every split gets its own reader and source session and
       pulls pages of at most split.page_size records

    Splits serialize to JSON so a host framework can ship them to workers.

Usage:
    from ingestion.extractors import ODataExtractor
    from ingestion.planner import PartitionPlanner, ODATA_PROFILE
    from ingestion.runner import ExtractionRunner

Example:
    runner = ExtractionRunner(
        source_factory=lambda: ODataExtractor(
            base_url="https://sap.example.com/sap/opu/odata/sap",
            service_name="API_SALES_ORDER_SRV",
            entity_name="A_SalesOrder",
            username="EXTRACT_USER",
            password="secret"
        ),
        planner=PartitionPlanner(ODATA_PROFILE)
    )
    result = runner.run(requested_split_count=4)

    print(f"Extracted {result['records_extracted']} records")

Error Handling:
    All components raise exceptions from core.exceptions. Remote failures
    are always RemoteError subclasses carrying a kind, the SAP code and
    the configuration field the user should correct.
"""

from ingestion.rfc import RfcConnection, RfcCallError, RfcErrorGroup, read_platform_capacity
from ingestion.classifier import ErrorClassifier
from ingestion.base import RemoteDataSource
from ingestion.planner import (
    PartitionPlanner,
    ODATA_PROFILE,
    TABLE_PROFILE,
    ODP_PROFILE,
    resolve_package_size_bytes,
)
from ingestion.reader import SplitReader, ReaderPhase
from ingestion.destinations import DestinationRegistry, RfcDestination
from ingestion.extractors import ODataExtractor, TableExtractor, OdpExtractor
from ingestion.runner import ExtractionRunner

__all__ = [
    "RfcConnection",
    "RfcCallError",
    "RfcErrorGroup",
    "read_platform_capacity",
    "ErrorClassifier",
    "RemoteDataSource",
    "PartitionPlanner",
    "ODATA_PROFILE",
    "TABLE_PROFILE",
    "ODP_PROFILE",
    "resolve_package_size_bytes",
    "SplitReader",
    "ReaderPhase",
    "DestinationRegistry",
    "RfcDestination",
    "ODataExtractor",
    "TableExtractor",
    "OdpExtractor",
    "ExtractionRunner",
]
