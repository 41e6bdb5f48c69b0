"""
Pydantic schemas for data validation and serialization.

This package defines the Pydantic models exchanged between the partition
planner, the split readers, the source adapters and the error classifier:

Schemas:
    partition: Extraction requests, platform capacity, unit profiles and splits
    extraction: Pages, ODP packages and jobs, raw HTTP responses and job plans
    odata: SAP Gateway OData error payloads

Usage:
    from schemas.partition import ExtractionRequest, Split, serialize_splits

Example:
    request = ExtractionRequest(
        available_record_count=123,
        fetch_row_count=100,
        skip_row_count=19,
        requested_split_count=7,
        requested_page_size=30
    )

    # Split plans survive a JSON round trip to distributed workers
    payload = serialize_splits(splits)
    assert deserialize_splits(payload) == splits
"""

from schemas.partition import (
    UnitKind,
    UnitProfile,
    ExtractionRequest,
    PlatformCapacity,
    Split,
    serialize_splits,
    deserialize_splits,
)
from schemas.extraction import Page, OdpPackage, OdpJob, RawResponse, ExtractionPlan
from schemas.odata import ODataError

__all__ = [
    "UnitKind",
    "UnitProfile",
    "ExtractionRequest",
    "PlatformCapacity",
    "Split",
    "serialize_splits",
    "deserialize_splits",
    "Page",
    "OdpPackage",
    "RawResponse",
    "OdpJob",
    "ExtractionPlan",
    "ODataError",
]
