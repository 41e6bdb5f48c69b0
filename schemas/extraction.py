"""
Pydantic schemas exchanged between sources, readers and the error classifier
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from schemas.partition import PlatformCapacity, Split


class Page(BaseModel):
    """
    One bounded batch of records returned by a single remote call.

    is_end is set when the source knows nothing follows this page.
    """

    records: List[Any] = Field(default_factory=list)
    is_end: bool = False

    def __len__(self) -> int:
        return len(self.records)


class OdpPackage(BaseModel):
    """A single ODP data package and the raw rows it carried"""

    package_number: int = Field(..., ge=1)
    rows: List[Dict[str, Any]] = Field(default_factory=list)


class RawResponse(BaseModel):
    """
    Transport independent view of an HTTP response from SAP.

    Only what the error classifier needs is kept: the status code, the
    body decoded as text and the OData data service version header.
    """

    status_code: int
    body: str = ""
    data_service_version: Optional[str] = None
    url: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status_code == 200


class OdpJob(BaseModel):
    """Background extraction job prepared on SAP for an ODP data source"""

    job_name: str
    job_count: str
    total_packages: int = Field(..., ge=0)
    package_size_bytes: int = Field(..., ge=1)

    class Config:
        frozen = True


class ExtractionPlan(BaseModel):
    """
    Everything a worker needs to read its split.

    runtime carries source specific state captured while planning (for
    ODP the prepared job) and is handed to every split source.
    """

    splits: List[Split]
    available_record_count: int = Field(..., ge=0)
    capacity: Optional[PlatformCapacity] = None
    runtime: Dict[str, Any] = Field(default_factory=dict)

    @property
    def total_records(self) -> int:
        return sum(split.length for split in self.splits)
