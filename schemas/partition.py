"""
Pydantic schemas for extraction planning: requests, capacity and splits
"""

from pydantic import BaseModel, Field, TypeAdapter, validator
from typing import List
import enum


class UnitKind(str, enum.Enum):
    """What one unit of the logical record space is for a source"""
    ROWS = "rows"
    PACKAGES = "packages"
    ENTRIES = "entries"


class UnitProfile(BaseModel):
    """
    Unit semantics the partition planner is parameterized with.

    Each source kind counts its record space differently (table rows, ODP
    packages, OData feed entries) and has its own default and ceiling for
    the number of units fetched per remote call.
    """

    unit: UnitKind
    default_page_size: int = Field(..., ge=1)
    max_page_size: int = Field(..., ge=1)

    class Config:
        frozen = True


class ExtractionRequest(BaseModel):
    """
    Caller supplied extraction window.

    Zero means "unbounded" for fetch_row_count and "let the planner
    choose" for requested_split_count and requested_page_size.
    """

    available_record_count: int = Field(..., ge=0)
    fetch_row_count: int = Field(0, ge=0)
    skip_row_count: int = Field(0, ge=0)
    requested_split_count: int = Field(0, ge=0)
    requested_page_size: int = Field(0, ge=0)

    class Config:
        frozen = True


class PlatformCapacity(BaseModel):
    """Snapshot of SAP dialog work processes and their memory ceiling"""

    total_work_processes: int = Field(..., ge=0)
    available_work_processes: int = Field(..., ge=0)
    max_memory_per_work_process: int = Field(..., ge=0)  # bytes

    class Config:
        frozen = True


class Split(BaseModel):
    """
    Contiguous sub-range of the logical record space for one worker.

    start and end are 1-based and inclusive. page_size is the maximum
    number of units requested per remote call; the last call of a split
    may request fewer.
    """

    start: int = Field(..., ge=1)
    end: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)

    class Config:
        frozen = True

    @validator("end")
    def end_not_before_start(cls, v, values):
        """Reject empty or inverted ranges"""
        start = values.get("start")
        if start is not None and v < start:
            raise ValueError(f"Split end ({v}) must not be before start ({start})")
        return v

    @property
    def length(self) -> int:
        return self.end - self.start + 1


_SPLIT_LIST = TypeAdapter(List[Split])


def serialize_splits(splits: List[Split]) -> str:
    """Serialize a split plan as a JSON list of {start, end, page_size}"""
    return _SPLIT_LIST.dump_json(splits).decode("utf-8")


def deserialize_splits(payload: str) -> List[Split]:
    """Restore a split plan produced by serialize_splits()"""
    return _SPLIT_LIST.validate_json(payload)


def total_length(splits: List[Split]) -> int:
    return sum(split.length for split in splits)
