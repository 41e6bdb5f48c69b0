"""
RFC primitives shared by the table and ODP connectors.

Connections are anything shaped like pyrfc's Connection:

    conn.call("TH_WPINFO", SRVNAME="")  -> {"WPLIST": [{...}, ...]}
    conn.close()

The connectors never construct connections themselves; a
DestinationRegistry hands them out through an injected factory.
"""

from typing import Any, Dict, Iterable, List, Optional, Protocol
import enum
import logging

from schemas.partition import PlatformCapacity

logger = logging.getLogger(__name__)


WP_INFO_FUNCTION = "TH_WPINFO"
MEMORY_STATS_FUNCTION = "SAPTUNE_GET_SUMMARY_STATISTIC"

DIALOG_WORK_PROCESS = "DIA"
WAITING_STATUS = "Waiting"
DIALOG_MEMORY_TYPE = "1"

# T_RETURN message types that abort an ABAP call
ERROR_MESSAGE_TYPES = ("E", "A")


class RfcConnection(Protocol):
    """Minimal surface of an RFC connection used by the connectors"""

    def call(self, function_name: str, **params: Any) -> Dict[str, Any]:
        ...

    def close(self) -> None:
        ...


class RfcErrorGroup(str, enum.Enum):
    """Origin of an RFC failure, mirroring pyrfc's exception classes"""
    ABAP_APPLICATION = "abap_application"
    ABAP_RUNTIME = "abap_runtime"
    COMMUNICATION = "communication"
    LOGON = "logon"
    EXTERNAL = "external"


class RfcCallError(Exception):
    """
    Failure raised by an RFC connection.

    Attributes:
        group: Which layer failed (ABAP application, communication, logon, ...)
        key: ABAP exception key, e.g. TABLE_NOT_AVAILABLE
        message: Raw message text reported by SAP
        function_name: Remote function that was called
    """

    def __init__(
        self,
        group: RfcErrorGroup,
        key: Optional[str] = None,
        message: Optional[str] = None,
        function_name: Optional[str] = None
    ):
        self.group = group
        self.key = key
        self.message = message or ""
        self.function_name = function_name
        super().__init__(f"{group.value} {key or ''}: {self.message}".strip())


def check_return_table(function_name: str, rows: Iterable[Dict[str, Any]]) -> None:
    """
    Raise for the first error row of an ABAP BAPIRET2 style return table.

    Raises:
        RfcCallError: if a row has message type E or A
    """
    for row in rows or []:
        if row.get("TYPE") in ERROR_MESSAGE_TYPES:
            raise RfcCallError(
                RfcErrorGroup.ABAP_APPLICATION,
                key=row.get("ID") or row.get("NUMBER") or None,
                message=row.get("MESSAGE", ""),
                function_name=function_name
            )


def count_dialog_work_processes(wp_list: List[Dict[str, Any]]) -> Dict[str, int]:
    """Count dialog work processes and how many of them are idle"""
    total = 0
    available = 0
    for row in wp_list:
        if str(row.get("WP_TYP", "")).strip() != DIALOG_WORK_PROCESS:
            continue
        total += 1
        if str(row.get("WP_STATUS", "")).strip() == WAITING_STATUS:
            available += 1
    return {"total": total, "available": available}


def dialog_memory_limit(alloc_rows: List[Dict[str, Any]]) -> int:
    """Memory ceiling in bytes for one dialog work process"""
    for row in alloc_rows:
        if str(row.get("MEMTYPE", "")).strip() == DIALOG_MEMORY_TYPE:
            return int(row.get("AMOUNT") or 0)
    return 0


def read_platform_capacity(connection: RfcConnection) -> PlatformCapacity:
    """
    Query work-process availability and memory once per job.

    Returns:
        PlatformCapacity snapshot used by the partition planner
    """
    wp_info = connection.call(WP_INFO_FUNCTION)
    counts = count_dialog_work_processes(wp_info.get("WPLIST", []))

    memory_stats = connection.call(MEMORY_STATS_FUNCTION)
    max_memory = dialog_memory_limit(memory_stats.get("ALLOC_PROCEDURE_DIA", []))

    logger.info(
        f"SAP dialog work processes: {counts['total']} total, {counts['available']} available, "
        f"{max_memory} bytes per process"
    )

    return PlatformCapacity(
        total_work_processes=counts["total"],
        available_work_processes=counts["available"],
        max_memory_per_work_process=max_memory,
    )
