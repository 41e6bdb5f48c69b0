"""
Common base for sources reached through SAP RFC function calls
"""

from typing import Any, Dict, Optional
import logging

from ingestion.base import RemoteDataSource
from ingestion.classifier import ErrorClassifier
from ingestion.destinations import DestinationRegistry
from ingestion.rfc import RfcCallError, RfcConnection, read_platform_capacity
from schemas.partition import PlatformCapacity

logger = logging.getLogger(__name__)


class RfcExtractor(RemoteDataSource):
    """
    RFC source holding one connection per open session.

    Every remote function call goes through call(), which turns RFC errors
    into classified RemoteError exceptions.

    Attributes:
        registry: Destination registry the connection is obtained from
        destination: Name of the registered destination
    """

    def __init__(
        self,
        registry: DestinationRegistry,
        destination: str,
        source_name: str,
        classifier: Optional[ErrorClassifier] = None
    ):
        super().__init__(source_name=source_name, classifier=classifier)
        self.registry = registry
        self.destination = destination
        self._connection: Optional[RfcConnection] = None
        self._capacity: Optional[PlatformCapacity] = None

    @property
    def connection(self) -> RfcConnection:
        if self._connection is None:
            self.open()
        return self._connection

    def _open(self) -> None:
        try:
            self._connection = self.registry.connect(self.destination)
        except RfcCallError as e:
            raise self.classifier.classify_rfc(e, "Failed to connect to the SAP system") from e
        logger.info(f"Connected to SAP destination {self.destination} for {self.source_name}")

    def _close(self) -> None:
        if self._connection is not None:
            try:
                self._connection.close()
            finally:
                self._connection = None

    def call(self, function_name: str, stage: Optional[str] = None, **params: Any) -> Dict[str, Any]:
        """
        Execute a remote function.

        Raises:
            RemoteError: classified RFC failure
        """
        logger.debug(f"Calling {function_name} on {self.destination}")
        try:
            return self.connection.call(function_name, **params)
        except RfcCallError as e:
            if e.function_name is None:
                e.function_name = function_name
            raise self.classifier.classify_rfc(e, stage or f"Failed to execute {function_name}") from e

    def get_platform_capacity(self) -> Optional[PlatformCapacity]:
        """Work-process snapshot, read from SAP once per source"""
        if self._capacity is None:
            try:
                self._capacity = read_platform_capacity(self.connection)
            except RfcCallError as e:
                raise self.classifier.classify_rfc(e, "Failed to read SAP work process details") from e
        return self._capacity
