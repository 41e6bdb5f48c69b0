"""
SAP Gateway OData v2 source with Basic authentication and retry logic.

This module provides:
- Entity set reads addressed by $skip / $top
- Available record count through the $count endpoint
- Retries with exponential backoff for 5xx responses and I/O failures
- Classification of every other failure through the ErrorClassifier
"""

from typing import Any, Dict, List, Optional, Union
import logging
import time

import httpx
from pydantic import SecretStr

from core.config import settings
from core.exceptions import UnknownRemoteError
from ingestion.base import RemoteDataSource
from ingestion.classifier import ErrorClassifier, response_to_raw
from schemas.extraction import Page
from schemas.partition import UnitKind

logger = logging.getLogger(__name__)


class ODataExtractor(RemoteDataSource):
    """
    Extract entries of one entity set of a SAP OData v2 service.

    URLs are built as {base_url}/{service_name}/{entity_name} with the
    query options applied in the order $filter, $select, $expand.

    Attributes:
        max_retries: Maximum number of attempts per call (default: 3)
        retry_delay: Initial retry delay in seconds (default: 0.1)
        timeout: Connect and read timeout in seconds (default: 10.0)
    """

    unit = UnitKind.ENTRIES

    def __init__(
        self,
        base_url: str,
        service_name: str,
        entity_name: str,
        username: Optional[str] = None,
        password: Optional[Union[str, SecretStr]] = None,
        filter_option: Optional[str] = None,
        select_option: Optional[str] = None,
        expand_option: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
        source_name: Optional[str] = None
    ):
        super().__init__(
            source_name=source_name or f"{service_name}/{entity_name}",
            classifier=ErrorClassifier(service_name=service_name, entity_name=entity_name)
        )
        self.base_url = base_url.rstrip("/")
        self.service_name = service_name.strip("/")
        self.entity_name = entity_name.strip("/")
        self.username = username
        self.password = password if isinstance(password, SecretStr) or password is None else SecretStr(password)
        self.filter_option = filter_option
        self.select_option = select_option
        self.expand_option = expand_option
        self.max_retries = max(1, max_retries or settings.ODATA_MAX_RETRIES)
        self.retry_delay = retry_delay if retry_delay is not None else settings.ODATA_RETRY_DELAY_SECONDS
        self.timeout = timeout or settings.ODATA_TIMEOUT_SECONDS
        self.transport = transport

        self._client: Optional[httpx.Client] = None

    @property
    def entity_url(self) -> str:
        return f"{self.base_url}/{self.service_name}/{self.entity_name}"

    @property
    def count_url(self) -> str:
        return f"{self.entity_url}/$count"

    def query_options(self) -> Dict[str, str]:
        """$filter, $select and $expand, skipping the ones not configured"""
        options = {}
        if self.filter_option:
            options["$filter"] = self.filter_option
        if self.select_option:
            options["$select"] = self.select_option
        if self.expand_option:
            options["$expand"] = self.expand_option
        return options

    def _open(self) -> None:
        auth = None
        if self.username:
            secret = self.password.get_secret_value() if self.password else ""
            auth = httpx.BasicAuth(self.username, secret)

        self._client = httpx.Client(
            auth=auth,
            headers={"Accept": "application/json"},
            timeout=httpx.Timeout(self.timeout),
            transport=self.transport
        )

    def _close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _make_request_with_retry(self, url: str, params: Dict[str, Any], stage: str) -> httpx.Response:
        """
        GET url, retrying server errors and I/O failures with exponential backoff.

        Returns:
            A successful response carrying a supported data service version

        Raises:
            RemoteError: classified failure once retries are exhausted or
                immediately for non-retryable responses
        """
        if self._client is None:
            self.open()

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"Request attempt {attempt + 1}/{self.max_retries} to {url} {params}")
                response = self._client.get(url, params=params)

            except httpx.TransportError as e:
                if attempt < self.max_retries - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Network error: {type(e).__name__}. Retrying in {delay} seconds")
                    time.sleep(delay)
                    continue
                raise self.classifier.classify_transport(e, stage) from e

            if response.status_code >= 500 and attempt < self.max_retries - 1:
                delay = self.retry_delay * (2 ** attempt)
                logger.warning(
                    f"Server error {response.status_code}. "
                    f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                )
                time.sleep(delay)
                continue

            error = self.classifier.classify_response(response_to_raw(response), stage)
            if error is not None:
                raise error
            return response

    def check_service(self) -> None:
        """Test call with $top=0 to validate URL, credentials and service version"""
        params = self.query_options()
        params["$top"] = "0"
        self._make_request_with_retry(self.entity_url, params, "Failed to call given SAP OData service")
        logger.info(f"SAP OData service {self.service_name} is reachable")

    def get_available_count(self) -> int:
        params = {}
        if self.filter_option:
            params["$filter"] = self.filter_option

        response = self._make_request_with_retry(
            self.count_url, params, "Failed to fetch the total available record count"
        )
        try:
            count = int(response.text.strip())
        except ValueError as e:
            raise UnknownRemoteError(
                "SAP returned an invalid record count",
                context={"url": self.count_url, "response_body": response.text[:settings.ERROR_MESSAGE_MAX_LENGTH]},
                original_exception=e
            )

        logger.info(f"Total available entries in {self.entity_name}: {count}")
        return count

    def fetch_page(self, skip: int, limit: int) -> Page:
        params = self.query_options()
        if skip:
            params["$skip"] = str(skip)
        params["$top"] = str(limit)

        response = self._make_request_with_retry(
            self.entity_url, params, f"Failed to pull records (skip: {skip}, top: {limit})"
        )
        results, has_next_link = self._parse_feed(response)

        logger.debug(f"Fetched {len(results)} entries (skip: {skip}, top: {limit})")
        return Page(records=results, is_end=len(results) < limit and not has_next_link)

    def _parse_feed(self, response: httpx.Response):
        try:
            data = response.json()
        except ValueError as e:
            raise UnknownRemoteError(
                "Failed to parse JSON response",
                context={
                    "url": self.entity_url,
                    "response_body": response.text[:settings.ERROR_MESSAGE_MAX_LENGTH]
                },
                original_exception=e
            )

        # OData v2 wraps feeds as {"d": {"results": [...]}}, older services as {"d": [...]}
        body = data.get("d", data) if isinstance(data, dict) else data
        if isinstance(body, list):
            return body, False

        results: List[Dict[str, Any]] = body.get("results", []) if isinstance(body, dict) else []
        return results, bool(isinstance(body, dict) and body.get("__next"))
