"""
Classification of remote SAP failures into user-facing errors.

Every failure a connector sees (a non-successful HTTP response, a
transport exception or an RFC error) is turned into exactly one
RemoteError subclass. Raw payloads are logged for support. Messages shown
to users are sanitized: credentials are redacted and multi-line technical
text is cut down to its first line.
"""

from typing import Any, Optional
import json
import logging
import re
import socket

import httpx
from pydantic import ValidationError

from core.config import settings
from core.exceptions import (
    RemoteError,
    RemoteErrorKind,
    RemoteUnauthorizedError,
    RemoteNotFoundError,
    ProtocolVersionMismatchError,
    TransportFailure,
    TransportReason,
    UnknownRemoteError,
    REMOTE_ERROR_TYPES,
)
from ingestion.rfc import RfcCallError, RfcErrorGroup
from schemas.extraction import RawResponse
from schemas.odata import ODataError

logger = logging.getLogger(__name__)


SUPPORTED_DATA_SERVICE_VERSION = "2.0"

CREDENTIAL_HINT = (
    "Please verify the connection parameters. "
    "SAP rejected the given user name and password."
)

TRANSPORT_HINTS = {
    TransportReason.TIMEOUT: "Connection timeout. Please verify that the given base URL is up and running.",
    TransportReason.HOST_RESOLUTION: "Unable to resolve the SAP host. Please verify the base URL or application server host.",
    TransportReason.IO: "Connection to the SAP system failed.",
}

RFC_KEY_KINDS = {
    "NOT_AUTHORIZED": RemoteErrorKind.UNAUTHORIZED,
    "NOT_FOUND": RemoteErrorKind.NOT_FOUND,
    "DATA_SOURCE_NOT_EXIST": RemoteErrorKind.NOT_FOUND,
    "DATA_SOURCE_NOT_EXPOSE_ODP": RemoteErrorKind.NOT_FOUND,
    "TABLE_NOT_AVAILABLE": RemoteErrorKind.NOT_FOUND,
    "OPTION_NOT_VALID": RemoteErrorKind.INVALID_FILTER,
    "DATA_BUFFER_EXCEEDED": RemoteErrorKind.QUOTA_EXCEEDED,
}

HOST_RESOLUTION_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "temporary failure in name resolution",
    "no address associated with hostname",
)

_URL_USERINFO = re.compile(r"(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*://)[^/@\s]+@")
_BASIC_AUTH = re.compile(r"(?i)(authorization:\s*basic\s+|basic\s+)[A-Za-z0-9+/=]+")
_SECRET_PAIR = re.compile(r"(?i)\b(passwd|password|pwd)\s*[=:]\s*\S+")


def redact(text: str) -> str:
    """Remove URL user-info, Basic auth material and password assignments"""
    text = _URL_USERINFO.sub(r"\g<scheme>***@", text)
    text = _BASIC_AUTH.sub(r"\1***", text)
    return _SECRET_PAIR.sub(r"\1=***", text)


def first_line(text: str, max_length: Optional[int] = None) -> str:
    """First non-blank line of text, truncated to max_length characters"""
    max_length = max_length or settings.ERROR_MESSAGE_MAX_LENGTH
    line = ""
    for candidate in text.strip().splitlines():
        if candidate.strip():
            line = candidate.strip()
            break

    if len(line) > max_length:
        line = line[:max_length].rstrip() + "..."
    return line


def sanitize(text: Optional[str], max_length: Optional[int] = None) -> str:
    return first_line(redact(text or ""), max_length)


class ErrorClassifier:
    """
    Maps raw remote failures to the RemoteError taxonomy.

    The optional object names only enrich messages; classification itself
    never depends on them.

    Attributes:
        service_name: OData service the connector talks to
        entity_name: OData entity set being extracted
        object_name: SAP table or ODP data source name
        object_field: Configuration field holding object_name
    """

    def __init__(
        self,
        service_name: Optional[str] = None,
        entity_name: Optional[str] = None,
        object_name: Optional[str] = None,
        object_field: str = "table_name"
    ):
        self.service_name = service_name
        self.entity_name = entity_name
        self.object_name = object_name
        self.object_field = object_field

    def classify(self, raw: Any, stage: Optional[str] = None) -> Optional[RemoteError]:
        """
        Classify any raw failure.

        Args:
            raw: RawResponse, httpx.Response, RfcCallError or any exception
            stage: Short description of what was being done, prefixed to the message

        Returns:
            A RemoteError subclass instance (never raised here), or None
            for a successful response with a supported protocol version
        """
        if isinstance(raw, RemoteError):
            return raw
        if isinstance(raw, httpx.Response):
            raw = response_to_raw(raw)
        if isinstance(raw, RawResponse):
            return self.classify_response(raw, stage)
        if isinstance(raw, RfcCallError):
            return self.classify_rfc(raw, stage)
        if isinstance(raw, BaseException):
            if is_transport_failure(raw):
                return self.classify_transport(raw, stage)
            return self.classify_unexpected(raw, stage)

        logger.error(f"Unclassifiable remote failure: {raw!r}")
        return UnknownRemoteError(self._prefix(stage, sanitize(str(raw))))

    # ------------------------------------------------------------------
    # HTTP responses
    # ------------------------------------------------------------------

    def classify_response(self, response: RawResponse, stage: Optional[str] = None) -> Optional[RemoteError]:
        """
        Classify an OData HTTP response.

        Returns None when the response is successful and carries the
        supported data service version.
        """
        status = response.status_code
        context = {"status_code": status}
        if response.url:
            context["url"] = redact(response.url)

        if status == 401:
            return RemoteUnauthorizedError(
                self._prefix(stage, CREDENTIAL_HINT),
                context=context,
                remote_code=str(status),
                field="username"
            )

        if not response.is_success:
            logger.error(f"HTTP Code: {status}")
            logger.error(f"Detailed error message: {stage or ''} {redact(response.body)}")
            return self._classify_error_body(response, context, stage)

        version = response.data_service_version
        if not version:
            return ProtocolVersionMismatchError(
                self._prefix(
                    stage,
                    "The 'dataserviceversion' header is missing from the SAP response. "
                    "Please verify the service is an OData v2 service."
                ),
                context=context,
                field="service_name"
            )

        if version.strip() != SUPPORTED_DATA_SERVICE_VERSION:
            context["data_service_version"] = version
            return ProtocolVersionMismatchError(
                self._prefix(
                    stage,
                    f"Unsupported OData version '{version}', "
                    f"only version {SUPPORTED_DATA_SERVICE_VERSION} is supported."
                ),
                context=context,
                remote_code=version,
                field="service_name"
            )

        return None

    def _classify_error_body(self, response: RawResponse, context: dict, stage: Optional[str]) -> RemoteError:
        status = response.status_code
        body = response.body.strip()
        error = parse_odata_error(body)

        if error is None:
            if body.lower().startswith("<html"):
                return RemoteNotFoundError(
                    self._prefix(stage, f"Invalid service name{self._quoted(self.service_name)}. "
                                        "Please verify the service name and base URL."),
                    context=context,
                    remote_code=str(status),
                    field="service_name"
                )
            return UnknownRemoteError(
                self._prefix(stage, sanitize(body) or f"HTTP {status}"),
                context=context,
                remote_code=str(status)
            )

        message = error.message_value or f"HTTP {status}"
        context["odata_code"] = error.code

        if status == 404:
            kind, field = RemoteErrorKind.NOT_FOUND, "entity_name"
        elif status == 400:
            kind, field = RemoteErrorKind.INVALID_FILTER, "filter_option"
        elif status == 403 and error.names_service:
            kind, field = RemoteErrorKind.NOT_FOUND, "service_name"
        elif status == 403:
            kind, field = RemoteErrorKind.UNAUTHORIZED, "username"
        elif status == 429:
            kind, field = RemoteErrorKind.QUOTA_EXCEEDED, None
        else:
            kind, field = RemoteErrorKind.UNKNOWN, None

        return REMOTE_ERROR_TYPES[kind](
            self._prefix(stage, message),
            context=context,
            remote_code=str(status),
            field=field
        )

    # ------------------------------------------------------------------
    # Transport exceptions
    # ------------------------------------------------------------------

    def classify_transport(self, exc: BaseException, stage: Optional[str] = None) -> TransportFailure:
        """Classify a connection level exception by its reason"""
        reason = transport_reason(exc)
        detail = TRANSPORT_HINTS[reason]
        if reason == TransportReason.IO:
            root = sanitize(str(root_cause(exc)))
            if root:
                detail = f"{detail} Root Cause: {root}"

        logger.error(f"Transport failure ({reason.value}): {redact(repr(exc))}")
        return TransportFailure(
            self._prefix(stage, detail),
            context={"exception_type": type(exc).__name__},
            original_exception=exc if isinstance(exc, Exception) else None,
            reason=reason,
            field="base_url"
        )

    def classify_unexpected(self, exc: BaseException, stage: Optional[str] = None) -> UnknownRemoteError:
        """Classify an exception that is neither a transport nor an RFC failure"""
        logger.error(f"Unexpected failure: {redact(repr(exc))}")
        detail = sanitize(str(exc)) or "no details"
        return UnknownRemoteError(
            self._prefix(stage, f"Unexpected {type(exc).__name__}: {detail}"),
            context={"exception_type": type(exc).__name__},
            original_exception=exc if isinstance(exc, Exception) else None
        )

    # ------------------------------------------------------------------
    # RFC errors
    # ------------------------------------------------------------------

    def classify_rfc(self, exc: RfcCallError, stage: Optional[str] = None) -> RemoteError:
        """Classify an RFC error by ABAP exception key, then by error group"""
        root = sanitize(exc.message)
        context = {"group": exc.group.value}
        if exc.key:
            context["key"] = exc.key
        if exc.function_name:
            context["function_name"] = exc.function_name

        logger.error(f"RFC failure {exc.group.value}/{exc.key}: {redact(exc.message or '')}")

        kind = RFC_KEY_KINDS.get((exc.key or "").upper())
        if kind is not None:
            return REMOTE_ERROR_TYPES[kind](
                self._prefix(stage, self._rfc_key_message(kind, root)),
                context=context,
                original_exception=exc,
                remote_code=exc.key,
                field=self._rfc_key_field(kind)
            )

        if exc.group == RfcErrorGroup.COMMUNICATION:
            return TransportFailure(
                self._prefix(stage, f"{TRANSPORT_HINTS[TransportReason.IO]} Root Cause: {root}"),
                context=context,
                original_exception=exc,
                reason=TransportReason.IO,
                remote_code=exc.key,
                field="application_server_host"
            )

        if exc.group == RfcErrorGroup.LOGON:
            return RemoteUnauthorizedError(
                self._prefix(stage, f"{CREDENTIAL_HINT} Root Cause: {root}"),
                context=context,
                original_exception=exc,
                remote_code=exc.key,
                field="username"
            )

        return UnknownRemoteError(
            self._prefix(stage, root or "Unknown SAP error."),
            context=context,
            original_exception=exc,
            remote_code=exc.key
        )

    def _rfc_key_message(self, kind: RemoteErrorKind, root: str) -> str:
        name = self._quoted(self.object_name)
        if kind == RemoteErrorKind.UNAUTHORIZED:
            return f"User is not authorized to access{name}. Please verify the SAP authorizations."
        if kind == RemoteErrorKind.NOT_FOUND:
            return f"SAP object{name} does not exist or is not available for extraction."
        if kind == RemoteErrorKind.INVALID_FILTER:
            return f"Filter options are not valid. Root Cause: {root}" if root else "Filter options are not valid."
        return (
            "SAP data buffer exceeded. Please reduce the number of fields selected "
            "or the page size and retry."
        )

    def _rfc_key_field(self, kind: RemoteErrorKind) -> Optional[str]:
        if kind == RemoteErrorKind.UNAUTHORIZED:
            return "username"
        if kind == RemoteErrorKind.NOT_FOUND:
            return self.object_field
        if kind == RemoteErrorKind.INVALID_FILTER:
            return "filter_option"
        return None

    @staticmethod
    def _prefix(stage: Optional[str], message: str) -> str:
        return f"{stage}. {message}" if stage else message

    @staticmethod
    def _quoted(name: Optional[str]) -> str:
        return f" '{name}'" if name else ""


def parse_odata_error(body: str) -> Optional[ODataError]:
    """Decode a SAP Gateway JSON error document, None if body is not one"""
    if not body or body[0] not in "{[":
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if not isinstance(payload, dict) or "error" not in payload:
        return None
    try:
        return ODataError.model_validate(payload)
    except ValidationError:
        return None


def response_to_raw(response: httpx.Response) -> RawResponse:
    """Keep only what classification needs from an httpx response"""
    try:
        url = str(response.request.url)
    except RuntimeError:
        url = None

    return RawResponse(
        status_code=response.status_code,
        body=response.text,
        data_service_version=response.headers.get("dataserviceversion"),
        url=url
    )


def root_cause(exc: BaseException) -> BaseException:
    """Follow __cause__ / __context__ to the innermost exception"""
    seen = set()
    while id(exc) not in seen:
        seen.add(id(exc))
        nxt = exc.__cause__ or exc.__context__
        if nxt is None:
            break
        exc = nxt
    return exc


def _cause_chain(exc: BaseException) -> list:
    chain = []
    current = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def is_transport_failure(exc: BaseException) -> bool:
    """True when exc, or anything in its cause chain, is a connection level error"""
    return any(isinstance(item, (httpx.TransportError, OSError)) for item in _cause_chain(exc))


def transport_reason(exc: BaseException) -> TransportReason:
    """Tell timeouts and host resolution failures apart from other I/O errors"""
    chain = _cause_chain(exc)

    for item in chain:
        if isinstance(item, (httpx.TimeoutException, socket.timeout, TimeoutError)):
            return TransportReason.TIMEOUT

    for item in chain:
        if isinstance(item, socket.gaierror):
            return TransportReason.HOST_RESOLUTION
        text = str(item).lower()
        if any(marker in text for marker in HOST_RESOLUTION_MARKERS):
            return TransportReason.HOST_RESOLUTION

    return TransportReason.IO
