"""
Upstream HTTP client and the base class for V3 endpoint handlers.

The client is a thin synchronous HTTPX wrapper. Only failures to establish a
connection are retried, so a request that reached the terminal is never
replayed. Upstream status codes are never raised: the terminal uses
non-standard codes (472 "no data", 571 "server starting") that handlers
translate themselves.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from http import HTTPStatus
from logging import LoggerAdapter
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Pattern, Sequence, Tuple

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ...core.logging import get_logger
from ...core.registry import HandlerDescriptor, endpoint_patterns, normalize_path
from ..base import AdapterError, HandlerRequest, HandlerResponse, PreparedRequest, QueryValue
from .shapes import empty_rows

DEFAULT_TIMEOUT = 30.0
DEFAULT_CONNECT_ATTEMPTS = 2

NO_DATA_STATUS = 472
SERVER_STARTING_STATUS = 571

_DROPPED_HEADERS = frozenset({"host", "content-length"})


class UpstreamError(AdapterError):
    """Raised when the terminal cannot be reached."""


@dataclass(slots=True)
class UpstreamClient:
    """
    Synchronous HTTP client for the terminal.

    Parameters
    ----------
    timeout:
        Request timeout in seconds.
    connect_attempts:
        Total attempts when the connection cannot be established.
    retry_wait:
        Multiplier for the exponential backoff between connection attempts.
    transport:
        Optional HTTPX transport, e.g. :class:`httpx.MockTransport` in tests.
    """

    timeout: float = DEFAULT_TIMEOUT
    connect_attempts: int = DEFAULT_CONNECT_ATTEMPTS
    retry_wait: float = 0.5
    transport: Optional[httpx.BaseTransport] = None
    logger: LoggerAdapter = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.logger = get_logger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    def _build_client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self.transport, follow_redirects=True)

    def send(self, prepared: PreparedRequest) -> httpx.Response:
        self.logger.debug("HTTP request", extra={"method": prepared.method, "url": prepared.url})

        @retry(
            retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
            wait=wait_exponential(multiplier=self.retry_wait, max=4),
            stop=stop_after_attempt(max(1, self.connect_attempts)),
            reraise=True,
        )
        def _send() -> httpx.Response:
            with self._build_client() as client:
                return client.request(
                    prepared.method,
                    prepared.url,
                    headers=prepared.headers,
                    content=prepared.body,
                )

        try:
            response = _send()
        except httpx.HTTPError as exc:
            self.logger.error(
                "HTTP error during request",
                extra={"method": prepared.method, "url": prepared.url, "error": str(exc)},
            )
            raise UpstreamError(f"HTTP error while calling {prepared.method} {prepared.url}: {exc}") from exc

        self.logger.debug("HTTP response", extra={"status_code": response.status_code, "url": str(response.url)})
        return response


def map_status_code(status_code: int) -> int:
    """Translate terminal-specific status codes to their HTTP equivalents."""

    if status_code == NO_DATA_STATUS:
        return int(HTTPStatus.NO_CONTENT)
    if status_code == SERVER_STARTING_STATUS:
        return int(HTTPStatus.SERVICE_UNAVAILABLE)
    return status_code


def parse_body(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return text


def build_query(query_params: Mapping[str, QueryValue]) -> httpx.QueryParams:
    pairs: List[Tuple[str, str]] = []
    for key, value in query_params.items():
        values = value if isinstance(value, (list, tuple)) else [value]
        for item in values:
            if item is None:
                continue
            pairs.append((str(key), _stringify(item)))
    return httpx.QueryParams(pairs)


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def rename_param(params: httpx.QueryParams, legacy: str, current: str) -> httpx.QueryParams:
    """Move ``legacy`` to ``current`` unless the caller already supplied ``current``."""

    if legacy in params and current not in params:
        return params.set(current, params[legacy]).remove(legacy)
    return params


def forward_headers(headers: Mapping[str, str], defaults: Mapping[str, str]) -> Dict[str, str]:
    merged: Dict[str, str] = dict(defaults)
    for key, value in headers.items():
        lowered = key.lower()
        if lowered in _DROPPED_HEADERS:
            continue
        for existing in [name for name in merged if name.lower() == lowered]:
            merged.pop(existing)
        merged[key] = str(value)
    return merged


def describe_error(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class V3RequestHandler:
    """
    Base class for handlers targeting ``/v3/<endpoint>`` on the terminal.

    Subclasses declare ``handler_id``, ``endpoint`` and optionally ``aliases``
    (extra accepted paths), ``renames`` (legacy -> current parameter pairs),
    ``forced_params`` and ``dropped_params``, then implement :meth:`normalize`
    with the shape precedence of their endpoint.
    """

    handler_id: ClassVar[str] = ""
    endpoint: ClassVar[str] = ""
    aliases: ClassVar[Tuple[str, ...]] = ()
    api_version: ClassVar[str] = "v3"
    renames: ClassVar[Tuple[Tuple[str, str], ...]] = ()
    forced_params: ClassVar[Mapping[str, str]] = {}
    dropped_params: ClassVar[Tuple[str, ...]] = ()
    default_headers: ClassVar[Mapping[str, str]] = {"Accept": "application/json"}
    path_patterns: ClassVar[Sequence[Pattern[str]]] = ()

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if cls.endpoint:
            cls.path_patterns = endpoint_patterns(cls.endpoint, *cls.aliases)

    def __init__(self, base_url: str, *, client: Optional[UpstreamClient] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client or UpstreamClient()
        self.logger = get_logger(
            f"{self.__class__.__module__}.{self.__class__.__name__}",
            extra={"handler": self.handler_id},
        )

    @property
    def descriptor(self) -> HandlerDescriptor:
        return HandlerDescriptor(
            handler_id=self.handler_id,
            endpoint=self.endpoint,
            api_version=self.api_version,
            path_patterns=tuple(self.path_patterns),
        )

    def can_handle(self, path: str) -> bool:
        normalized = normalize_path(path)
        return any(pattern.match(normalized) for pattern in self.path_patterns)

    def remap_params(self, params: httpx.QueryParams) -> httpx.QueryParams:
        for legacy, current in self.renames:
            params = rename_param(params, legacy, current)
        for key, value in self.forced_params.items():
            params = params.set(key, value)
        for key in self.dropped_params:
            params = params.remove(key)
        return params

    def upstream_url(self, params: httpx.QueryParams) -> str:
        url = httpx.URL(f"{self.base_url}/").join(f"/v3/{self.endpoint.lstrip('/')}")
        return str(url.copy_with(params=params)) if params else str(url)

    def prepare_request(self, request: HandlerRequest) -> PreparedRequest:
        params = self.remap_params(build_query(request.query_params))
        return PreparedRequest(
            url=self.upstream_url(params),
            method=(request.method or "GET").upper(),
            headers=forward_headers(request.headers, self.default_headers),
            body=request.body,
        )

    def execute(self, request: HandlerRequest) -> HandlerResponse:
        try:
            prepared = self.prepare_request(request)
            response = self.client.send(prepared)
            return self.process_response(parse_body(response.text), response.status_code)
        except Exception as exc:
            self.logger.error("Handler execution failed", extra={"path": request.path, "error": describe_error(exc)})
            return HandlerResponse(status_code=int(HTTPStatus.INTERNAL_SERVER_ERROR), body=None, error=describe_error(exc))

    def process_response(self, raw: Any, status_code: int) -> HandlerResponse:
        if status_code == NO_DATA_STATUS:
            return HandlerResponse(status_code=int(HTTPStatus.NO_CONTENT), body=empty_rows())
        return HandlerResponse(status_code=map_status_code(status_code), body=self.normalize(raw))

    def normalize(self, raw: Any) -> Any:
        """Convert ``raw`` to canonical rows; unrecognised shapes pass through unchanged."""

        return raw
