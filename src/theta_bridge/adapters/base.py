"""
Value types and the protocol shared by every endpoint handler.

A handler owns one upstream endpoint family. It decides whether a legacy path
belongs to it, rewrites legacy query parameters to their current names, calls
the terminal, and folds whatever payload shape comes back into the canonical
``{"header": {"format": [...]}, "response": [[...], ...]}`` row layout.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Pattern, Protocol, Sequence, Union

QueryValue = Union[str, int, float, bool, None, Sequence[Union[str, int, float, bool]]]


class AdapterError(RuntimeError):
    """Raised when a handler encounters a non-recoverable error."""


@dataclass(slots=True)
class HandlerRequest:
    """Legacy-shaped request as submitted by the caller."""

    method: str
    path: str
    query_params: Mapping[str, QueryValue] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None


@dataclass(slots=True)
class PreparedRequest:
    """Fully resolved upstream call: absolute URL including the query string."""

    url: str
    method: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None


@dataclass(slots=True)
class HandlerResponse:
    """
    Normalised handler outcome.

    Attributes
    ----------
    status_code:
        Status reported to the caller after upstream status translation.
    body:
        Canonical rows, a handler-specific object, or the raw payload when the
        shape was not recognised.
    error:
        Populated only when execution failed; a non-empty value fails the item.
    """

    status_code: int
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None


class RequestHandler(Protocol):
    """Protocol implemented by all endpoint handlers."""

    handler_id: str
    endpoint: str
    api_version: str
    path_patterns: Sequence[Pattern[str]]

    def can_handle(self, path: str) -> bool:
        """Return ``True`` when ``path`` belongs to this handler."""

    def prepare_request(self, request: HandlerRequest) -> PreparedRequest:
        """Build the upstream call for ``request``."""

    def execute(self, request: HandlerRequest) -> HandlerResponse:
        """Call upstream and normalise the result. Never raises."""

    def process_response(self, raw: Any, status_code: int) -> HandlerResponse:
        """Normalise an upstream payload."""
