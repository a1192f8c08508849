"""
Handler descriptors, path normalisation and the ordered handler registry.

Resolution is first-match-wins over the registration order, so the order is
part of the contract: two handlers with overlapping patterns resolve to
whichever was registered first. The default order ships as a YAML document
(``resources/handlers.yaml``) listing handler ids; operators can supply their
own file to drop or reorder handlers without touching code.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, List, Optional, Pattern, Sequence, Tuple

import yaml

if TYPE_CHECKING:
    from ..adapters.base import RequestHandler

_VERSION_PREFIX = r"(?:v3/)?"


class RegistryError(RuntimeError):
    """Raised when a handler ordering file cannot be parsed or validated."""


def normalize_path(path: str) -> str:
    """
    Canonical form used for matching and diagnostics.

    Query string and fragment are stripped, surrounding whitespace removed and
    exactly one leading slash kept. Case is preserved; matching is
    case-insensitive.
    """

    text = (path or "").strip()
    text = text.split("?", 1)[0].split("#", 1)[0]
    return "/" + text.lstrip("/")


def endpoint_patterns(*endpoints: str) -> Tuple[Pattern[str], ...]:
    """Compile patterns accepting an optional leading slash and optional ``v3/`` prefix."""

    patterns = []
    for endpoint in endpoints:
        body = re.escape(endpoint.strip("/"))
        patterns.append(re.compile(rf"^/?{_VERSION_PREFIX}{body}/?$", re.IGNORECASE))
    return tuple(patterns)


@dataclass(frozen=True, slots=True)
class HandlerDescriptor:
    """
    Static metadata for one handler.

    Parameters
    ----------
    handler_id:
        Unique identifier, e.g. ``stock-history-eod``.
    endpoint:
        Upstream endpoint path below the version prefix.
    api_version:
        Upstream protocol generation the handler targets.
    path_patterns:
        Compiled patterns matched against normalised paths.
    """

    handler_id: str
    endpoint: str
    api_version: str
    path_patterns: Tuple[Pattern[str], ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.handler_id,
            "endpoint": self.endpoint,
            "api_version": self.api_version,
            "patterns": [pattern.pattern for pattern in self.path_patterns],
        }


class HandlerRegistry:
    """Ordered collection of handlers resolved first-match-wins."""

    def __init__(self, handlers: Iterable["RequestHandler"] = ()) -> None:
        self._handlers: List["RequestHandler"] = []
        for handler in handlers:
            self.register(handler)

    def register(self, handler: "RequestHandler") -> None:
        """Append ``handler``; ids must be unique."""

        if not handler.handler_id:
            raise RegistryError(f"Handler {handler!r} has no handler_id.")
        if self.get(handler.handler_id) is not None:
            raise RegistryError(f"Handler '{handler.handler_id}' is already registered.")
        self._handlers.append(handler)

    def resolve(self, path: str) -> Optional["RequestHandler"]:
        """Return the first handler whose patterns match ``path``, or ``None``."""

        normalized = normalize_path(path)
        for handler in self._handlers:
            if handler.can_handle(normalized):
                return handler
        return None

    def get(self, handler_id: str) -> Optional["RequestHandler"]:
        for handler in self._handlers:
            if handler.handler_id == handler_id:
                return handler
        return None

    def require(self, handler_id: str) -> "RequestHandler":
        handler = self.get(handler_id)
        if handler is None:
            raise KeyError(f"Handler '{handler_id}' is not registered.")
        return handler

    def handler_ids(self) -> List[str]:
        return [handler.handler_id for handler in self._handlers]

    def __iter__(self) -> Iterator["RequestHandler"]:
        return iter(list(self._handlers))

    def __len__(self) -> int:
        return len(self._handlers)

    @classmethod
    def ordered(cls, handlers: Sequence["RequestHandler"], order: Sequence[str]) -> "HandlerRegistry":
        """Build a registry containing ``handlers`` arranged (and filtered) by ``order``."""

        available = {handler.handler_id: handler for handler in handlers}
        seen: set[str] = set()
        registry = cls()
        for handler_id in order:
            if handler_id in seen:
                raise RegistryError(f"Handler '{handler_id}' is listed more than once.")
            seen.add(handler_id)
            handler = available.get(handler_id)
            if handler is None:
                raise RegistryError(f"Unknown handler '{handler_id}'. Known handlers: {', '.join(available) or '(none)'}.")
            registry.register(handler)
        return registry


def load_handler_order(path: Optional[Path | str] = None) -> List[str]:
    """
    Read enabled handler ids, in order, from a YAML document.

    The document is a list of mappings with an ``id`` key and an optional
    ``enabled`` flag (default ``True``). Plain strings are accepted as ids.
    Without ``path`` the packaged default order is used.
    """

    if path is None:
        with resources.as_file(resources.files("theta_bridge.resources") / "handlers.yaml") as resolved:
            return _read_order(Path(resolved))
    return _read_order(Path(path))


def _read_order(location: Path) -> List[str]:
    if not location.exists():
        raise RegistryError(f"Handler file '{location}' does not exist.")
    try:
        with location.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise RegistryError(f"Failed to parse '{location}': {exc}") from exc

    if not isinstance(payload, list):
        raise RegistryError(f"Handler file '{location}' must contain a list of handlers.")

    order: List[str] = []
    for entry in payload:
        if isinstance(entry, str):
            order.append(entry)
            continue
        if not isinstance(entry, dict) or "id" not in entry:
            raise RegistryError(f"Invalid entry in '{location}': expected a mapping with an 'id', got {entry!r}")
        if entry.get("enabled", True):
            order.append(str(entry["id"]))
    return order
