"""
V3 terminal client and endpoint handlers.

:func:`build_registry` is the usual entry point: it instantiates every handler
against one upstream client and arranges them in the configured order.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from ...core.registry import HandlerRegistry, load_handler_order
from .base import (
    NO_DATA_STATUS,
    SERVER_STARTING_STATUS,
    UpstreamClient,
    UpstreamError,
    V3RequestHandler,
    map_status_code,
)
from .option import (
    OptionHistoryEodHandler,
    OptionHistoryOhlcHandler,
    OptionHistoryQuoteHandler,
    OptionListDatesQuoteHandler,
    OptionListExpirationsHandler,
    OptionListStrikesHandler,
)
from .stock import StockHistoryEodHandler, StockHistoryOhlcHandler, StockHistoryQuoteHandler
from .terminal import TerminalShutdownHandler, TerminalStatusCheckHandler

HANDLER_CLASSES = (
    TerminalStatusCheckHandler,
    TerminalShutdownHandler,
    StockHistoryEodHandler,
    StockHistoryOhlcHandler,
    StockHistoryQuoteHandler,
    OptionHistoryEodHandler,
    OptionHistoryOhlcHandler,
    OptionHistoryQuoteHandler,
    OptionListDatesQuoteHandler,
    OptionListExpirationsHandler,
    OptionListStrikesHandler,
)


def build_handlers(base_url: str, *, client: Optional[UpstreamClient] = None) -> List[V3RequestHandler]:
    """Instantiate every known handler sharing one upstream client."""

    shared = client or UpstreamClient()
    return [handler_cls(base_url, client=shared) for handler_cls in HANDLER_CLASSES]


def build_registry(
    base_url: str,
    *,
    client: Optional[UpstreamClient] = None,
    handlers_file: Optional[Path | str] = None,
) -> HandlerRegistry:
    """Build the registry in the order declared by ``handlers_file`` (or the packaged default)."""

    return HandlerRegistry.ordered(build_handlers(base_url, client=client), load_handler_order(handlers_file))


__all__ = [
    "HANDLER_CLASSES",
    "NO_DATA_STATUS",
    "SERVER_STARTING_STATUS",
    "OptionHistoryEodHandler",
    "OptionHistoryOhlcHandler",
    "OptionHistoryQuoteHandler",
    "OptionListDatesQuoteHandler",
    "OptionListExpirationsHandler",
    "OptionListStrikesHandler",
    "StockHistoryEodHandler",
    "StockHistoryOhlcHandler",
    "StockHistoryQuoteHandler",
    "TerminalShutdownHandler",
    "TerminalStatusCheckHandler",
    "UpstreamClient",
    "UpstreamError",
    "V3RequestHandler",
    "build_handlers",
    "build_registry",
    "map_status_code",
]
