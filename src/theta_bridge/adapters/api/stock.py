"""
Stock history handlers.

Legacy callers send ``root``/``start``/``end``/``ivl``; the V3 terminal wants
``symbol``/``start_date``/``end_date``/``interval`` (or a single ``date`` for
quotes).
"""

from __future__ import annotations

from typing import Any

import httpx

from .base import V3RequestHandler, rename_param
from .shapes import columnar_to_rows, is_columnar, is_object_list, is_row_format, object_list_to_rows


class StockHistoryEodHandler(V3RequestHandler):
    """End-of-day bars. V3 answers with a flat object list."""

    handler_id = "stock-history-eod"
    endpoint = "stock/history/eod"
    renames = (("root", "symbol"), ("start", "start_date"), ("end", "end_date"))
    forced_params = {"format": "json"}

    def normalize(self, raw: Any) -> Any:
        if is_row_format(raw):
            return raw
        if is_object_list(raw):
            return object_list_to_rows(raw)
        return raw


class StockHistoryOhlcHandler(V3RequestHandler):
    """Intraday OHLC bars. V3 defaults to columnar output."""

    handler_id = "stock-history-ohlc"
    endpoint = "stock/history/ohlc"
    renames = (("root", "symbol"), ("ivl", "interval"))

    def normalize(self, raw: Any) -> Any:
        if is_row_format(raw):
            return raw
        if is_columnar(raw):
            return columnar_to_rows(raw)
        return raw


class StockHistoryQuoteHandler(V3RequestHandler):
    """NBBO quotes. V3 quotes cover a single ``date`` rather than a range."""

    handler_id = "stock-history-quote"
    endpoint = "stock/history/quote"
    renames = (("root", "symbol"), ("ivl", "interval"))
    forced_params = {"format": "json"}
    dropped_params = ("use_csv",)

    def remap_params(self, params: httpx.QueryParams) -> httpx.QueryParams:
        params = start_to_single_date(params)
        return super().remap_params(params)

    def normalize(self, raw: Any) -> Any:
        if is_row_format(raw):
            return raw
        if is_columnar(raw):
            return columnar_to_rows(raw)
        if is_object_list(raw, allow_empty=True):
            return object_list_to_rows(raw)
        return raw


def start_to_single_date(params: httpx.QueryParams) -> httpx.QueryParams:
    """Use ``start`` as ``date`` and drop the now meaningless ``start``/``end`` range."""

    if params.get("start") and "date" not in params:
        params = rename_param(params, "start", "date").remove("end")
    return params
