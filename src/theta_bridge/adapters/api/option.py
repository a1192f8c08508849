"""
Option history and listing handlers.

Option endpoints add ``exp`` -> ``expiration`` to the stock renames. History
endpoints usually answer with one ``{"contract": ..., "data": [...]}`` entry
per contract, which is flattened into a single table.
"""

from __future__ import annotations

from typing import Any, Mapping

import httpx

from .base import V3RequestHandler
from .shapes import (
    canonical,
    columnar_to_rows,
    compact_date,
    empty_rows,
    is_columnar,
    is_nested_contract_list,
    is_object_list,
    is_row_format,
    iter_nested_rows,
    nested_to_rows,
    split_timestamp,
)
from .stock import start_to_single_date

QUOTE_COLUMNS = ("date", "ms_of_day", "bid", "ask", "bid_size", "ask_size")


class OptionHistoryEodHandler(V3RequestHandler):
    handler_id = "option-history-eod"
    endpoint = "option/history/eod"
    renames = (("root", "symbol"), ("exp", "expiration"), ("start", "start_date"), ("end", "end_date"))
    forced_params = {"format": "json"}

    def normalize(self, raw: Any) -> Any:
        if is_row_format(raw):
            return raw
        if is_nested_contract_list(raw):
            return nested_to_rows(raw)
        if is_columnar(raw):
            return columnar_to_rows(raw)
        return raw


class OptionHistoryOhlcHandler(V3RequestHandler):
    """Option OHLC takes a single ``date``; ``end`` is always dropped."""

    handler_id = "option-history-ohlc"
    endpoint = "option/history/ohlc"
    renames = (("root", "symbol"), ("exp", "expiration"), ("ivl", "interval"), ("start", "date"))
    dropped_params = ("end",)

    def normalize(self, raw: Any) -> Any:
        if is_row_format(raw):
            return raw
        if is_columnar(raw):
            return columnar_to_rows(raw)
        if is_nested_contract_list(raw):
            return nested_to_rows(raw)
        return raw


class OptionHistoryQuoteHandler(V3RequestHandler):
    """
    Option quotes in the legacy fixed column layout.

    V3 reports a combined ``timestamp`` per quote; legacy callers expect
    ``date`` as ``YYYYMMDD`` and ``ms_of_day``. Rows from every contract in the
    response are concatenated.
    """

    handler_id = "option-history-quote"
    endpoint = "option/history/quote"
    renames = (("root", "symbol"), ("exp", "expiration"), ("ivl", "interval"))
    forced_params = {"format": "json"}

    def remap_params(self, params: httpx.QueryParams) -> httpx.QueryParams:
        return super().remap_params(start_to_single_date(params))

    def normalize(self, raw: Any) -> Any:
        if is_row_format(raw):
            return raw
        if is_object_list(raw, allow_empty=True) and not raw["response"]:
            return empty_rows()
        if is_object_list(raw, require_key="contract") and is_nested_contract_list(raw):
            return canonical(QUOTE_COLUMNS, (_quote_row(row) for row in iter_nested_rows(raw)))
        return raw


def _quote_row(row: Mapping[str, Any]) -> list[Any]:
    date_int, ms_of_day = split_timestamp(row.get("timestamp"))
    return [date_int, ms_of_day, row.get("bid"), row.get("ask"), row.get("bid_size"), row.get("ask_size")]


class OptionListDatesQuoteHandler(V3RequestHandler):
    """Dates with quote data, reported as compact ``YYYYMMDD`` strings."""

    handler_id = "option-list-dates-quote"
    endpoint = "option/list/dates/quote"
    renames = (("root", "symbol"), ("exp", "expiration"))
    forced_params = {"format": "json"}

    def normalize(self, raw: Any) -> Any:
        if is_row_format(raw):
            return raw
        if is_object_list(raw, require_key="date"):
            return canonical(["dates"], ([compact_date(entry.get("date"))] for entry in raw["response"] if isinstance(entry, Mapping)))
        if is_columnar(raw):
            return columnar_to_rows(raw)
        return raw


class OptionListExpirationsHandler(V3RequestHandler):
    handler_id = "option-list-expirations"
    endpoint = "option/list/expirations"

    def normalize(self, raw: Any) -> Any:
        if is_row_format(raw):
            return raw
        if is_columnar(raw):
            return columnar_to_rows(raw)
        if is_object_list(raw):
            return canonical(["expirations"], ([entry.get("expiration")] for entry in raw["response"] if isinstance(entry, Mapping)))
        return raw


class OptionListStrikesHandler(V3RequestHandler):
    handler_id = "option-list-strikes"
    endpoint = "option/list/strikes"

    def normalize(self, raw: Any) -> Any:
        if is_row_format(raw):
            return raw
        if is_columnar(raw):
            return columnar_to_rows(raw)
        return raw
