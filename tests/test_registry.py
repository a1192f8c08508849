from __future__ import annotations

import pytest

from theta_bridge.adapters.api import HANDLER_CLASSES, StockHistoryEodHandler, build_handlers
from theta_bridge.core.registry import HandlerRegistry, RegistryError, load_handler_order, normalize_path

from conftest import BASE_URL


def test_default_order_lists_every_handler():
    order = load_handler_order()
    assert order[0] == "terminal-status-check"
    assert sorted(order) == sorted(cls.handler_id for cls in HANDLER_CLASSES)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("v3/stock/history/eod", "/v3/stock/history/eod"),
        ("//stock/history/eod?root=AAPL#x", "/stock/history/eod"),
        ("  /Option/List/Strikes  ", "/Option/List/Strikes"),
        ("", "/"),
    ],
)
def test_normalize_path(raw, expected):
    assert normalize_path(raw) == expected


@pytest.mark.parametrize(
    ("path", "handler_id"),
    [
        ("/v3/stock/history/eod", "stock-history-eod"),
        ("stock/history/eod", "stock-history-eod"),
        ("/V3/STOCK/HISTORY/OHLC/", "stock-history-ohlc"),
        ("/v3/option/list/dates/quote?root=SPY", "option-list-dates-quote"),
        ("/terminal/mdds/status", "terminal-status-check"),
        ("/v3/system/terminal/shutdown", "terminal-shutdown"),
    ],
)
def test_resolve_matches_registered_paths(registry, path, handler_id):
    handler = registry.resolve(path)
    assert handler is not None
    assert handler.handler_id == handler_id


def test_resolve_rejects_unknown_and_other_versions(registry):
    assert registry.resolve("/v2/hist/stock/eod") is None
    assert registry.resolve("/v3/stock/history/eod/extra") is None
    assert registry.resolve("/v3/stock/history") is None


def test_register_rejects_duplicate_ids():
    first, second = build_handlers(BASE_URL)[2], build_handlers(BASE_URL)[2]
    registry = HandlerRegistry([first])
    with pytest.raises(RegistryError):
        registry.register(second)
    assert registry.resolve("/v3/stock/history/eod") is first


def test_first_registered_handler_wins():
    class ShadowEodHandler(StockHistoryEodHandler):
        handler_id = "shadow-eod"

    shadow = ShadowEodHandler(BASE_URL)
    original = StockHistoryEodHandler(BASE_URL)

    assert HandlerRegistry([shadow, original]).resolve("/v3/stock/history/eod") is shadow
    assert HandlerRegistry([original, shadow]).resolve("/v3/stock/history/eod") is original


def test_ordered_filters_and_validates(tmp_path):
    handlers = build_handlers(BASE_URL)
    custom = tmp_path / "handlers.yaml"
    custom.write_text(
        "- stock-history-quote\n- id: stock-history-eod\n- id: option-history-eod\n  enabled: false\n",
        encoding="utf-8",
    )

    registry = HandlerRegistry.ordered(handlers, load_handler_order(custom))

    assert registry.handler_ids() == ["stock-history-quote", "stock-history-eod"]
    assert registry.resolve("/v3/option/history/eod") is None
    with pytest.raises(RegistryError):
        HandlerRegistry.ordered(handlers, ["stock-history-eod", "stock-history-eod"])
    with pytest.raises(RegistryError):
        HandlerRegistry.ordered(handlers, ["missing-handler"])


def test_load_handler_order_rejects_bad_documents(tmp_path):
    not_a_list = tmp_path / "bad.yaml"
    not_a_list.write_text("handlers: []\n", encoding="utf-8")
    with pytest.raises(RegistryError):
        load_handler_order(not_a_list)
    with pytest.raises(RegistryError):
        load_handler_order(tmp_path / "missing.yaml")


def test_require_and_descriptor(registry):
    handler = registry.require("option-list-strikes")
    payload = handler.descriptor.to_dict()
    assert payload["id"] == "option-list-strikes"
    assert payload["endpoint"] == "option/list/strikes"
    assert payload["api_version"] == "v3"
    with pytest.raises(KeyError):
        registry.require("nope")


@pytest.mark.parametrize("handler_cls", HANDLER_CLASSES, ids=lambda cls: cls.handler_id)
def test_can_handle_matches_only_its_own_endpoints(handler_cls):
    handler = handler_cls(BASE_URL)

    for endpoint in (handler_cls.endpoint, *handler_cls.aliases):
        assert handler.can_handle(f"/v3/{endpoint}")
        assert handler.can_handle(endpoint)
        assert handler.can_handle(f"/V3/{endpoint.upper()}/?format=json")

    others = [cls for cls in HANDLER_CLASSES if cls is not handler_cls]
    for other in others:
        for endpoint in (other.endpoint, *other.aliases):
            assert not handler.can_handle(f"/v3/{endpoint}")
    assert not handler.can_handle(f"/v2/{handler_cls.endpoint}")
