from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from theta_bridge.adapters.api import HANDLER_CLASSES, TerminalShutdownHandler
from theta_bridge.adapters.api.shapes import empty_rows
from theta_bridge.adapters.base import HandlerRequest

from conftest import BASE_URL


def test_status_check_sends_neither_accept_nor_format(registry, terminal):
    terminal.reply("CONNECTED\n")

    response = registry.require("terminal-status-check").execute(
        HandlerRequest(
            method="GET",
            path="/v3/terminal/mdds/status",
            query_params={"format": "json"},
            headers={"Accept": "application/json"},
        )
    )

    sent = terminal.last
    assert sent.url.path == "/v3/terminal/mdds/status"
    assert "format" not in sent.url.params
    assert sent.headers.get("accept") != "application/json"
    assert response.status_code == 200
    assert response.body == {"status": "CONNECTED"}


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ("DISCONNECTED", {"status": "DISCONNECTED"}),
        ("", {"status": "UNKNOWN"}),
    ],
)
def test_status_check_reports_other_states(registry, terminal, payload, expected):
    terminal.reply(payload)

    response = registry.require("terminal-status-check").execute(HandlerRequest(method="GET", path="terminal/mdds/status"))

    assert response.body == expected


def test_shutdown_is_acknowledged_without_upstream_call():
    client = MagicMock()
    handler = TerminalShutdownHandler(BASE_URL, client=client)

    response = handler.execute(HandlerRequest(method="GET", path="/v3/system/terminal/shutdown"))

    assert response.status_code == 200
    assert response.body["status"] == "SHUTDOWN_INITIATED_MOCKED"
    assert response.error is None
    client.send.assert_not_called()


@pytest.mark.parametrize("handler_cls", HANDLER_CLASSES, ids=lambda cls: cls.handler_id)
def test_every_handler_maps_no_data_to_empty_rows(handler_cls):
    response = handler_cls(BASE_URL).process_response("No data for the specified timeframe", 472)

    assert response.status_code == 204
    assert response.body == empty_rows()


@pytest.mark.parametrize("handler_cls", HANDLER_CLASSES, ids=lambda cls: cls.handler_id)
def test_every_handler_maps_terminal_unavailable_to_503(handler_cls):
    response = handler_cls(BASE_URL).process_response("", 571)

    assert response.status_code == 503
