from __future__ import annotations

from theta_bridge.adapters.base import HandlerRequest


def _execute(registry, handler_id, path, params=None):
    return registry.require(handler_id).execute(HandlerRequest(method="GET", path=path, query_params=params or {}))


def test_eod_flattens_every_contract(registry, terminal):
    terminal.reply(
        {
            "response": [
                {"contract": {"strike": 470}, "data": [{"date": "2024-01-02", "close": 1.2}, {"date": "2024-01-03", "close": 1.3}]},
                {"contract": {"strike": 475}, "data": [{"date": "2024-01-02", "close": 0.8}]},
            ]
        }
    )

    response = _execute(
        registry,
        "option-history-eod",
        "/v3/option/history/eod",
        {"root": "SPY", "exp": "20240119", "start": "20240102", "end": "20240103"},
    )

    params = terminal.last.url.params
    assert params["symbol"] == "SPY"
    assert params["expiration"] == "20240119"
    assert params["start_date"] == "20240102"
    assert params["end_date"] == "20240103"
    assert params["format"] == "json"
    assert response.body["header"]["format"] == ["date", "close"]
    assert len(response.body["response"]) == 3


def test_ohlc_takes_single_date_and_drops_end(registry, terminal):
    terminal.reply({"ms_of_day": [0, 60000], "close": [1.0, 1.1]})

    response = _execute(
        registry,
        "option-history-ohlc",
        "/v3/option/history/ohlc",
        {"root": "SPY", "exp": "20240119", "ivl": 60000, "start": "20240102", "end": "20240105"},
    )

    params = terminal.last.url.params
    assert params["date"] == "20240102"
    assert params["interval"] == "60000"
    assert "end" not in params
    assert "start" not in params
    assert response.body == {"header": {"format": ["ms_of_day", "close"]}, "response": [[0, 1.0], [60000, 1.1]]}


def test_quote_rows_use_legacy_columns(registry, terminal):
    terminal.reply(
        {
            "response": [
                {
                    "contract": {"symbol": "SPY", "strike": 470, "right": "C"},
                    "data": [
                        {"timestamp": "2024-01-02T09:30:00.250", "bid": 1.0, "ask": 1.1, "bid_size": 10, "ask_size": 12},
                        {"timestamp": "2024-01-02T09:31:00", "bid": 1.05, "ask": 1.15, "bid_size": 5, "ask_size": 7},
                    ],
                },
                {
                    "contract": {"symbol": "SPY", "strike": 475, "right": "C"},
                    "data": [{"timestamp": "2024-01-02T09:30:00", "bid": 0.5, "ask": 0.6, "bid_size": 3, "ask_size": 4}],
                },
            ]
        }
    )

    response = _execute(
        registry,
        "option-history-quote",
        "/v3/option/history/quote",
        {"root": "SPY", "exp": "20240119", "start": "20240102", "end": "20240102", "ivl": 60000},
    )

    params = terminal.last.url.params
    assert params["date"] == "20240102"
    assert params["expiration"] == "20240119"
    assert params["interval"] == "60000"
    assert params["format"] == "json"
    assert "end" not in params
    assert response.body["header"]["format"] == ["date", "ms_of_day", "bid", "ask", "bid_size", "ask_size"]
    assert response.body["response"] == [
        [20240102, 34_200_250, 1.0, 1.1, 10, 12],
        [20240102, 34_260_000, 1.05, 1.15, 5, 7],
        [20240102, 34_200_000, 0.5, 0.6, 3, 4],
    ]


def test_quote_empty_response_is_empty_rows(registry, terminal):
    terminal.reply({"response": []})

    response = _execute(registry, "option-history-quote", "/v3/option/history/quote", {"root": "SPY"})

    assert response.body == {"header": {"format": []}, "response": []}


def test_list_dates_are_compacted(registry, terminal):
    terminal.reply({"response": [{"date": "2024-01-02"}, {"date": "2024-01-03"}]})

    response = _execute(
        registry,
        "option-list-dates-quote",
        "/v3/option/list/dates/quote",
        {"root": "SPY", "exp": "20240119"},
    )

    params = terminal.last.url.params
    assert params["symbol"] == "SPY"
    assert params["expiration"] == "20240119"
    assert params["format"] == "json"
    assert response.body == {"header": {"format": ["dates"]}, "response": [["20240102"], ["20240103"]]}


def test_list_expirations_accepts_columnar_and_object_lists(registry, terminal):
    terminal.reply({"expiration": ["20240119", "20240216"]})
    columnar = _execute(registry, "option-list-expirations", "/v3/option/list/expirations", {"symbol": "SPY"})

    terminal.reply({"response": [{"expiration": "20240119"}, {"expiration": "20240216"}]})
    objects = _execute(registry, "option-list-expirations", "/v3/option/list/expirations", {"symbol": "SPY"})

    assert columnar.body == {"header": {"format": ["expiration"]}, "response": [["20240119"], ["20240216"]]}
    assert objects.body == {"header": {"format": ["expirations"]}, "response": [["20240119"], ["20240216"]]}
    assert terminal.last.url.params["symbol"] == "SPY"


def test_list_strikes_is_forwarded_verbatim(registry, terminal):
    terminal.reply({"strike": [470000, 475000]})

    response = _execute(registry, "option-list-strikes", "/v3/option/list/strikes", {"root": "SPY", "exp": "20240119"})

    params = terminal.last.url.params
    assert params["root"] == "SPY"
    assert params["exp"] == "20240119"
    assert response.body == {"header": {"format": ["strike"]}, "response": [[470000], [475000]]}


def test_quote_row_with_bad_timestamp_keeps_the_rest(registry, terminal):
    terminal.reply(
        {
            "response": [
                {
                    "contract": {"symbol": "SPY", "strike": 470, "right": "C"},
                    "data": [
                        {"timestamp": None, "bid": 1.0, "ask": 1.1, "bid_size": 10, "ask_size": 12},
                        {"timestamp": "garbage", "bid": 1.02, "ask": 1.12, "bid_size": 8, "ask_size": 9},
                        {"timestamp": "2024-01-02T09:31:00", "bid": 1.05, "ask": 1.15, "bid_size": 5, "ask_size": 7},
                    ],
                }
            ]
        }
    )

    response = _execute(registry, "option-history-quote", "/v3/option/history/quote", {"root": "SPY"})

    assert response.status_code == 200
    assert response.error is None
    assert response.body["response"] == [
        [None, None, 1.0, 1.1, 10, 12],
        [None, None, 1.02, 1.12, 8, 9],
        [20240102, 34_260_000, 1.05, 1.15, 5, 7],
    ]
