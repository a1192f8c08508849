from __future__ import annotations

import json
import time
from typing import Any, Callable, List, Optional

import httpx
import pytest
from typer.testing import CliRunner

from theta_bridge.adapters.api import UpstreamClient, build_registry
from theta_bridge.core.registry import HandlerRegistry
from theta_bridge.services.queue import RequestQueue

BASE_URL = "http://terminal.test:25503"


class FakeTerminal:
    """Records every upstream request and answers with a configurable reply."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.status_code = 200
        self.payload: Any = {"header": {"format": []}, "response": []}
        self.responder: Optional[Callable[[httpx.Request], httpx.Response]] = None

    def reply(self, payload: Any, status_code: int = 200) -> None:
        self.payload = payload
        self.status_code = status_code

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responder is not None:
            return self.responder(request)
        if isinstance(self.payload, str):
            return httpx.Response(self.status_code, text=self.payload)
        return httpx.Response(self.status_code, content=json.dumps(self.payload).encode("utf-8"))

    @property
    def last(self) -> httpx.Request:
        assert self.requests, "no upstream request was made"
        return self.requests[-1]


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture()
def terminal() -> FakeTerminal:
    return FakeTerminal()


@pytest.fixture()
def upstream_client(terminal: FakeTerminal) -> UpstreamClient:
    return UpstreamClient(transport=httpx.MockTransport(terminal), retry_wait=0)


@pytest.fixture()
def registry(upstream_client: UpstreamClient) -> HandlerRegistry:
    return build_registry(BASE_URL, client=upstream_client)


@pytest.fixture()
def queue(registry: HandlerRegistry):
    request_queue = RequestQueue(registry, idle_delay=0.01, sweep_interval=60)
    yield request_queue
    request_queue.shutdown(timeout=2)


@pytest.fixture()
def cli_runner() -> CliRunner:
    return CliRunner()
