"""
Terminal control endpoints.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any

from ..base import HandlerRequest, HandlerResponse, PreparedRequest
from .base import V3RequestHandler

CONNECTED = "CONNECTED"


class TerminalStatusCheckHandler(V3RequestHandler):
    """
    MDDS connection check.

    The terminal answers with plain text and rejects ``Accept:
    application/json`` with a 406, so neither the header nor ``format`` is sent.
    """

    handler_id = "terminal-status-check"
    endpoint = "terminal/mdds/status"
    dropped_params = ("format",)
    default_headers = {}

    def prepare_request(self, request: HandlerRequest) -> PreparedRequest:
        prepared = super().prepare_request(request)
        prepared.headers = {key: value for key, value in prepared.headers.items() if key.lower() != "accept"}
        return prepared

    def normalize(self, raw: Any) -> Any:
        if isinstance(raw, str):
            raw = raw.strip()
        if raw == CONNECTED:
            return {"status": CONNECTED}
        return {"status": raw or "UNKNOWN"}


class TerminalShutdownHandler(V3RequestHandler):
    """
    Shutdown requests are acknowledged locally and never forwarded upstream.
    """

    handler_id = "terminal-shutdown"
    endpoint = "terminal/shutdown"
    aliases = ("system/terminal/shutdown",)

    def execute(self, request: HandlerRequest) -> HandlerResponse:
        self.logger.info("Shutdown request acknowledged without forwarding", extra={"path": request.path})
        return HandlerResponse(
            status_code=int(HTTPStatus.OK),
            body={
                "status": "SHUTDOWN_INITIATED_MOCKED",
                "message": "Terminal shutdown request intercepted and acknowledged (no actual shutdown performed).",
            },
        )
