"""
Queue endpoints.

Every route reads the queue from ``request.app.state.queue`` so tests can mount
the router against their own queue instance.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..services.queue import RequestQueue, SubmissionError, WorkStatus

router = APIRouter(prefix="/queue", tags=["queue"])

NOT_FOUND = {"error": "Request not found"}


def _queue(request: Request) -> RequestQueue:
    return request.app.state.queue


@router.post("/submit")
async def submit_request(request: Request) -> JSONResponse:
    try:
        payload: Any = await request.json()
    except ValueError:
        return JSONResponse({"error": "Request body must be valid JSON."}, status_code=400)
    try:
        submission = _queue(request).enqueue(payload)
    except SubmissionError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)
    return JSONResponse(submission.as_dict())


@router.get("/status/{request_id}")
async def request_status(request_id: str, request: Request) -> JSONResponse:
    item = _queue(request).peek(request_id)
    if item is None:
        return JSONResponse(NOT_FOUND, status_code=404)
    return JSONResponse(
        {
            "status": item.status.value,
            "queue_position": item.queue_position if item.status is WorkStatus.PENDING else 0,
            "estimated_wait": 0,
            "attempts": item.attempts,
            "last_error": item.error,
        }
    )


@router.get("/stats")
async def queue_stats(request: Request) -> dict:
    return _queue(request).stats().as_dict()


@router.get("/{request_id}/result")
async def request_result(request_id: str, request: Request) -> JSONResponse:
    item = _queue(request).get(request_id)
    if item is None:
        return JSONResponse(NOT_FOUND, status_code=404)
    if item.status is WorkStatus.COMPLETED:
        return JSONResponse({"result": item.result, "status": item.status.value})
    if item.status.is_failure:
        return JSONResponse({"status": item.status.value, "error": item.error}, status_code=500)
    return JSONResponse({"status": item.status.value}, status_code=202)
