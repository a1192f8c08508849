"""
Endpoint adapters translating legacy requests to the V3 terminal API.

Each handler owns one upstream endpoint family: path matching, parameter
renaming, the upstream call and response normalisation.
"""

from .base import AdapterError, HandlerRequest, HandlerResponse, PreparedRequest, RequestHandler

__all__ = [
    "AdapterError",
    "HandlerRequest",
    "HandlerResponse",
    "PreparedRequest",
    "RequestHandler",
]
