"""
HTTP surface of the bridge.
"""

from .app import build_queue, create_app

__all__ = ["build_queue", "create_app"]
