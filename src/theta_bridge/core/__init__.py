"""
Core infrastructure shared across the bridge: logging and the handler registry.
"""

from .logging import bind, configure_logging, get_logger
from .registry import HandlerDescriptor, HandlerRegistry, RegistryError, endpoint_patterns, load_handler_order, normalize_path

__all__ = [
    "HandlerDescriptor",
    "HandlerRegistry",
    "RegistryError",
    "bind",
    "configure_logging",
    "endpoint_patterns",
    "get_logger",
    "load_handler_order",
    "normalize_path",
]
