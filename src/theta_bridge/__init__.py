"""
Theta Bridge: a queueing proxy translating legacy ThetaData requests to the V3 terminal API.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
