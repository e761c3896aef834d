"""
Swap route optimizers.
"""

from .quoter import QuoterRouteOptimizer
from .swap_provider import Route, RouteOptimizer

__all__ = ["QuoterRouteOptimizer", "Route", "RouteOptimizer"]
