"""
Dependency ordering for reconciliation units.
"""

from fluxenv.dependencies.resolver import build_adjacency, dedupe, order_units

__all__ = [
    "build_adjacency",
    "dedupe",
    "order_units",
]
