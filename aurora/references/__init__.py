"""
Reference Resolver
Deferred handles, dependency edges and topological ordering
"""

from .functions import (
    SUPPRESSED,
    bind,
    dependency_edges,
    find_cycle,
    resolve_plan,
    substitute,
    topological_order,
)

__all__ = [
    "SUPPRESSED",
    "bind",
    "dependency_edges",
    "find_cycle",
    "resolve_plan",
    "substitute",
    "topological_order",
]
