"""
Convergence Applier
Applies a resolved plan to live state; the Pulumi engine plays this role in a stack
"""

from .drivers import InMemoryDriver, ResourceDriver
from .functions import (
    BLOCKED,
    CANCELLED,
    CREATE,
    DELETE,
    FAILED,
    NOOP,
    OK,
    TIMEOUT,
    UPDATE,
    ApplyReport,
    ConvergenceApplier,
    ResourceResult,
    ResourceState,
    SimulatedApplier,
    State,
    diff_fields,
    parse_duration,
    retry_with_backoff,
)

__all__ = [
    "BLOCKED",
    "CANCELLED",
    "CREATE",
    "DELETE",
    "FAILED",
    "NOOP",
    "OK",
    "TIMEOUT",
    "UPDATE",
    "ApplyReport",
    "ConvergenceApplier",
    "InMemoryDriver",
    "ResourceDriver",
    "ResourceResult",
    "ResourceState",
    "SimulatedApplier",
    "State",
    "diff_fields",
    "parse_duration",
    "retry_with_backoff",
]
