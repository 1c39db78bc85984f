"""
Conditional Resource Planner
Predicate-gated resource instances for the Aurora cluster module
"""

from .functions import (
    KIND_CLUSTER,
    KIND_LOG_GROUP,
    KIND_MONITORING_ROLE,
    KIND_MONITORING_ROLE_POLICY,
    KIND_ROLE_ASSOCIATION,
    KIND_SNAPSHOT_IDENTIFIER_SUFFIX,
    KNOWN_KINDS,
    build_plan,
    plan_resources,
)

__all__ = [
    "KIND_CLUSTER",
    "KIND_LOG_GROUP",
    "KIND_MONITORING_ROLE",
    "KIND_MONITORING_ROLE_POLICY",
    "KIND_ROLE_ASSOCIATION",
    "KIND_SNAPSHOT_IDENTIFIER_SUFFIX",
    "KNOWN_KINDS",
    "build_plan",
    "plan_resources",
]
