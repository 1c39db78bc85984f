"""
Aurora cluster module
Plans an Aurora cluster with its monitoring role, log groups and role associations
"""

from .errors import (
    ApplyError,
    AuroraModuleError,
    ConfigurationError,
    OperationTimeout,
    ResolutionError,
    TransientDriverError,
)
from .planner import build_plan, plan_resources
from .records import (
    ClusterConfig,
    IamRoleAssociation,
    RestoreToPointInTime,
    S3Import,
    ServerlessV2Scaling,
    validate_config,
)
from .types import Format, Plan, PlanningContext, Ref, ResourceSpec

__all__ = [
    "ApplyError",
    "AuroraModuleError",
    "ClusterConfig",
    "ConfigurationError",
    "Format",
    "IamRoleAssociation",
    "OperationTimeout",
    "Plan",
    "PlanningContext",
    "Ref",
    "ResolutionError",
    "ResourceSpec",
    "RestoreToPointInTime",
    "S3Import",
    "ServerlessV2Scaling",
    "TransientDriverError",
    "build_plan",
    "plan_resources",
    "validate_config",
]
