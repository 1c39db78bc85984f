"""
Configuration Record
Immutable description of the desired Aurora cluster and its supporting identities
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Mapping, Optional, Tuple

import pulumi

from .errors import ConfigurationError
from .types import PlanningContext


DEFAULT_FINAL_SNAPSHOT_PREFIX = "final"
KNOWN_PARTITIONS = ("aws", "aws-cn", "aws-us-gov", "aws-iso", "aws-iso-b")
MONITORING_INTERVALS = (0, 1, 5, 10, 15, 30, 60)


@dataclass(frozen=True)
class ServerlessV2Scaling:
    min_capacity: float = 0.5
    max_capacity: float = 2.0


@dataclass(frozen=True)
class RestoreToPointInTime:
    """Restore the new cluster from another cluster's point in time"""

    source_cluster_identifier: str = ""
    restore_type: Optional[str] = None
    restore_to_time: Optional[str] = None
    use_latest_restorable_time: Optional[bool] = None


@dataclass(frozen=True)
class S3Import:
    """Seed the new cluster from a backup stored in S3"""

    bucket_name: str = ""
    ingestion_role: str = ""
    source_engine_version: str = ""
    source_engine: str = "mysql"
    bucket_prefix: Optional[str] = None


@dataclass(frozen=True)
class IamRoleAssociation:
    role_arn: str = ""
    feature_name: str = ""


NESTED_BLOCKS = {
    "serverlessv2_scaling_configuration": ServerlessV2Scaling,
    "restore_to_point_in_time": RestoreToPointInTime,
    "s3_import": S3Import,
}

LIST_OPTIONS = ("vpc_security_group_ids", "availability_zones", "enabled_cloudwatch_logs_exports")


@dataclass(frozen=True)
class ClusterConfig:
    """Desired state of one Aurora cluster module instance"""

    create: bool = True
    name: str = ""

    # Identity
    cluster_identifier: Optional[str] = None
    cluster_identifier_prefix: Optional[str] = None
    engine: str = "aurora-postgresql"
    engine_version: Optional[str] = None
    engine_mode: str = "provisioned"
    database_name: Optional[str] = None
    allow_major_version_upgrade: bool = False

    # Credentials (opaque secrets, never logged)
    master_username: Optional[str] = None
    master_password: Any = field(default=None, repr=False)
    manage_master_user_password: Optional[bool] = None
    master_user_secret_kms_key_id: Optional[str] = None
    iam_database_authentication_enabled: Optional[bool] = None

    # Storage
    port: Optional[int] = None
    storage_type: Optional[str] = None
    iops: Optional[int] = None
    allocated_storage: Optional[int] = None
    db_cluster_instance_class: Optional[str] = None
    storage_encrypted: bool = True
    kms_key_id: Optional[str] = None

    # Networking
    db_subnet_group_name: Optional[str] = None
    vpc_security_group_ids: Tuple[str, ...] = ()
    availability_zones: Tuple[str, ...] = ()
    network_type: Optional[str] = None
    db_cluster_parameter_group_name: Optional[str] = None
    enable_http_endpoint: Optional[bool] = None

    # Backups and teardown
    backup_retention_period: Optional[int] = 7
    preferred_backup_window: Optional[str] = "02:00-03:00"
    preferred_maintenance_window: Optional[str] = "sun:05:00-sun:06:00"
    backtrack_window: Optional[int] = None
    skip_final_snapshot: bool = False
    final_snapshot_identifier_prefix: Optional[str] = None
    deletion_protection: bool = False
    snapshot_identifier: Optional[str] = None
    copy_tags_to_snapshot: Optional[bool] = None
    apply_immediately: Optional[bool] = None
    global_cluster_identifier: Optional[str] = None
    replication_source_identifier: Optional[str] = None

    # Optional nested blocks
    serverlessv2_scaling_configuration: Optional[ServerlessV2Scaling] = None
    restore_to_point_in_time: Optional[RestoreToPointInTime] = None
    s3_import: Optional[S3Import] = None

    # Cluster IAM role associations, keyed by association name
    iam_roles: Any = field(default_factory=dict)

    # CloudWatch logs
    enabled_cloudwatch_logs_exports: Tuple[str, ...] = ()
    create_cloudwatch_log_group: bool = False
    cloudwatch_log_group_retention_in_days: int = 7
    cloudwatch_log_group_kms_key_id: Optional[str] = None

    # Enhanced monitoring (interval 0 turns it off on the cluster)
    monitoring_interval: int = 0
    create_monitoring_role: bool = True
    monitoring_role_arn: str = ""
    iam_role_name: Optional[str] = None
    iam_role_name_prefix: Optional[str] = None
    iam_role_description: Optional[str] = None
    iam_role_path: Optional[str] = None
    iam_role_permissions_boundary: Optional[str] = None
    iam_role_max_session_duration: Optional[int] = None
    iam_role_tags: Mapping[str, str] = field(default_factory=dict)

    # Tagging and timeouts
    tags: Mapping[str, str] = field(default_factory=dict)
    cluster_tags: Mapping[str, str] = field(default_factory=dict)
    cluster_timeouts: Mapping[str, str] = field(default_factory=dict)

    @property
    def base_name(self) -> str:
        """Name used for tags and derived identifiers"""
        return self.name or self.cluster_identifier or self.cluster_identifier_prefix or ""

    @property
    def final_snapshot_prefix(self) -> str:
        return self.final_snapshot_identifier_prefix or DEFAULT_FINAL_SNAPSHOT_PREFIX

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ClusterConfig":
        """
        Build a record from plain config values (stack config, JSON, dicts)

        Args:
            data: Option name to value mapping

        Returns:
            ClusterConfig with nested blocks converted to their record types
        """
        values = _checked_options(cls, data, "")

        for option, block in NESTED_BLOCKS.items():
            if values.get(option) is not None:
                values[option] = _block(block, values[option], option)

        roles = values.get("iam_roles")
        if isinstance(roles, Mapping):
            values["iam_roles"] = {
                key: _block(IamRoleAssociation, role, f"iam_roles[{key}]") for key, role in roles.items()
            }
        elif roles is not None:
            values["iam_roles"] = tuple(_role_pairs(roles))

        for option in LIST_OPTIONS:
            if values.get(option) is not None:
                values[option] = _string_list(values[option], option)

        return cls(**values)


def _checked_options(cls: type, data: Any, path: str) -> Dict[str, Any]:
    """Copy ``data`` after checking it is a mapping of ``cls`` field names"""
    if not isinstance(data, Mapping):
        raise ConfigurationError(path or cls.__name__, f"expected a mapping, got {type(data).__name__}")
    known = {f.name for f in fields(cls)}
    for option in data:
        if option not in known:
            raise ConfigurationError(f"{path}.{option}" if path else option, "unknown option")
    return dict(data)


def _block(cls: type, value: Any, path: str) -> Any:
    if isinstance(value, cls):
        return value
    return cls(**_checked_options(cls, value, path))


def _role_pairs(roles: Any):
    if not isinstance(roles, (list, tuple)):
        raise ConfigurationError("iam_roles", "expected a mapping of association name to role")
    for item in roles:
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            raise ConfigurationError("iam_roles", f"expected (name, role) pairs, got {item!r}")
        key, role = item
        yield key, _block(IamRoleAssociation, role, f"iam_roles[{key}]")


def _string_list(value: Any, option: str) -> Tuple[str, ...]:
    # A bare string would otherwise split into characters
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple)):
        raise ConfigurationError(option, f"expected a list, got {type(value).__name__}")
    return tuple(value)


def iam_role_items(config: ClusterConfig) -> Tuple[Tuple[str, IamRoleAssociation], ...]:
    """Role associations as ``(key, association)`` pairs in declaration order"""
    roles = config.iam_roles or {}
    if isinstance(roles, Mapping):
        return tuple(roles.items())
    return tuple(roles)


def validate_config(config: ClusterConfig, context: Optional[PlanningContext] = None) -> None:
    """
    Reject invalid option combinations before any planning happens

    Args:
        config: Configuration record
        context: Provider context the plan will run in

    Raises:
        ConfigurationError: naming the offending field
    """
    context = context or PlanningContext()

    if context.partition not in KNOWN_PARTITIONS:
        raise ConfigurationError("partition", f"unknown partition {context.partition!r}")

    if config.cluster_identifier and config.cluster_identifier_prefix:
        raise ConfigurationError("cluster_identifier_prefix", "cannot be combined with cluster_identifier")
    if config.iam_role_name and config.iam_role_name_prefix:
        raise ConfigurationError("iam_role_name_prefix", "cannot be combined with iam_role_name")

    if config.skip_final_snapshot and config.final_snapshot_identifier_prefix:
        raise ConfigurationError(
            "final_snapshot_identifier_prefix",
            "a final snapshot was requested but skip_final_snapshot is true",
        )

    if not config.create:
        return

    if not config.cluster_identifier and not config.cluster_identifier_prefix:
        raise ConfigurationError("cluster_identifier", "cluster_identifier or cluster_identifier_prefix is required")
    if config.cluster_identifier_prefix and not config.name:
        raise ConfigurationError("name", "required when cluster_identifier_prefix is used")
    if config.iam_role_name_prefix and not config.base_name:
        raise ConfigurationError("name", "required when iam_role_name_prefix is used")
    if not config.engine:
        raise ConfigurationError("engine", "engine is required")

    if config.backup_retention_period is not None and not 1 <= config.backup_retention_period <= 35:
        raise ConfigurationError("backup_retention_period", "must be between 1 and 35 days")

    if config.monitoring_interval not in MONITORING_INTERVALS:
        raise ConfigurationError(
            "monitoring_interval", f"must be one of {', '.join(map(str, MONITORING_INTERVALS))}"
        )
    if config.monitoring_interval and not config.create_monitoring_role and not config.monitoring_role_arn:
        raise ConfigurationError(
            "monitoring_role_arn", "required when monitoring_interval is set and create_monitoring_role is false"
        )

    if config.manage_master_user_password and config.master_password is not None:
        raise ConfigurationError("master_password", "cannot be set when manage_master_user_password is true")

    scaling = config.serverlessv2_scaling_configuration
    if scaling is not None and scaling.min_capacity > scaling.max_capacity:
        raise ConfigurationError(
            "serverlessv2_scaling_configuration.min_capacity", "must not exceed max_capacity"
        )

    restore = config.restore_to_point_in_time
    if restore is not None:
        if not restore.source_cluster_identifier:
            raise ConfigurationError(
                "restore_to_point_in_time.source_cluster_identifier", "source cluster is required"
            )
        if restore.restore_to_time and restore.use_latest_restorable_time:
            raise ConfigurationError(
                "restore_to_point_in_time.restore_to_time",
                "cannot be combined with use_latest_restorable_time",
            )

    s3_import = config.s3_import
    if s3_import is not None:
        for option in ("bucket_name", "ingestion_role", "source_engine_version"):
            if not getattr(s3_import, option):
                raise ConfigurationError(f"s3_import.{option}", "required for an S3 import")

    for key, role in iam_role_items(config):
        if not role.role_arn:
            raise ConfigurationError(f"iam_roles[{key}].role_arn", "role ARN is required")
        if not role.feature_name:
            raise ConfigurationError(f"iam_roles[{key}].feature_name", "feature name is required")

    for export in config.enabled_cloudwatch_logs_exports:
        if not export:
            raise ConfigurationError("enabled_cloudwatch_logs_exports", "log export names must not be empty")

    # Left for the provisioning engine to accept or reject
    if config.snapshot_identifier and restore is not None:
        pulumi.log.warn(
            "snapshot_identifier and restore_to_point_in_time are both set; "
            "the provisioning engine decides which restore source wins"
        )
    if config.create_monitoring_role and config.monitoring_role_arn:
        pulumi.log.warn("monitoring_role_arn is ignored because create_monitoring_role is true")
