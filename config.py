"""
Configuration management for the Aurora cluster stack
"""

import pulumi
import pulumi_aws as aws
from typing import Dict, Any, List, Optional

from aurora.records import ClusterConfig
from aurora.types import PlanningContext


class Config:
    """Centralized configuration management for the Aurora deployment"""

    def __init__(self):
        self.config = pulumi.Config()

        # Module toggle and naming
        self.create = self._bool("create", True)
        self.name = self.config.get("name") or "aurora"
        self.cluster_identifier = self.config.get("cluster_identifier")
        self.cluster_identifier_prefix = self.config.get("cluster_identifier_prefix")
        if not self.cluster_identifier and not self.cluster_identifier_prefix:
            self.cluster_identifier = self.name

        # Engine
        self.engine = self.config.get("engine") or "aurora-postgresql"
        self.engine_version = self.config.get("engine_version")
        self.engine_mode = self.config.get("engine_mode") or "provisioned"
        self.database_name = self.config.get("database_name")
        self.allow_major_version_upgrade = self._bool("allow_major_version_upgrade", False)

        # Credentials
        self.master_username = self.config.get("master_username") or "postgres"
        self.master_password = self.config.get_secret("master_password")
        self.manage_master_user_password = self.config.get_bool("manage_master_user_password")
        self.master_user_secret_kms_key_id = self.config.get("master_user_secret_kms_key_id")
        self.iam_database_authentication_enabled = self.config.get_bool("iam_database_authentication_enabled")

        # Storage
        self.port = self.config.get_int("port")
        self.storage_type = self.config.get("storage_type")
        self.iops = self.config.get_int("iops")
        self.allocated_storage = self.config.get_int("allocated_storage")
        self.db_cluster_instance_class = self.config.get("db_cluster_instance_class")
        self.storage_encrypted = self._bool("storage_encrypted", True)
        self.kms_key_id = self.config.get("kms_key_id")

        # Networking
        self.db_subnet_group_name = self.config.get("db_subnet_group_name")
        self.vpc_security_group_ids = self.config.get_object("vpc_security_group_ids") or []
        self.availability_zones = self.config.get_object("availability_zones") or []
        self.network_type = self.config.get("network_type")
        self.db_cluster_parameter_group_name = self.config.get("db_cluster_parameter_group_name")
        self.enable_http_endpoint = self.config.get_bool("enable_http_endpoint")

        # Backups and teardown
        self.backup_retention_period = self._int("backup_retention_period", 7)
        self.preferred_backup_window = self.config.get("preferred_backup_window") or "02:00-03:00"
        self.preferred_maintenance_window = self.config.get("preferred_maintenance_window") or "sun:05:00-sun:06:00"
        self.backtrack_window = self.config.get_int("backtrack_window")
        self.skip_final_snapshot = self._bool("skip_final_snapshot", False)
        self.final_snapshot_identifier_prefix = self.config.get("final_snapshot_identifier_prefix")
        self.deletion_protection = self._bool("deletion_protection", False)
        self.snapshot_identifier = self.config.get("snapshot_identifier")
        self.copy_tags_to_snapshot = self.config.get_bool("copy_tags_to_snapshot")
        self.apply_immediately = self.config.get_bool("apply_immediately")
        self.global_cluster_identifier = self.config.get("global_cluster_identifier")
        self.replication_source_identifier = self.config.get("replication_source_identifier")

        # Optional nested blocks
        self.serverlessv2_scaling_configuration = self.config.get_object("serverlessv2_scaling_configuration")
        self.restore_to_point_in_time = self.config.get_object("restore_to_point_in_time")
        self.s3_import = self.config.get_object("s3_import")

        # Role associations and logs
        self.iam_roles = self.config.get_object("iam_roles") or {}
        self.enabled_cloudwatch_logs_exports = self.config.get_object("enabled_cloudwatch_logs_exports") or []
        self.create_cloudwatch_log_group = self._bool("create_cloudwatch_log_group", False)
        self.cloudwatch_log_group_retention_in_days = self._int("cloudwatch_log_group_retention_in_days", 7)
        self.cloudwatch_log_group_kms_key_id = self.config.get("cloudwatch_log_group_kms_key_id")

        # Enhanced monitoring
        self.monitoring_interval = self._int("monitoring_interval", 0)
        self.create_monitoring_role = self._bool("create_monitoring_role", True)
        self.monitoring_role_arn = self.config.get("monitoring_role_arn") or ""
        self.iam_role_name = self.config.get("iam_role_name")
        self.iam_role_name_prefix = self.config.get("iam_role_name_prefix")
        self.iam_role_description = self.config.get("iam_role_description")
        self.iam_role_path = self.config.get("iam_role_path")
        self.iam_role_permissions_boundary = self.config.get("iam_role_permissions_boundary")
        self.iam_role_max_session_duration = self.config.get_int("iam_role_max_session_duration")
        self.iam_role_tags = self.config.get_object("iam_role_tags") or {}

        # Timeouts and additional tags
        self.cluster_timeouts = self.config.get_object("cluster_timeouts") or {}
        self.additional_tags = self.config.get_object("tags") or {}
        self.cluster_tags = self.config.get_object("cluster_tags") or {}

    def _bool(self, key: str, default: bool) -> bool:
        # get_bool returns None when unset, an explicit false must survive
        value = self.config.get_bool(key)
        return default if value is None else value

    def _int(self, key: str, default: int) -> int:
        value = self.config.get_int(key)
        return default if value is None else value

    @property
    def common_tags(self) -> Dict[str, str]:
        """Get common tags for all resources"""
        base_tags = {
            "Project": self.name,
            "ManagedBy": "pulumi",
            "Module": "aurora",
        }
        base_tags.update(self.additional_tags)
        return base_tags

    @property
    def option_names(self) -> List[str]:
        return [
            name for name in vars(self)
            if name not in ("config", "additional_tags")
        ]

    def cluster_config(self) -> ClusterConfig:
        """Immutable configuration record handed to the planner"""
        values: Dict[str, Any] = {name: getattr(self, name) for name in self.option_names}
        values["tags"] = self.common_tags
        return ClusterConfig.from_mapping(values)


def get_config() -> Config:
    """Get the global configuration instance"""
    return Config()


def get_planning_context(region: Optional[str] = None) -> PlanningContext:
    """
    Look up partition, region and account once, at the edge of the program

    Args:
        region: Override for the provider region

    Returns:
        PlanningContext passed explicitly into planning
    """
    current = aws.get_caller_identity()
    return PlanningContext(
        partition=aws.get_partition().partition,
        region=region or aws.get_region().name,
        account_id=current.account_id,
    )
