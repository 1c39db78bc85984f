"""
Conditional Resource Planner Functions
Decides which cluster, role, log group and role association instances exist
"""

import json
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pulumi

from ..identifiers import IdentifierPolicy, derive_identifier, derive_snapshot_identifier
from ..records import ClusterConfig, iam_role_items, validate_config
from ..references import resolve_plan
from ..types import (
    CLOUDWATCH_LOG_GROUP,
    IAM_ROLE,
    IAM_ROLE_POLICY_ATTACHMENT,
    RDS_CLUSTER,
    RDS_CLUSTER_ROLE_ASSOCIATION,
    Format,
    Plan,
    PlannedResources,
    PlanningContext,
    Ref,
    ResourceSpec,
    make_address,
)


KIND_CLUSTER = "cluster"
KIND_CLUSTER_IDENTIFIER_SUFFIX = "cluster_identifier_suffix"
KIND_SNAPSHOT_IDENTIFIER_SUFFIX = "snapshot_identifier_suffix"
KIND_MONITORING_ROLE = "monitoring_role"
KIND_MONITORING_ROLE_NAME_SUFFIX = "monitoring_role_name_suffix"
KIND_MONITORING_ROLE_POLICY = "monitoring_role_policy"
KIND_LOG_GROUP = "log_group"
KIND_ROLE_ASSOCIATION = "role_association"

KNOWN_KINDS = frozenset({
    KIND_CLUSTER,
    KIND_CLUSTER_IDENTIFIER_SUFFIX,
    KIND_SNAPSHOT_IDENTIFIER_SUFFIX,
    KIND_MONITORING_ROLE,
    KIND_MONITORING_ROLE_NAME_SUFFIX,
    KIND_MONITORING_ROLE_POLICY,
    KIND_LOG_GROUP,
    KIND_ROLE_ASSOCIATION,
})

# Mutated out-of-band after creation (global cluster joins, replica promotion, restores)
CLUSTER_IGNORE_CHANGES = frozenset({
    "replication_source_identifier",
    "global_cluster_identifier",
    "snapshot_identifier",
})

DEFAULT_CLUSTER_TIMEOUTS = {"create": "120m", "update": "120m", "delete": "60m"}

MONITORING_ASSUME_ROLE_POLICY = json.dumps({
    "Version": "2012-10-17",
    "Statement": [{
        "Sid": "",
        "Action": "sts:AssumeRole",
        "Effect": "Allow",
        "Principal": {"Service": "monitoring.rds.amazonaws.com"},
    }],
})


def _compact(values: Dict[str, Any]) -> Dict[str, Any]:
    """Drop unset options so they stay absent rather than empty"""
    return {key: value for key, value in values.items() if value is not None}


def unique_by_key(items: Iterable[Tuple[str, Any]]) -> List[Tuple[str, Any]]:
    """
    Deduplicate keyed items, keeping first-seen order

    Re-declaring a key replaces its value but never adds a second entry.
    """
    seen: Dict[str, Any] = {}
    for key, value in items:
        seen[key] = value
    return list(seen.items())


def unique_names(names: Iterable[str]) -> List[str]:
    return [name for name, _ in unique_by_key((name, name) for name in names)]


def cluster_identifier(config: ClusterConfig) -> Tuple[Any, Optional[ResourceSpec]]:
    """Exact cluster identifier, or a prefix template plus its suffix spec"""
    return derive_identifier(
        IdentifierPolicy(name=config.cluster_identifier, prefix=config.cluster_identifier_prefix),
        config.name,
        KIND_CLUSTER_IDENTIFIER_SUFFIX,
        field="cluster_identifier",
    )


def log_group_addresses(config: ClusterConfig) -> Tuple[str, ...]:
    if not config.create_cloudwatch_log_group:
        return ()
    return tuple(make_address(KIND_LOG_GROUP, export) for export in unique_names(config.enabled_cloudwatch_logs_exports))


def monitoring_role_arn(config: ClusterConfig) -> Any:
    """Created role's ARN, or the supplied one when an existing role is reused"""
    if config.create_monitoring_role:
        return Ref(KIND_MONITORING_ROLE, "arn")
    return config.monitoring_role_arn


def plan_cluster(config: ClusterConfig, context: PlanningContext) -> List[ResourceSpec]:
    """
    Plan the cluster and the random ids its identifiers depend on

    The cluster waits on its log groups so they exist, with their retention,
    before RDS starts writing to them.

    Args:
        config: Configuration record
        context: Provider context

    Returns:
        Zero specs when the module is disabled, otherwise suffix specs then the cluster
    """
    if not config.create:
        return []

    identifier, identifier_suffix = cluster_identifier(config)
    snapshot_identifier, snapshot_suffix = derive_snapshot_identifier(
        config.final_snapshot_prefix,
        identifier,
        config.skip_final_snapshot,
        suffix_kind=KIND_SNAPSHOT_IDENTIFIER_SUFFIX,
    )

    fields = _compact({
        "cluster_identifier": identifier,
        "engine": config.engine,
        "engine_version": config.engine_version,
        "engine_mode": config.engine_mode,
        "database_name": config.database_name,
        "allow_major_version_upgrade": config.allow_major_version_upgrade,
        "master_username": config.master_username,
        "master_password": config.master_password,
        "manage_master_user_password": config.manage_master_user_password,
        "master_user_secret_kms_key_id": config.master_user_secret_kms_key_id,
        "iam_database_authentication_enabled": config.iam_database_authentication_enabled,
        "port": config.port,
        "storage_type": config.storage_type,
        "iops": config.iops,
        "allocated_storage": config.allocated_storage,
        "db_cluster_instance_class": config.db_cluster_instance_class,
        "storage_encrypted": config.storage_encrypted,
        "kms_key_id": config.kms_key_id,
        "db_subnet_group_name": config.db_subnet_group_name,
        "vpc_security_group_ids": list(config.vpc_security_group_ids) or None,
        "availability_zones": list(config.availability_zones) or None,
        "network_type": config.network_type,
        "db_cluster_parameter_group_name": config.db_cluster_parameter_group_name,
        "enable_http_endpoint": config.enable_http_endpoint,
        "backup_retention_period": config.backup_retention_period,
        "preferred_backup_window": config.preferred_backup_window,
        "preferred_maintenance_window": config.preferred_maintenance_window,
        "backtrack_window": config.backtrack_window,
        "skip_final_snapshot": config.skip_final_snapshot,
        "final_snapshot_identifier": snapshot_identifier,
        "deletion_protection": config.deletion_protection,
        "snapshot_identifier": config.snapshot_identifier,
        "copy_tags_to_snapshot": config.copy_tags_to_snapshot,
        "apply_immediately": config.apply_immediately,
        "global_cluster_identifier": config.global_cluster_identifier,
        "replication_source_identifier": config.replication_source_identifier,
        "enabled_cloudwatch_logs_exports": unique_names(config.enabled_cloudwatch_logs_exports) or None,
        "monitoring_interval": config.monitoring_interval or None,
        "monitoring_role_arn": (monitoring_role_arn(config) or None) if config.monitoring_interval else None,
        "tags": {"Name": config.base_name, **config.tags, **config.cluster_tags},
    })

    scaling = config.serverlessv2_scaling_configuration
    if scaling is not None:
        fields["serverlessv2_scaling_configuration"] = {
            "min_capacity": scaling.min_capacity,
            "max_capacity": scaling.max_capacity,
        }

    restore = config.restore_to_point_in_time
    if restore is not None:
        fields["restore_to_point_in_time"] = _compact({
            "source_cluster_identifier": restore.source_cluster_identifier,
            "restore_type": restore.restore_type,
            "restore_to_time": restore.restore_to_time,
            "use_latest_restorable_time": restore.use_latest_restorable_time,
        })

    s3_import = config.s3_import
    if s3_import is not None:
        fields["s3_import"] = _compact({
            "bucket_name": s3_import.bucket_name,
            "bucket_prefix": s3_import.bucket_prefix,
            "ingestion_role": s3_import.ingestion_role,
            "source_engine": s3_import.source_engine,
            "source_engine_version": s3_import.source_engine_version,
        })

    cluster = ResourceSpec(
        kind=KIND_CLUSTER,
        type=RDS_CLUSTER,
        fields=fields,
        ignore_changes=CLUSTER_IGNORE_CHANGES,
        timeouts={**DEFAULT_CLUSTER_TIMEOUTS, **config.cluster_timeouts},
        depends_on=log_group_addresses(config),
    )

    specs = [spec for spec in (identifier_suffix, snapshot_suffix) if spec is not None]
    specs.append(cluster)
    return specs


def plan_monitoring_role(config: ClusterConfig, context: PlanningContext) -> List[ResourceSpec]:
    """
    Plan the enhanced monitoring role and its managed policy attachment

    Args:
        config: Configuration record
        context: Provider context, used for the policy ARN partition

    Returns:
        Role specs, or an empty list when an existing role ARN is reused
    """
    if not (config.create and config.create_monitoring_role):
        return []

    policy = IdentifierPolicy(
        name=config.iam_role_name or (None if config.iam_role_name_prefix else f"{config.base_name}-monitoring"),
        prefix=config.iam_role_name_prefix,
    )
    role_name, name_suffix = derive_identifier(
        policy, config.base_name, KIND_MONITORING_ROLE_NAME_SUFFIX, field="iam_role_name"
    )

    role = ResourceSpec(
        kind=KIND_MONITORING_ROLE,
        type=IAM_ROLE,
        fields=_compact({
            "name": role_name,
            "description": config.iam_role_description,
            "path": config.iam_role_path,
            "assume_role_policy": MONITORING_ASSUME_ROLE_POLICY,
            "permissions_boundary": config.iam_role_permissions_boundary,
            "max_session_duration": config.iam_role_max_session_duration,
            "tags": {**config.tags, **config.iam_role_tags},
        }),
    )

    attachment = ResourceSpec(
        kind=KIND_MONITORING_ROLE_POLICY,
        type=IAM_ROLE_POLICY_ATTACHMENT,
        fields={
            "role": Ref(role.address, "name"),
            "policy_arn": f"arn:{context.partition}:iam::aws:policy/service-role/AmazonRDSEnhancedMonitoringRole",
        },
    )

    specs = [name_suffix] if name_suffix is not None else []
    specs.extend([role, attachment])
    return specs


def plan_log_groups(config: ClusterConfig, context: PlanningContext) -> List[ResourceSpec]:
    """One log group per exported log type, named after the cluster identifier"""
    if not (config.create and config.create_cloudwatch_log_group):
        return []

    identifier, _ = cluster_identifier(config)
    identifier_parts = identifier.parts if isinstance(identifier, Format) else (identifier,)

    specs = []
    for export in unique_names(config.enabled_cloudwatch_logs_exports):
        specs.append(ResourceSpec(
            kind=KIND_LOG_GROUP,
            type=CLOUDWATCH_LOG_GROUP,
            key=export,
            fields=_compact({
                "name": Format.of("/aws/rds/cluster/", *identifier_parts, "/", export),
                "retention_in_days": config.cloudwatch_log_group_retention_in_days,
                "kms_key_id": config.cloudwatch_log_group_kms_key_id,
                "tags": dict(config.tags),
            }),
        ))
    return specs


def plan_role_associations(config: ClusterConfig, context: PlanningContext) -> List[ResourceSpec]:
    """One cluster role association per named IAM role"""
    if not config.create:
        return []

    return [
        ResourceSpec(
            kind=KIND_ROLE_ASSOCIATION,
            type=RDS_CLUSTER_ROLE_ASSOCIATION,
            key=key,
            fields={
                "db_cluster_identifier": Ref(KIND_CLUSTER, "id"),
                "role_arn": role.role_arn,
                "feature_name": role.feature_name,
            },
        )
        for key, role in unique_by_key(iam_role_items(config))
    ]


def plan_outputs(config: ClusterConfig, resources: Iterable[ResourceSpec]) -> Dict[str, Any]:
    """
    Module outputs, as deferred handles into the planned resources

    Args:
        config: Configuration record
        resources: Planned specs

    Returns:
        Output name to value mapping
    """
    resources = list(resources)

    def cluster(attribute: str) -> Ref:
        return Ref(KIND_CLUSTER, attribute)

    return {
        "cluster_arn": cluster("arn"),
        "cluster_id": cluster("id"),
        "cluster_identifier": cluster("cluster_identifier"),
        "cluster_resource_id": cluster("cluster_resource_id"),
        "cluster_endpoint": cluster("endpoint"),
        "cluster_reader_endpoint": cluster("reader_endpoint"),
        "cluster_engine_version_actual": cluster("engine_version_actual"),
        "cluster_database_name": cluster("database_name"),
        "cluster_port": cluster("port"),
        "cluster_master_username": cluster("master_username"),
        "cluster_hosted_zone_id": cluster("hosted_zone_id"),
        "cluster_final_snapshot_identifier": cluster("final_snapshot_identifier"),
        "enhanced_monitoring_iam_role_name": Ref(KIND_MONITORING_ROLE, "name"),
        "enhanced_monitoring_iam_role_arn": monitoring_role_arn(config),
        "enhanced_monitoring_iam_role_unique_id": Ref(KIND_MONITORING_ROLE, "unique_id"),
        "cluster_role_associations": {
            spec.key: Ref(spec.address, "id")
            for spec in resources if spec.kind == KIND_ROLE_ASSOCIATION
        },
        "db_cluster_cloudwatch_log_groups": {
            spec.key: {"name": Ref(spec.address, "name"), "arn": Ref(spec.address, "arn")}
            for spec in resources if spec.kind == KIND_LOG_GROUP
        },
    }


PLANNERS = (
    plan_cluster,
    plan_monitoring_role,
    plan_log_groups,
    plan_role_associations,
)


def plan_resources(config: ClusterConfig, context: Optional[PlanningContext] = None,
                   max_workers: int = 1) -> PlannedResources:
    """
    Evaluate every resource kind's predicate and collect the scheduled instances

    Args:
        config: Configuration record
        context: Provider context, defaults to the commercial partition
        max_workers: Plan independent kinds on this many threads

    Returns:
        PlannedResources in declaration order

    Raises:
        ConfigurationError: when the record is invalid
    """
    context = context or PlanningContext()
    validate_config(config, context)

    if max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            batches = list(executor.map(lambda planner: planner(config, context), PLANNERS))
    else:
        batches = [planner(config, context) for planner in PLANNERS]

    resources = tuple(spec for batch in batches for spec in batch)
    for spec in resources:
        pulumi.log.debug(f"Planned {spec.address} ({spec.type})")
    pulumi.log.info(f"Planned {len(resources)} resources for {config.base_name or 'disabled module'}")

    return PlannedResources(
        name=config.base_name,
        resources=resources,
        known_kinds=KNOWN_KINDS,
        outputs=plan_outputs(config, resources),
    )


def build_plan(config: ClusterConfig, context: Optional[PlanningContext] = None,
               max_workers: int = 1) -> Plan:
    """
    Full planning pass: validate, plan, derive identifiers and resolve references

    Args:
        config: Configuration record
        context: Provider context
        max_workers: Threads for planning independent kinds

    Returns:
        Resolved Plan ready for an applier
    """
    return resolve_plan(plan_resources(config, context, max_workers=max_workers))
