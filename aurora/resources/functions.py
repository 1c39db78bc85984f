"""
Pulumi Resource Functions
Declares a resolved plan as pulumi_aws resources and lets the Pulumi engine converge it
"""

import pulumi
import pulumi_aws as aws
import pulumi_random as random
from typing import Any, Dict, Mapping, Optional, Sequence

from ..references import substitute
from ..types import (
    CLOUDWATCH_LOG_GROUP,
    IAM_ROLE,
    IAM_ROLE_POLICY_ATTACHMENT,
    RANDOM_ID,
    RDS_CLUSTER,
    RDS_CLUSTER_ROLE_ASSOCIATION,
    Plan,
    Ref,
    ResourceSpec,
)


def resource_name(plan_name: str, spec: ResourceSpec) -> str:
    """Pulumi logical name for a planned resource, e.g. ``db1-log-group-error``"""
    name = f"{plan_name}-{spec.kind.replace('_', '-')}"
    if spec.key is not None:
        name = f"{name}-{spec.key}"
    return name


def _join(parts: Sequence[Any]) -> Any:
    parts = [part if isinstance(part, pulumi.Output) else ("" if part is None else str(part)) for part in parts]
    if any(isinstance(part, pulumi.Output) for part in parts):
        return pulumi.Output.concat(*parts)
    return "".join(parts)


def bind_outputs(value: Any, resources: Mapping[str, Any]) -> Any:
    """
    Replace deferred handles with attributes of already-declared Pulumi resources

    Args:
        value: Field value from the plan
        resources: Declared resources keyed by plan address

    Returns:
        Value made of plain inputs and pulumi.Output objects
    """
    def attribute(ref: Ref) -> Any:
        return getattr(resources[ref.address], ref.attribute)

    return substitute(value, attribute, join=_join)


def resource_options(spec: ResourceSpec, depends_on: Sequence[Any],
                     opts: Optional[pulumi.ResourceOptions] = None) -> pulumi.ResourceOptions:
    """
    Translate lifecycle annotations into Pulumi resource options

    Args:
        spec: Planned resource
        depends_on: Declared resources this one references
        opts: Caller options merged underneath

    Returns:
        ResourceOptions carrying depends_on, ignore_changes and custom_timeouts
    """
    timeouts = None
    if spec.timeouts:
        timeouts = pulumi.CustomTimeouts(
            create=spec.timeouts.get("create"),
            update=spec.timeouts.get("update"),
            delete=spec.timeouts.get("delete"),
        )

    options = pulumi.ResourceOptions(
        depends_on=list(depends_on) or None,
        ignore_changes=sorted(spec.ignore_changes) or None,
        custom_timeouts=timeouts,
    )
    if opts is not None:
        options = pulumi.ResourceOptions.merge(opts, options)
    return options


def create_rds_cluster(name: str, args: Dict[str, Any], opts: pulumi.ResourceOptions) -> aws.rds.Cluster:
    """Aurora cluster, with nested blocks converted to their Args types"""
    args = dict(args)

    if "serverlessv2_scaling_configuration" in args:
        args["serverlessv2_scaling_configuration"] = aws.rds.ClusterServerlessv2ScalingConfigurationArgs(
            **args["serverlessv2_scaling_configuration"]
        )
    if "restore_to_point_in_time" in args:
        args["restore_to_point_in_time"] = aws.rds.ClusterRestoreToPointInTimeArgs(
            **args["restore_to_point_in_time"]
        )
    if "s3_import" in args:
        args["s3_import"] = aws.rds.ClusterS3ImportArgs(**args["s3_import"])

    return aws.rds.Cluster(name, opts=opts, **args)


def create_iam_role(name: str, args: Dict[str, Any], opts: pulumi.ResourceOptions) -> aws.iam.Role:
    return aws.iam.Role(name, opts=opts, **args)


def create_role_policy_attachment(name: str, args: Dict[str, Any],
                                  opts: pulumi.ResourceOptions) -> aws.iam.RolePolicyAttachment:
    return aws.iam.RolePolicyAttachment(name, opts=opts, **args)


def create_log_group(name: str, args: Dict[str, Any], opts: pulumi.ResourceOptions) -> aws.cloudwatch.LogGroup:
    return aws.cloudwatch.LogGroup(name, opts=opts, **args)


def create_cluster_role_association(name: str, args: Dict[str, Any],
                                    opts: pulumi.ResourceOptions) -> aws.rds.ClusterRoleAssociation:
    return aws.rds.ClusterRoleAssociation(name, opts=opts, **args)


def create_random_id(name: str, args: Dict[str, Any], opts: pulumi.ResourceOptions) -> random.RandomId:
    """Keeper-stable random suffix; Pulumi state keeps it between runs"""
    return random.RandomId(name, opts=opts, **args)


DECLARATIONS = {
    RDS_CLUSTER: create_rds_cluster,
    IAM_ROLE: create_iam_role,
    IAM_ROLE_POLICY_ATTACHMENT: create_role_policy_attachment,
    CLOUDWATCH_LOG_GROUP: create_log_group,
    RDS_CLUSTER_ROLE_ASSOCIATION: create_cluster_role_association,
    RANDOM_ID: create_random_id,
}


def declare_plan(plan: Plan, opts: Optional[pulumi.ResourceOptions] = None) -> Dict[str, any]:
    """
    Declare every planned resource in dependency order

    Args:
        plan: Resolved plan
        opts: Options applied to every declared resource (provider, parent)

    Returns:
        Dict with declared resources keyed by address and module outputs
    """
    resources: Dict[str, Any] = {}

    for address in plan.order:
        spec = plan.get(address)
        declare = DECLARATIONS.get(spec.type)
        if declare is None:
            raise ValueError(f"Unsupported resource type: {spec.type}")

        depends_on = [resources[producer] for producer in plan.dependencies(address)]
        args = bind_outputs(dict(spec.fields), resources)

        pulumi.log.debug(f"Declaring {address} as {resource_name(plan.name, spec)}")
        resources[address] = declare(
            resource_name(plan.name, spec),
            args,
            resource_options(spec, depends_on, opts),
        )

    return {
        "resources": resources,
        "outputs": bind_outputs(dict(plan.outputs), resources),
    }
