"""
Plan data types
Resource specs, deferred handles and the finished plan handed to an applier
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterator, List, Mapping, Optional, Tuple


# Resource types understood by the drivers
RDS_CLUSTER = "rds_cluster"
IAM_ROLE = "iam_role"
IAM_ROLE_POLICY_ATTACHMENT = "iam_role_policy_attachment"
CLOUDWATCH_LOG_GROUP = "cloudwatch_log_group"
RDS_CLUSTER_ROLE_ASSOCIATION = "rds_cluster_role_association"
RANDOM_ID = "random_id"


def make_address(kind: str, key: Optional[str] = None) -> str:
    """Plan address of a resource instance: ``kind`` or ``kind[key]``"""
    if key is None:
        return kind
    return f"{kind}[{key}]"


def address_kind(address: str) -> str:
    return address.split("[", 1)[0]


@dataclass(frozen=True)
class Ref:
    """Deferred handle to an output of another planned resource"""

    address: str
    attribute: str

    @property
    def kind(self) -> str:
        return address_kind(self.address)


@dataclass(frozen=True)
class Format:
    """String assembled from literal parts and deferred handles"""

    parts: Tuple[Any, ...]

    @classmethod
    def of(cls, *parts: Any) -> "Format":
        return cls(tuple(parts))


@dataclass(frozen=True)
class DependencyEdge:
    """``consumer`` needs an output of ``producer`` before it can be applied"""

    consumer: str
    producer: str


@dataclass(frozen=True)
class ResourceSpec:
    """
    One planned resource instance

    ``depends_on`` lists addresses that must converge first without any of
    their outputs being read; references in ``fields`` imply the rest.
    """

    kind: str
    type: str
    key: Optional[str] = None
    fields: Mapping[str, Any] = field(default_factory=dict)
    ignore_changes: FrozenSet[str] = frozenset()
    timeouts: Mapping[str, str] = field(default_factory=dict)
    depends_on: Tuple[str, ...] = ()

    @property
    def address(self) -> str:
        return make_address(self.kind, self.key)


@dataclass(frozen=True)
class PlanningContext:
    """Provider context passed explicitly into planning"""

    partition: str = "aws"
    region: str = "us-east-1"
    account_id: str = "000000000000"


@dataclass(frozen=True)
class PlannedResources:
    """Planner output: scheduled specs before references are resolved"""

    name: str
    resources: Tuple[ResourceSpec, ...]
    known_kinds: FrozenSet[str]
    outputs: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Plan:
    """Resolved plan: ordered specs, dependency graph and diff exclusions"""

    name: str
    resources: Tuple[ResourceSpec, ...]
    order: Tuple[str, ...]
    edges: Tuple[DependencyEdge, ...]
    outputs: Mapping[str, Any] = field(default_factory=dict)

    def get(self, address: str) -> ResourceSpec:
        for spec in self.resources:
            if spec.address == address:
                return spec
        raise KeyError(address)

    def addresses(self) -> List[str]:
        return [spec.address for spec in self.resources]

    def of_kind(self, kind: str) -> List[ResourceSpec]:
        return [spec for spec in self.resources if spec.kind == kind]

    def dependencies(self, address: str) -> List[str]:
        return [edge.producer for edge in self.edges if edge.consumer == address]

    @property
    def ignore_changes(self) -> Dict[str, FrozenSet[str]]:
        """Field-level diff exclusion set per address"""
        return {spec.address: spec.ignore_changes for spec in self.resources if spec.ignore_changes}


def iter_refs(value: Any) -> Iterator[Ref]:
    """Yield every deferred handle nested inside a field value"""
    if isinstance(value, Ref):
        yield value
    elif isinstance(value, Format):
        for part in value.parts:
            yield from iter_refs(part)
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_refs(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_refs(item)
