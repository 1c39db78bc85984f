"""
Resource drivers
The create/update/delete surface an applier talks to, plus an in-memory simulation
"""

import hashlib
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..identifiers import derive_suffix
from ..types import (
    CLOUDWATCH_LOG_GROUP,
    IAM_ROLE,
    IAM_ROLE_POLICY_ATTACHMENT,
    RANDOM_ID,
    RDS_CLUSTER,
    RDS_CLUSTER_ROLE_ASSOCIATION,
    PlanningContext,
)


class ResourceDriver(ABC):
    """Talks to the live system for one resource at a time"""

    @abstractmethod
    def create(self, resource_type: str, address: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
        """Create the resource and return its outputs"""

    @abstractmethod
    def update(self, resource_type: str, address: str, fields: Mapping[str, Any],
               previous: Mapping[str, Any]) -> Dict[str, Any]:
        """Update the resource in place and return its outputs"""

    @abstractmethod
    def delete(self, resource_type: str, address: str, previous: Mapping[str, Any]) -> None:
        """Delete the resource"""


def _token(*parts: Any, length: int = 12) -> str:
    digest = hashlib.sha256("/".join(str(part) for part in parts).encode()).hexdigest()
    return digest[:length]


class InMemoryDriver(ResourceDriver):
    """
    Simulated AWS: computes plausible ids, ARNs and endpoints without network calls

    ``failures`` maps an address to an exception raised on every call, or to a
    list of exceptions consumed one call at a time (then the call succeeds).
    ``delays`` maps an address to seconds slept before the call returns.
    """

    def __init__(self, context: Optional[PlanningContext] = None,
                 failures: Optional[Mapping[str, Any]] = None,
                 delays: Optional[Mapping[str, float]] = None):
        self.context = context or PlanningContext()
        self.failures: Dict[str, Any] = dict(failures or {})
        self.delays = dict(delays or {})
        self.calls: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def _enter(self, operation: str, address: str) -> None:
        with self._lock:
            self.calls.append((operation, address))
            failure = self.failures.get(address)
            if isinstance(failure, list):
                failure = failure.pop(0) if failure else None
        if address in self.delays:
            time.sleep(self.delays[address])
        if failure is not None:
            raise failure

    def create(self, resource_type, address, fields):
        self._enter("create", address)
        return self._outputs(resource_type, address, fields, {})

    def update(self, resource_type, address, fields, previous):
        self._enter("update", address)
        return self._outputs(resource_type, address, fields, previous)

    def delete(self, resource_type, address, previous):
        self._enter("delete", address)

    def _outputs(self, resource_type: str, address: str, fields: Mapping[str, Any],
                 previous: Mapping[str, Any]) -> Dict[str, Any]:
        partition, region, account = self.context.partition, self.context.region, self.context.account_id
        outputs = dict(fields)

        if resource_type == RANDOM_ID:
            outputs.update(derive_suffix(
                fields.get("keepers") or {}, fields.get("byte_length", 4), previous=previous or None
            ))

        elif resource_type == RDS_CLUSTER:
            identifier = fields["cluster_identifier"]
            postgres = "postgres" in fields.get("engine", "")
            outputs.update({
                "id": identifier,
                "arn": f"arn:{partition}:rds:{region}:{account}:cluster:{identifier}",
                "cluster_resource_id": previous.get("cluster_resource_id")
                or f"cluster-{_token(address, identifier, length=26).upper()}",
                "endpoint": f"{identifier}.cluster-{_token(account, region)}.{region}.rds.amazonaws.com",
                "reader_endpoint": f"{identifier}.cluster-ro-{_token(account, region)}.{region}.rds.amazonaws.com",
                "port": fields.get("port") or (5432 if postgres else 3306),
                "engine_version_actual": fields.get("engine_version") or ("16.4" if postgres else "8.0.mysql_aurora.3.05.2"),
                "database_name": fields.get("database_name", ""),
                "master_username": fields.get("master_username", ""),
                "hosted_zone_id": "Z2R2ITUGPM61AM",
                "final_snapshot_identifier": fields.get("final_snapshot_identifier"),
            })

        elif resource_type == IAM_ROLE:
            name = fields["name"]
            path = fields.get("path") or "/"
            outputs.update({
                "id": name,
                "arn": f"arn:{partition}:iam::{account}:role{path}{name}",
                "unique_id": previous.get("unique_id") or f"AROA{_token(address, name, length=17).upper()}",
            })

        elif resource_type == IAM_ROLE_POLICY_ATTACHMENT:
            outputs["id"] = f"{fields['role']}-{_token(fields['policy_arn'], length=8)}"

        elif resource_type == CLOUDWATCH_LOG_GROUP:
            name = fields["name"]
            outputs.update({
                "id": name,
                "arn": f"arn:{partition}:logs:{region}:{account}:log-group:{name}",
            })

        elif resource_type == RDS_CLUSTER_ROLE_ASSOCIATION:
            outputs["id"] = f"{fields['db_cluster_identifier']},{fields['role_arn']}"

        else:
            raise ValueError(f"Unsupported resource type: {resource_type}")

        return outputs
