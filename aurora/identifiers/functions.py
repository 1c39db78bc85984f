"""
Identifier Deriver Functions
Exact names, prefix-plus-suffix names and final snapshot identifiers
"""

import base64
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from ..errors import ConfigurationError
from ..types import RANDOM_ID, Format, Ref, ResourceSpec


SEPARATOR = "-"
SUFFIX_BYTE_LENGTH = 4


@dataclass(frozen=True)
class IdentifierPolicy:
    """Either an exact name or a prefix, never both"""

    name: Optional[str] = None
    prefix: Optional[str] = None

    def validate(self, field: str) -> None:
        if self.name and self.prefix:
            raise ConfigurationError(f"{field}_prefix", f"cannot be combined with {field}")
        if not self.name and not self.prefix:
            raise ConfigurationError(field, f"{field} or {field}_prefix is required")


def random_suffix_spec(kind: str, keepers: Mapping[str, Any],
                       byte_length: int = SUFFIX_BYTE_LENGTH) -> ResourceSpec:
    """
    Plan a random-id resource whose value only changes with its keepers

    Args:
        kind: Plan kind of the suffix resource
        keepers: Values whose change forces a new suffix
        byte_length: Random bytes, the hex output is twice as long

    Returns:
        ResourceSpec for the random id
    """
    return ResourceSpec(
        kind=kind,
        type=RANDOM_ID,
        fields={
            "byte_length": byte_length,
            "keepers": dict(keepers),
        },
    )


def derive_identifier(policy: IdentifierPolicy, base: str, suffix_kind: str,
                      field: str = "name") -> Tuple[Any, Optional[ResourceSpec]]:
    """
    Derive a resource name from its naming policy

    Exact policy returns the name unchanged. Prefix policy returns
    ``prefix-base-suffix`` with the suffix taken from a planned random id
    keyed on the prefix and base.

    Args:
        policy: Naming policy
        base: Base identifier placed between prefix and suffix
        suffix_kind: Plan kind for the suffix resource
        field: Option name reported on configuration errors

    Returns:
        Tuple of (identifier value, suffix ResourceSpec or None)
    """
    policy.validate(field)

    if policy.name:
        return policy.name, None

    suffix = random_suffix_spec(suffix_kind, {"prefix": policy.prefix, "base": base})
    identifier = Format.of(policy.prefix, SEPARATOR, base, SEPARATOR, Ref(suffix.address, "hex"))
    return identifier, suffix


def derive_snapshot_identifier(prefix: str, cluster_identifier: Any, skip_final_snapshot: bool,
                               suffix_kind: str = "snapshot_identifier_suffix") -> Tuple[Optional[Format], Optional[ResourceSpec]]:
    """
    Derive the final snapshot identifier taken before the cluster is destroyed

    Args:
        prefix: Final snapshot prefix
        cluster_identifier: Cluster identifier, also the suffix keeper
        skip_final_snapshot: When true no identifier exists at all
        suffix_kind: Plan kind for the suffix resource

    Returns:
        Tuple of (identifier or None, suffix ResourceSpec or None)
    """
    if skip_final_snapshot:
        return None, None

    suffix = random_suffix_spec(suffix_kind, {"id": cluster_identifier})
    identifier = Format.of(prefix, SEPARATOR, cluster_identifier, SEPARATOR, Ref(suffix.address, "hex"))
    return identifier, suffix


def derive_suffix(keepers: Mapping[str, Any], byte_length: int = SUFFIX_BYTE_LENGTH,
                  previous: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """
    Generate a random suffix, reusing the previous one while keepers are unchanged

    Args:
        keepers: Current keeper values
        byte_length: Random bytes to draw
        previous: Outputs of the last generation, if any

    Returns:
        Dict with hex, b64_url, dec, keepers and byte_length
    """
    keepers = dict(keepers)
    if (previous is not None and previous.get("hex")
            and dict(previous.get("keepers") or {}) == keepers
            and previous.get("byte_length") == byte_length):
        return dict(previous)

    raw = secrets.token_bytes(byte_length)
    return {
        "id": base64.urlsafe_b64encode(raw).rstrip(b"=").decode(),
        "hex": raw.hex(),
        "b64_url": base64.urlsafe_b64encode(raw).rstrip(b"=").decode(),
        "dec": str(int.from_bytes(raw, "big")),
        "keepers": keepers,
        "byte_length": byte_length,
    }
