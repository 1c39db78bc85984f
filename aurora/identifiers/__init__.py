"""
Identifier Deriver
Deterministic and keeper-stable resource names
"""

from .functions import (
    IdentifierPolicy,
    derive_identifier,
    derive_snapshot_identifier,
    derive_suffix,
    random_suffix_spec,
)

__all__ = [
    "IdentifierPolicy",
    "derive_identifier",
    "derive_snapshot_identifier",
    "derive_suffix",
    "random_suffix_spec",
]
