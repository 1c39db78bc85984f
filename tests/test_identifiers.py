"""
Unit tests for identifier derivation
Naming policies, final snapshot identifiers and keeper-stable suffixes
"""

import re
import unittest
import sys
import os

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from aurora import ClusterConfig, ConfigurationError, Format, Ref, build_plan
from aurora.applier import InMemoryDriver, SimulatedApplier, State
from aurora.identifiers import (
    IdentifierPolicy,
    derive_identifier,
    derive_snapshot_identifier,
    derive_suffix,
)
from aurora.types import RANDOM_ID

HEX_SUFFIX = re.compile(r"^[0-9a-f]{8}$")


class TestNamingPolicy(unittest.TestCase):
    """Test exact vs prefix naming"""

    def test_exact_name_is_unchanged(self):
        """Test that an exact name needs no suffix"""
        name, suffix = derive_identifier(IdentifierPolicy(name="db1"), "db1", "cluster_identifier_suffix")

        self.assertEqual(name, "db1")
        self.assertIsNone(suffix)

    def test_prefix_plans_random_suffix(self):
        """Test prefix-base-suffix with the suffix as a random id"""
        name, suffix = derive_identifier(
            IdentifierPolicy(prefix="prod"), "orders", "cluster_identifier_suffix"
        )

        self.assertEqual(name, Format.of("prod", "-", "orders", "-", Ref("cluster_identifier_suffix", "hex")))
        self.assertEqual(suffix.type, RANDOM_ID)
        self.assertEqual(suffix.fields["keepers"], {"prefix": "prod", "base": "orders"})
        self.assertEqual(suffix.fields["byte_length"], 4)

    def test_name_and_prefix_conflict(self):
        """Test that setting both reports the prefix field"""
        with self.assertRaises(ConfigurationError) as ctx:
            derive_identifier(IdentifierPolicy(name="a", prefix="b"), "a", "suffix", field="iam_role_name")
        self.assertEqual(ctx.exception.field, "iam_role_name_prefix")

    def test_neither_name_nor_prefix(self):
        with self.assertRaises(ConfigurationError) as ctx:
            IdentifierPolicy().validate("cluster_identifier")
        self.assertEqual(ctx.exception.field, "cluster_identifier")


class TestSnapshotIdentifier(unittest.TestCase):
    """Test final snapshot identifier derivation"""

    def test_skip_final_snapshot(self):
        """Test that skipping yields no identifier and no suffix"""
        self.assertEqual(derive_snapshot_identifier("final", "db1", True), (None, None))

    def test_identifier_keyed_on_cluster(self):
        """Test prefix-cluster-suffix with the cluster identifier as keeper"""
        identifier, suffix = derive_snapshot_identifier("final", "db1", False)

        self.assertEqual(identifier, Format.of("final", "-", "db1", "-", Ref("snapshot_identifier_suffix", "hex")))
        self.assertEqual(suffix.fields["keepers"], {"id": "db1"})


class TestSuffix(unittest.TestCase):
    """Test keeper-stable random suffixes"""

    def test_suffix_format(self):
        """Test 4 random bytes rendered as 8 lowercase hex characters"""
        suffix = derive_suffix({"id": "db1"})

        self.assertRegex(suffix["hex"], HEX_SUFFIX)
        self.assertEqual(suffix["keepers"], {"id": "db1"})
        self.assertEqual(int(suffix["dec"]), int(suffix["hex"], 16))

    def test_suffix_stable_while_keepers_unchanged(self):
        """Test that unchanged keepers reuse the previous suffix"""
        first = derive_suffix({"id": "db1"})
        second = derive_suffix({"id": "db1"}, previous=first)

        self.assertEqual(second["hex"], first["hex"])

    def test_suffix_changes_with_keepers(self):
        """Test that a changed keeper draws a new suffix"""
        first = derive_suffix({"id": "db1"})
        second = derive_suffix({"id": "db2"}, previous=first)

        self.assertEqual(second["keepers"], {"id": "db2"})
        self.assertNotEqual(second["hex"], first["hex"])

    def test_suffix_changes_with_byte_length(self):
        first = derive_suffix({"id": "db1"})
        second = derive_suffix({"id": "db1"}, byte_length=8, previous=first)

        self.assertEqual(len(second["hex"]), 16)


class TestFinalSnapshotAcrossRuns(unittest.TestCase):
    """Test the final snapshot identifier through repeated plans and applies"""

    def plan(self, cluster_identifier):
        return build_plan(ClusterConfig(
            cluster_identifier=cluster_identifier,
            final_snapshot_identifier_prefix="final",
            create_monitoring_role=False,
        ))

    def final_snapshot_identifier(self, state):
        return state.get("cluster").fields["final_snapshot_identifier"]

    def test_identifier_stable_across_runs(self):
        """Test that two plans of the same config keep the same identifier"""
        state = State()
        applier = SimulatedApplier(InMemoryDriver())

        self.assertTrue(applier.apply(self.plan("db1"), state).succeeded)
        first = self.final_snapshot_identifier(state)
        self.assertRegex(first, r"^final-db1-[0-9a-f]{8}$")

        report = applier.apply(self.plan("db1"), state)
        self.assertTrue(report.succeeded)
        self.assertEqual(self.final_snapshot_identifier(state), first)
        self.assertEqual(report.outputs["cluster_final_snapshot_identifier"], first)

    def test_identifier_changes_with_cluster_identifier(self):
        """Test that renaming the cluster regenerates the suffix"""
        state = State()
        applier = SimulatedApplier(InMemoryDriver())

        applier.apply(self.plan("db1"), state)
        first = self.final_snapshot_identifier(state)

        report = applier.apply(self.plan("db2"), state)
        second = self.final_snapshot_identifier(state)

        self.assertTrue(report.succeeded)
        self.assertRegex(second, r"^final-db2-[0-9a-f]{8}$")
        self.assertNotEqual(second.rsplit("-", 1)[1], first.rsplit("-", 1)[1])


if __name__ == "__main__":
    unittest.main()
