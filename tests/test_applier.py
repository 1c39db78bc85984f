"""
Unit tests for the convergence applier
Ordering, diffs, partial failure, timeouts, retries, cancellation and orphan deletion
"""

import threading
import time
import unittest
import sys
import os

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from aurora import (
    ClusterConfig,
    ConfigurationError,
    IamRoleAssociation,
    OperationTimeout,
    TransientDriverError,
    build_plan,
)
from aurora.applier import (
    BLOCKED,
    CANCELLED,
    CREATE,
    DELETE,
    FAILED,
    NOOP,
    OK,
    TIMEOUT,
    UPDATE,
    InMemoryDriver,
    SimulatedApplier,
    State,
    diff_fields,
    parse_duration,
)
from aurora.references import resolve_plan
from aurora.types import IAM_ROLE, PlannedResources, ResourceSpec


def make_plan(**overrides):
    values = {
        "cluster_identifier": "db1",
        "skip_final_snapshot": True,
        "master_username": "postgres",
        "enabled_cloudwatch_logs_exports": ("error",),
        "create_cloudwatch_log_group": True,
        "iam_roles": {"s3": IamRoleAssociation("arn:aws:iam::123456789012:role/s3", "s3Import")},
    }
    values.update(overrides)
    return build_plan(ClusterConfig(**values))


class CancellingDriver(InMemoryDriver):
    """Sets the cancel event while the given address is being created"""

    def __init__(self, event, address, **kwargs):
        super().__init__(**kwargs)
        self.event = event
        self.address = address

    def create(self, resource_type, address, fields):
        if address == self.address:
            self.event.set()
        return super().create(resource_type, address, fields)


class TestConvergence(unittest.TestCase):
    """Test create, no-op and update decisions"""

    def setUp(self):
        self.driver = InMemoryDriver()
        self.applier = SimulatedApplier(self.driver, initial_delay=0.01)
        self.state = State()

    def test_first_apply_creates_everything(self):
        """Test that an empty state creates every planned resource"""
        plan = make_plan()
        report = self.applier.apply(plan, self.state)

        self.assertTrue(report.succeeded)
        self.assertEqual(sorted(self.state.addresses()), sorted(plan.addresses()))
        for result in report.results.values():
            self.assertEqual(result.action, CREATE)
            self.assertEqual(result.status, OK)

    def test_outputs_are_bound(self):
        """Test that module outputs carry applied values"""
        report = self.applier.apply(make_plan(), self.state)

        self.assertEqual(report.outputs["cluster_identifier"], "db1")
        self.assertTrue(report.outputs["cluster_endpoint"].startswith("db1.cluster-"))
        self.assertEqual(report.outputs["cluster_port"], 5432)
        self.assertEqual(
            report.outputs["db_cluster_cloudwatch_log_groups"]["error"]["name"],
            "/aws/rds/cluster/db1/error",
        )
        self.assertEqual(
            report.outputs["enhanced_monitoring_iam_role_arn"],
            "arn:aws:iam::000000000000:role/db1-monitoring",
        )

    def test_producers_applied_before_consumers(self):
        """Test that every consumer is created after its producers"""
        self.applier.apply(make_plan(), self.state)

        calls = self.driver.calls
        self.assertLess(calls.index(("create", "log_group[error]")), calls.index(("create", "cluster")))
        self.assertLess(calls.index(("create", "cluster")), calls.index(("create", "role_association[s3]")))
        self.assertLess(
            calls.index(("create", "monitoring_role")),
            calls.index(("create", "monitoring_role_policy")),
        )
        self.assertEqual(
            self.state.get("role_association[s3]").fields["db_cluster_identifier"],
            "db1",
        )

    def test_cluster_receives_monitoring_role_arn(self):
        """Test that enhanced monitoring wires the created role into the cluster"""
        self.applier.apply(make_plan(monitoring_interval=60), self.state)

        cluster = self.state.get("cluster").fields
        self.assertEqual(cluster["monitoring_interval"], 60)
        self.assertEqual(cluster["monitoring_role_arn"], "arn:aws:iam::000000000000:role/db1-monitoring")
        calls = self.driver.calls
        self.assertLess(calls.index(("create", "monitoring_role")), calls.index(("create", "cluster")))

    def test_second_apply_is_noop(self):
        """Test that re-applying an unchanged plan touches nothing"""
        self.applier.apply(make_plan(), self.state)
        calls = len(self.driver.calls)

        report = self.applier.apply(make_plan(), self.state)

        self.assertTrue(report.succeeded)
        self.assertEqual(len(self.driver.calls), calls)
        self.assertEqual({result.action for result in report.results.values()}, {NOOP})

    def test_drift_on_ignored_field_is_not_updated(self):
        """Test that out-of-band changes to ignored fields produce no diff"""
        self.applier.apply(make_plan(), self.state)
        self.state.get("cluster").fields["global_cluster_identifier"] = "global-1"
        self.state.get("cluster").fields["snapshot_identifier"] = "snap-1"

        report = self.applier.apply(make_plan(), self.state)

        self.assertEqual(report.results["cluster"].action, NOOP)
        self.assertNotIn(("update", "cluster"), self.driver.calls)

    def test_update_keeps_ignored_live_values(self):
        """Test that an update only changes non-ignored fields"""
        self.applier.apply(make_plan(), self.state)
        self.state.get("cluster").fields["global_cluster_identifier"] = "global-1"

        report = self.applier.apply(make_plan(backup_retention_period=14), self.state)

        result = report.results["cluster"]
        self.assertEqual(result.action, UPDATE)
        self.assertEqual(result.changed_fields, ("backup_retention_period",))
        self.assertEqual(self.state.get("cluster").fields["backup_retention_period"], 14)
        self.assertEqual(self.state.get("cluster").fields["global_cluster_identifier"], "global-1")


class TestFailures(unittest.TestCase):
    """Test partial failure, timeouts and retries"""

    def test_failure_blocks_dependents_only(self):
        """Test that dependents of a failed cluster are blocked while the role converges"""
        driver = InMemoryDriver(failures={"cluster": RuntimeError("InvalidParameterCombination")})
        state = State()

        report = SimulatedApplier(driver).apply(make_plan(), state)

        self.assertFalse(report.succeeded)
        self.assertEqual(report.failed, ["cluster"])
        self.assertEqual(report.results["cluster"].status, FAILED)
        self.assertIn("InvalidParameterCombination", str(report.results["cluster"].error))
        self.assertEqual(report.blocked, ["role_association[s3]"])
        self.assertEqual(report.results["monitoring_role"].status, OK)
        self.assertEqual(report.results["monitoring_role_policy"].status, OK)
        self.assertIn("monitoring_role_policy", state)
        self.assertNotIn("cluster", state)
        self.assertIn("log_group[error]", state)
        self.assertNotIn(("create", "role_association[s3]"), driver.calls)

    def test_timeout(self):
        """Test that a slow create past its deadline is reported as a timeout"""
        driver = InMemoryDriver(delays={"cluster": 0.5})
        report = SimulatedApplier(driver).apply(
            make_plan(cluster_timeouts={"create": "50ms"}), State()
        )

        result = report.results["cluster"]
        self.assertEqual(result.status, TIMEOUT)
        self.assertIsInstance(result.error, OperationTimeout)
        self.assertAlmostEqual(result.error.timeout_seconds, 0.05)
        self.assertIn("cluster", report.failed)
        self.assertEqual(report.results["role_association[s3]"].status, BLOCKED)
        self.assertEqual(report.results["monitoring_role"].status, OK)

    def test_timeout_starts_when_the_job_runs(self):
        """Test that time spent queued for a worker does not count against a timeout"""
        plan = resolve_plan(PlannedResources(
            name="t",
            resources=tuple(
                ResourceSpec(kind, IAM_ROLE, fields={"name": kind}, timeouts={"create": "0.5s"})
                for kind in ("r1", "r2")
            ),
            known_kinds=frozenset({"r1", "r2"}),
        ))
        driver = InMemoryDriver(delays={"r1": 0.3, "r2": 0.3})

        report = SimulatedApplier(driver, max_workers=1).apply(plan, State())

        self.assertTrue(report.succeeded)
        self.assertEqual(report.results["r1"].status, OK)
        self.assertEqual(report.results["r2"].status, OK)

    def test_late_completion_is_kept_in_state(self):
        """Test that a create finishing after its timeout is not created twice"""
        driver = InMemoryDriver(delays={"cluster": 0.3})
        applier = SimulatedApplier(driver)
        state = State()

        report = applier.apply(make_plan(cluster_timeouts={"create": "50ms"}), state)
        self.assertEqual(report.results["cluster"].status, TIMEOUT)

        deadline = time.monotonic() + 2
        while "cluster" not in state and time.monotonic() < deadline:
            time.sleep(0.02)
        self.assertIn("cluster", state)

        driver.delays.clear()
        report = applier.apply(make_plan(cluster_timeouts={"create": "50ms"}), state)

        self.assertTrue(report.succeeded)
        self.assertEqual(report.results["cluster"].action, NOOP)
        self.assertEqual(driver.calls.count(("create", "cluster")), 1)
        self.assertIn("role_association[s3]", state)

    def test_create_is_not_retried(self):
        """Test that a transient error on create fails immediately"""
        driver = InMemoryDriver(failures={"cluster": [TransientDriverError("Throttling")]})
        report = SimulatedApplier(driver, initial_delay=0.01).apply(make_plan(), State())

        self.assertEqual(report.results["cluster"].status, FAILED)
        self.assertEqual(driver.calls.count(("create", "cluster")), 1)

    def test_update_retries_transient_errors(self):
        """Test that a transient error on update is retried with backoff"""
        driver = InMemoryDriver()
        applier = SimulatedApplier(driver, initial_delay=0.01)
        state = State()
        applier.apply(make_plan(), state)

        driver.failures["cluster"] = [TransientDriverError("Throttling")]
        report = applier.apply(make_plan(backup_retention_period=14), state)

        self.assertEqual(report.results["cluster"].status, OK)
        self.assertEqual(driver.calls.count(("update", "cluster")), 2)

    def test_update_gives_up_after_retries(self):
        driver = InMemoryDriver()
        applier = SimulatedApplier(driver, max_retries=1, initial_delay=0.01)
        state = State()
        applier.apply(make_plan(), state)

        driver.failures["cluster"] = TransientDriverError("Throttling")
        report = applier.apply(make_plan(backup_retention_period=14), state)

        self.assertEqual(report.results["cluster"].status, FAILED)
        self.assertEqual(driver.calls.count(("update", "cluster")), 2)
        self.assertEqual(state.get("cluster").fields["backup_retention_period"], 7)


class TestCancellation(unittest.TestCase):

    def test_cancel_stops_new_work(self):
        """Test that cancelling keeps finished work and reports where it stopped"""
        event = threading.Event()
        driver = CancellingDriver(event, "cluster")
        state = State()

        report = SimulatedApplier(driver).apply(make_plan(), state, cancel_event=event)

        self.assertTrue(report.cancelled)
        self.assertFalse(report.succeeded)
        self.assertEqual(report.stopped_at, "role_association[s3]")
        for address in ("monitoring_role", "log_group[error]", "cluster", "monitoring_role_policy"):
            self.assertIn(address, state)
        self.assertNotIn("role_association[s3]", state)
        self.assertEqual(report.results["role_association[s3]"].status, CANCELLED)
        self.assertNotIn("delete", [operation for operation, _ in driver.calls])


class TestOrphans(unittest.TestCase):

    def test_orphans_deleted_consumers_first(self):
        """Test that resources dropped from the plan are deleted in reverse dependency order"""
        driver = InMemoryDriver()
        applier = SimulatedApplier(driver)
        state = State()
        applier.apply(make_plan(), state)

        report = applier.apply(
            make_plan(create_monitoring_role=False, monitoring_role_arn="arn:aws:iam::123456789012:role/x"),
            state,
        )

        self.assertTrue(report.succeeded)
        self.assertEqual(report.results["monitoring_role"].action, DELETE)
        self.assertLess(
            driver.calls.index(("delete", "monitoring_role_policy")),
            driver.calls.index(("delete", "monitoring_role")),
        )
        self.assertNotIn("monitoring_role", state)
        self.assertEqual(report.outputs["enhanced_monitoring_iam_role_arn"], "arn:aws:iam::123456789012:role/x")

    def test_disabling_module_deletes_everything(self):
        driver = InMemoryDriver()
        applier = SimulatedApplier(driver)
        state = State()
        applier.apply(make_plan(), state)

        report = applier.apply(make_plan(create=False), state)

        self.assertTrue(report.succeeded)
        self.assertEqual(len(state), 0)
        calls = driver.calls
        self.assertLess(calls.index(("delete", "role_association[s3]")), calls.index(("delete", "cluster")))
        self.assertLess(calls.index(("delete", "cluster")), calls.index(("delete", "log_group[error]")))


class TestHelpers(unittest.TestCase):

    def test_parse_duration(self):
        self.assertEqual(parse_duration("120m"), 7200)
        self.assertEqual(parse_duration("1h30m"), 5400)
        self.assertEqual(parse_duration("90s"), 90)
        self.assertEqual(parse_duration("250ms"), 0.25)
        self.assertEqual(parse_duration(30), 30)

    def test_parse_duration_rejects_garbage(self):
        for value in ("", "soon", "10 minutes", "5d"):
            with self.assertRaises(ConfigurationError):
                parse_duration(value)

    def test_diff_fields_ignores(self):
        desired = {"a": 1, "b": 2}
        live = {"a": 1, "b": 3, "c": 4}

        self.assertEqual(diff_fields(desired, live), ["b", "c"])
        self.assertEqual(diff_fields(desired, live, ignore={"b", "c"}), [])


if __name__ == "__main__":
    unittest.main()
