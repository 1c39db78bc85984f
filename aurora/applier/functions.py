"""
Convergence Applier Functions
Diffs a resolved plan against last-known state and converges it through a driver
"""

import functools
import re
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pulumi

from ..errors import ApplyError, ConfigurationError, OperationTimeout, TransientDriverError
from ..references import bind, substitute, topological_order
from ..types import DependencyEdge, Plan, ResourceSpec
from .drivers import ResourceDriver


CREATE = "create"
UPDATE = "update"
DELETE = "delete"
NOOP = "noop"

OK = "ok"
FAILED = "failed"
TIMEOUT = "timeout"
BLOCKED = "blocked"
CANCELLED = "cancelled"

DEFAULT_TIMEOUT = "30m"

_DURATION = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600}


def parse_duration(value: Any) -> float:
    """
    Convert a timeout such as ``"90s"``, ``"120m"`` or ``"1h30m"`` to seconds

    Raises:
        ConfigurationError: when the value is not a duration
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    text = str(value).strip()
    matches = _DURATION.findall(text)
    if not text or "".join(number + unit for number, unit in matches) != text:
        raise ConfigurationError("timeouts", f"invalid duration {value!r}")
    return sum(float(number) * _UNITS[unit] for number, unit in matches)


def retry_with_backoff(func: Callable[[], Any], max_retries: int = 3, initial_delay: float = 1.0,
                       retry_on: Tuple[type, ...] = (TransientDriverError,), label: str = "operation") -> Any:
    """
    Retry a function with exponential backoff

    Args:
        func: Function to retry
        max_retries: Maximum number of retries
        initial_delay: Initial delay in seconds
        retry_on: Exception types considered transient
        label: Name used in log messages

    Returns:
        Result of the function call

    Raises:
        Exception: Last exception if all retries fail, or any non-transient exception
    """
    delay = initial_delay

    for attempt in range(max_retries + 1):
        try:
            return func()
        except retry_on as e:
            if attempt >= max_retries:
                pulumi.log.error(f"{label}: all {max_retries + 1} attempts failed")
                raise
            pulumi.log.warn(f"{label}: attempt {attempt + 1} failed, retrying in {delay}s: {e}")
            time.sleep(delay)
            delay *= 2


def diff_fields(desired: Mapping[str, Any], live: Mapping[str, Any],
                ignore: Iterable[str] = ()) -> List[str]:
    """Names of fields whose desired value differs from live state, minus the ignore set"""
    ignore = set(ignore)
    names = set(desired) | set(live)
    return sorted(name for name in names if name not in ignore and desired.get(name) != live.get(name))


@dataclass
class ResourceState:
    """Last-known live state of one resource"""

    address: str
    type: str
    fields: Dict[str, Any]
    outputs: Dict[str, Any]
    depends_on: Tuple[str, ...] = ()
    timeouts: Dict[str, str] = field(default_factory=dict)


class State:
    """Address-keyed store of live resources, owned by the caller between runs"""

    def __init__(self, resources: Optional[Iterable[ResourceState]] = None):
        self._resources: Dict[str, ResourceState] = {}
        self._lock = threading.Lock()
        for resource in resources or ():
            self.put(resource)

    def get(self, address: str) -> Optional[ResourceState]:
        with self._lock:
            return self._resources.get(address)

    def put(self, resource: ResourceState) -> None:
        with self._lock:
            self._resources[resource.address] = resource

    def remove(self, address: str) -> None:
        with self._lock:
            self._resources.pop(address, None)

    def addresses(self) -> List[str]:
        with self._lock:
            return list(self._resources)

    def __contains__(self, address: str) -> bool:
        return address in self._resources

    def __len__(self) -> int:
        return len(self._resources)


@dataclass
class ResourceResult:
    address: str
    action: str
    status: str
    error: Optional[Exception] = None
    changed_fields: Tuple[str, ...] = ()


@dataclass
class ApplyReport:
    """Per-resource outcome of one convergence run"""

    results: Dict[str, ResourceResult] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    cancelled: bool = False
    stopped_at: Optional[str] = None

    def record(self, result: ResourceResult) -> None:
        self.results[result.address] = result

    def with_status(self, *statuses: str) -> List[str]:
        return [address for address, result in self.results.items() if result.status in statuses]

    @property
    def failed(self) -> List[str]:
        return self.with_status(FAILED, TIMEOUT)

    @property
    def blocked(self) -> List[str]:
        return self.with_status(BLOCKED)

    @property
    def succeeded(self) -> bool:
        return not self.cancelled and not self.with_status(FAILED, TIMEOUT, BLOCKED, CANCELLED)


class _TimedJob:
    """Records when a submitted call actually starts running"""

    def __init__(self, call: Callable[[], Any]):
        self.call = call
        self.started = threading.Event()
        self.started_at = 0.0

    def run(self) -> Any:
        self.started_at = time.monotonic()
        self.started.set()
        return self.call()


def _finish_late(address: str, on_late: Callable[[str, Any], None], future: Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        pulumi.log.warn(f"{address} failed after its timeout: {error}")
        return
    pulumi.log.warn(f"{address} finished after its timeout; recording it in state")
    on_late(address, future.result())


class ConvergenceApplier(ABC):
    """Applies a resolved plan to a live system"""

    @abstractmethod
    def apply(self, plan: Plan, state: State,
              cancel_event: Optional[threading.Event] = None) -> ApplyReport:
        """Converge ``state`` toward ``plan`` and report per-resource outcomes"""


class SimulatedApplier(ConvergenceApplier):
    """
    Reference applier driving a ResourceDriver

    Independent resources run in parallel wave by wave; dependents of a failed
    resource are blocked while unrelated resources carry on. Creates are never
    retried; updates and deletes are retried on transient driver errors.
    """

    def __init__(self, driver: ResourceDriver, max_workers: int = 4, max_retries: int = 2,
                 initial_delay: float = 0.5, default_timeout: str = DEFAULT_TIMEOUT):
        self.driver = driver
        self.max_workers = max_workers
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.default_timeout = default_timeout

    def _timeout(self, timeouts: Mapping[str, str], operation: str) -> float:
        return parse_duration(timeouts.get(operation) or self.default_timeout)

    def _operation(self, action: str, resource_type: str, address: str,
                   fields: Mapping[str, Any], live: Optional[ResourceState]) -> Callable[[], Any]:
        label = f"{action} {address}"
        if action == CREATE:
            return lambda: self.driver.create(resource_type, address, fields)
        if action == UPDATE:
            return lambda: retry_with_backoff(
                lambda: self.driver.update(resource_type, address, fields, live.outputs),
                self.max_retries, self.initial_delay, label=label,
            )
        return lambda: retry_with_backoff(
            lambda: self.driver.delete(resource_type, address, live.outputs),
            self.max_retries, self.initial_delay, label=label,
        )

    def _await(self, executor: ThreadPoolExecutor,
               jobs: Sequence[Tuple[str, str, Callable[[], Any], float]],
               on_late: Optional[Callable[[str, Any], None]] = None) -> Dict[str, Tuple[str, Any]]:
        """
        Run jobs concurrently, each against its own deadline

        A job's deadline starts when a worker picks it up, so time spent queued
        behind other jobs does not count. A job that times out keeps running;
        if it later succeeds, ``on_late`` receives its address and result.
        """
        submitted = []
        for address, action, call, timeout in jobs:
            job = _TimedJob(call)
            submitted.append((address, action, executor.submit(job.run), timeout, job))

        outcomes: Dict[str, Tuple[str, Any]] = {}
        for address, action, future, timeout, job in submitted:
            job.started.wait()
            remaining = max(0.0, job.started_at + timeout - time.monotonic())
            try:
                outcomes[address] = (OK, future.result(timeout=remaining))
            except FutureTimeoutError:
                outcomes[address] = (TIMEOUT, OperationTimeout(address, action, timeout))
                if on_late is not None:
                    future.add_done_callback(functools.partial(_finish_late, address, on_late))
            except ApplyError as e:
                outcomes[address] = (FAILED, e)
            except Exception as e:
                outcomes[address] = (FAILED, ApplyError(address, action, str(e)))
        return outcomes

    def apply(self, plan: Plan, state: State,
              cancel_event: Optional[threading.Event] = None) -> ApplyReport:
        """
        Converge state toward the plan

        Args:
            plan: Resolved plan
            state: Last-known live state, updated in place as resources converge
            cancel_event: When set, no new wave starts; finished work is kept

        Returns:
            ApplyReport with one result per touched address
        """
        report = ApplyReport()
        outputs: Dict[str, Dict[str, Any]] = {}
        pending = list(plan.order)
        needs = {address: plan.dependencies(address) for address in pending}
        executor = ThreadPoolExecutor(max_workers=self.max_workers)

        try:
            while pending:
                if cancel_event is not None and cancel_event.is_set():
                    self._cancel(report, pending)
                    break

                wave, blocked = [], []
                for address in pending:
                    failed = [dep for dep in needs[address]
                              if dep in report.results and report.results[dep].status != OK]
                    if failed:
                        blocked.append((address, failed[0]))
                    elif all(dep in report.results for dep in needs[address]):
                        wave.append(address)

                for address, dependency in blocked:
                    pulumi.log.warn(f"Skipping {address}: dependency {dependency} did not converge")
                    report.record(ResourceResult(
                        address, NOOP, BLOCKED,
                        ApplyError(address, "apply", f"dependency {dependency} did not converge"),
                    ))
                started = {address for address, _ in blocked} | set(wave)
                pending = [address for address in pending if address not in started]

                self._converge_wave(executor, plan, state, [plan.get(address) for address in wave], outputs, report)

            if not report.cancelled:
                self._delete_orphans(executor, plan, state, report)
        finally:
            executor.shutdown(wait=False)

        report.outputs = substitute(
            dict(plan.outputs), lambda ref: outputs.get(ref.address, {}).get(ref.attribute)
        )
        return report

    def _cancel(self, report: ApplyReport, pending: List[str]) -> None:
        report.cancelled = True
        report.stopped_at = pending[0]
        pulumi.log.warn(f"Apply cancelled before {pending[0]}; {len(pending)} resources not started")
        for address in pending:
            report.record(ResourceResult(address, NOOP, CANCELLED))

    def _converge_wave(self, executor: ThreadPoolExecutor, plan: Plan, state: State,
                       specs: List[ResourceSpec], outputs: Dict[str, Dict[str, Any]],
                       report: ApplyReport) -> None:
        jobs = []
        planned: Dict[str, Tuple[ResourceSpec, Dict[str, Any], Tuple[str, ...], str]] = {}

        for spec in specs:
            live = state.get(spec.address)
            desired = bind(dict(spec.fields), outputs)

            if live is None:
                action, changed = CREATE, tuple(sorted(desired))
            else:
                changed = tuple(diff_fields(desired, live.fields, spec.ignore_changes))
                if not changed:
                    outputs[spec.address] = live.outputs
                    report.record(ResourceResult(spec.address, NOOP, OK))
                    continue
                action = UPDATE
                # Ignored fields keep their live value
                desired.update({name: live.fields[name] for name in spec.ignore_changes if name in live.fields})

            pulumi.log.info(f"{action.capitalize()} {spec.address}")
            planned[spec.address] = (spec, desired, changed, action)
            jobs.append((
                spec.address, action,
                self._operation(action, spec.type, spec.address, desired, live),
                self._timeout(spec.timeouts, action),
            ))

        def store(address: str, result: Dict[str, Any]) -> None:
            spec, desired, _, _ = planned[address]
            state.put(ResourceState(
                address=address,
                type=spec.type,
                fields=desired,
                outputs=result,
                depends_on=tuple(plan.dependencies(address)),
                timeouts=dict(spec.timeouts),
            ))

        for address, (status, result) in self._await(executor, jobs, on_late=store).items():
            spec, desired, changed, action = planned[address]
            if status != OK:
                pulumi.log.error(str(result))
                report.record(ResourceResult(address, action, status, result, changed))
                continue
            outputs[address] = result
            store(address, result)
            report.record(ResourceResult(address, action, OK, None, changed))

    def _delete_orphans(self, executor: ThreadPoolExecutor, plan: Plan, state: State,
                        report: ApplyReport) -> None:
        """Delete resources no longer planned, consumers before producers"""
        planned = set(plan.addresses())
        orphans = [address for address in state.addresses() if address not in planned]
        if not orphans:
            return

        edges = [
            DependencyEdge(address, producer)
            for address in orphans
            for producer in state.get(address).depends_on
            if producer in orphans
        ]
        for address in reversed(topological_order(orphans, edges)):
            consumers = [edge.consumer for edge in edges if edge.producer == address]
            stuck = [consumer for consumer in consumers if consumer in state]
            if stuck:
                report.record(ResourceResult(
                    address, DELETE, BLOCKED,
                    ApplyError(address, DELETE, f"consumer {stuck[0]} was not deleted"),
                ))
                continue

            live = state.get(address)
            pulumi.log.info(f"Delete {address}")
            job = (address, DELETE, self._operation(DELETE, live.type, address, {}, live),
                   self._timeout(live.timeouts, DELETE))
            status, result = self._await(
                executor, [job], on_late=lambda done, _: state.remove(done)
            )[address]
            if status != OK:
                pulumi.log.error(str(result))
                report.record(ResourceResult(address, DELETE, status, result))
                continue
            state.remove(address)
            report.record(ResourceResult(address, DELETE, OK))
