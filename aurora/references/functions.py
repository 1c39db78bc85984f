"""
Reference Resolver Functions
Builds the dependency graph, orders it and degrades references to suppressed resources
"""

from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import pulumi

from ..errors import ResolutionError
from ..types import DependencyEdge, Format, Plan, PlannedResources, Ref, ResourceSpec, address_kind, iter_refs


# Value a reference to an unscheduled resource resolves to
SUPPRESSED = ""


def _join(parts: Sequence[Any]) -> str:
    return "".join("" if part is None else str(part) for part in parts)


def substitute(value: Any, on_ref: Callable[[Ref], Any],
               join: Optional[Callable[[Sequence[Any]], Any]] = None) -> Any:
    """
    Rebuild a field value with every deferred handle replaced

    Args:
        value: Field value, possibly nested
        on_ref: Called for each Ref, returns its replacement
        join: Combines the parts of a Format once none of them is a Ref

    Returns:
        The rebuilt value
    """
    join = join or _join
    if isinstance(value, Ref):
        return on_ref(value)
    if isinstance(value, Format):
        parts = tuple(substitute(part, on_ref, join) for part in value.parts)
        if any(isinstance(part, (Ref, Format)) for part in parts):
            return Format(parts)
        return join(parts)
    if isinstance(value, Mapping):
        return {key: substitute(item, on_ref, join) for key, item in value.items()}
    if isinstance(value, list):
        return [substitute(item, on_ref, join) for item in value]
    if isinstance(value, tuple):
        return tuple(substitute(item, on_ref, join) for item in value)
    return value


def dependency_edges(resources: Sequence[ResourceSpec]) -> List[DependencyEdge]:
    """
    One edge per distinct (consumer, producer) pair among scheduled resources

    Producers come from references first, then from explicit ``depends_on``.
    """
    scheduled = {spec.address for spec in resources}
    edges: List[DependencyEdge] = []
    for spec in resources:
        producers: List[str] = []
        referenced = [ref.address for ref in iter_refs(spec.fields)]
        for address in referenced + list(spec.depends_on):
            if address in scheduled and address not in producers:
                producers.append(address)
        edges.extend(DependencyEdge(spec.address, producer) for producer in producers)
    return edges


def find_cycle(addresses: Sequence[str], edges: Iterable[DependencyEdge]) -> List[str]:
    """Return one dependency cycle as a closed path, or an empty list"""
    graph: Dict[str, List[str]] = {address: [] for address in addresses}
    for edge in edges:
        graph.setdefault(edge.consumer, []).append(edge.producer)

    visiting: List[str] = []
    done = set()

    def visit(node: str) -> List[str]:
        if node in visiting:
            return visiting[visiting.index(node):] + [node]
        if node in done:
            return []
        visiting.append(node)
        for producer in graph.get(node, []):
            cycle = visit(producer)
            if cycle:
                return cycle
        visiting.pop()
        done.add(node)
        return []

    for address in addresses:
        cycle = visit(address)
        if cycle:
            return cycle
    return []


def topological_order(addresses: Sequence[str], edges: Sequence[DependencyEdge]) -> List[str]:
    """
    Order addresses so producers come before their consumers

    Ties keep declaration order, so the same plan always yields the same order.

    Raises:
        ResolutionError: when the graph has a cycle
    """
    position = {address: index for index, address in enumerate(addresses)}
    pending = {address: set() for address in addresses}
    for edge in edges:
        pending[edge.consumer].add(edge.producer)

    order: List[str] = []
    while pending:
        ready = sorted((address for address, needs in pending.items() if not needs), key=position.get)
        if not ready:
            cycle = find_cycle(list(pending), edges)
            raise ResolutionError(f"reference cycle: {' -> '.join(cycle)}", cycle=cycle)
        for address in ready:
            order.append(address)
            del pending[address]
        for needs in pending.values():
            needs.difference_update(ready)
    return order


def check_references(planned: PlannedResources) -> None:
    """
    Reject references that name a resource kind the planner does not know

    Raises:
        ResolutionError: for dangling references
    """
    for spec in planned.resources:
        for ref in iter_refs(spec.fields):
            if ref.kind not in planned.known_kinds:
                raise ResolutionError(f"{spec.address} references unknown resource {ref.address}")
        for address in spec.depends_on:
            if address_kind(address) not in planned.known_kinds:
                raise ResolutionError(f"{spec.address} depends on unknown resource {address}")
    for name, value in planned.outputs.items():
        for ref in iter_refs(value):
            if ref.kind not in planned.known_kinds:
                raise ResolutionError(f"output {name} references unknown resource {ref.address}")


def resolve_plan(planned: PlannedResources) -> Plan:
    """
    Resolve a planned resource set into an ordered, acyclic Plan

    References to suppressed resources become empty strings. References to
    scheduled resources stay deferred handles until bound at apply time.

    Args:
        planned: Planner output

    Returns:
        Plan with edges, topological order and degraded references

    Raises:
        ResolutionError: on duplicate addresses, dangling references or cycles
    """
    addresses = [spec.address for spec in planned.resources]
    duplicates = sorted({address for address in addresses if addresses.count(address) > 1})
    if duplicates:
        raise ResolutionError(f"duplicate resource addresses: {', '.join(duplicates)}")

    check_references(planned)

    edges = dependency_edges(planned.resources)
    order = topological_order(addresses, edges)
    scheduled = set(addresses)

    def degrade(ref: Ref) -> Any:
        if ref.address in scheduled:
            return ref
        pulumi.log.debug(f"{ref.address} is not planned, {ref.attribute} resolves to empty")
        return SUPPRESSED

    resources = tuple(replace(spec, fields=substitute(spec.fields, degrade)) for spec in planned.resources)
    outputs = substitute(dict(planned.outputs), degrade)

    return Plan(
        name=planned.name,
        resources=resources,
        order=tuple(order),
        edges=tuple(edges),
        outputs=outputs,
    )


def bind(value: Any, outputs: Mapping[str, Mapping[str, Any]]) -> Any:
    """
    Replace deferred handles with the outputs of already-applied resources

    Args:
        value: Field value from a resolved plan
        outputs: Applied outputs keyed by address

    Returns:
        Concrete value

    Raises:
        ResolutionError: when the producer has not been applied or lacks the attribute
    """
    def lookup(ref: Ref) -> Any:
        if ref.address not in outputs:
            raise ResolutionError(f"{ref.address} has not been applied")
        produced = outputs[ref.address]
        if ref.attribute not in produced:
            raise ResolutionError(f"{ref.address} has no output {ref.attribute}")
        return produced[ref.attribute]

    return substitute(value, lookup)
