"""
Snapshot codec - render-agnostic deep copies of the graph.

A snapshot is what undo/redo and persistence work with. It is built from
the live graph through one projection that:
- clones every node and connection structurally (no serialize/parse trip)
- resets interaction-only fields (selection, drag/resize flags, measured size)
- normalizes stack order to the unselected policy value

Two snapshots are equal iff their canonical serialization is identical.
"""

import json
from typing import Iterable, Union

from .models import (
    Connection,
    PersonNode,
    SectionNode,
    Snapshot,
    VOLATILE_CONNECTION_FIELDS,
    VOLATILE_NODE_FIELDS,
    stack_order,
)

AnyNode = Union[PersonNode, SectionNode]


def _defaults(model: type, fields: Iterable[str]) -> dict:
    return {name: model.model_fields[name].default for name in fields}


_NODE_RESET = _defaults(PersonNode, VOLATILE_NODE_FIELDS)
_CONNECTION_RESET = _defaults(Connection, VOLATILE_CONNECTION_FIELDS)


def clone_node(node: AnyNode) -> AnyNode:
    """Deep structural copy of a node, interaction state included."""
    return node.model_copy(deep=True)


def clone_connection(connection: Connection) -> Connection:
    """Deep structural copy of a connection."""
    return connection.model_copy(deep=True)


def project_node(node: AnyNode) -> AnyNode:
    """Deep copy of a node without any interaction-only state."""
    update = dict(_NODE_RESET)
    update["z_index"] = stack_order(node, selected=False)
    return node.model_copy(deep=True, update=update)


def project_connection(connection: Connection) -> Connection:
    """Deep copy of a connection without any interaction-only state."""
    return connection.model_copy(deep=True, update=dict(_CONNECTION_RESET))


def capture(nodes: Iterable[AnyNode], connections: Iterable[Connection]) -> Snapshot:
    """Build a snapshot of the given graph content."""
    return Snapshot(
        nodes=[project_node(n) for n in nodes],
        connections=[project_connection(c) for c in connections],
    )


def materialize(snapshot: Snapshot) -> tuple[list[AnyNode], list[Connection]]:
    """Fresh, mutable copies of a snapshot's content (the snapshot stays intact)."""
    return (
        [clone_node(n) for n in snapshot.nodes],
        [clone_connection(c) for c in snapshot.connections],
    )


def canonical(snapshot: Snapshot) -> str:
    """Canonical serialization: JSON mode, sorted keys, compact separators."""
    return json.dumps(
        snapshot.model_dump(mode="json"),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def snapshots_equal(a: Snapshot, b: Snapshot) -> bool:
    """True if both snapshots serialize to the same bytes."""
    return canonical(a) == canonical(b)


def snapshot_from_value(value: Union[Snapshot, dict]) -> Snapshot:
    """Accept a Snapshot or a snapshot-shaped dict (legacy keys allowed)."""
    if isinstance(value, Snapshot):
        return value
    data = dict(value)
    if "edges" in data and "connections" not in data:
        data["connections"] = data.pop("edges")
    snapshot = Snapshot.model_validate(data)
    # Re-project so dicts carrying interaction state compare like live captures
    return capture(snapshot.nodes, snapshot.connections)
