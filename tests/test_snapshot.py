from orgchart_core.config import SECTION_Z_INDEX
from orgchart_core.snapshot import (
    canonical,
    capture,
    materialize,
    snapshot_from_value,
    snapshots_equal,
)

from .helpers import person, section


def test_capture_strips_interaction_state(graph):
    a = person(graph, 10, 20)
    s = section(graph)
    graph.set_selected(a.id, True)
    graph.set_selected(s.id, True)
    graph.set_node_flags(a.id, dragging=True, width=256, height=180)

    snapshot = capture(graph.nodes, graph.connections)

    captured = {n.id: n for n in snapshot.nodes}
    assert captured[a.id].selected is False
    assert captured[a.id].dragging is False
    assert captured[a.id].width is None
    assert captured[s.id].z_index == SECTION_Z_INDEX
    # the live graph is untouched
    assert graph.get_node(a.id).selected is True
    assert graph.get_node(a.id).dragging is True


def test_capture_is_a_deep_copy(graph):
    a = person(graph, 10, 20, name="Alice")
    snapshot = capture(graph.nodes, graph.connections)

    graph.update_node_data(a.id, {"name": "Bob"})
    graph.set_node_position(a.id, a.position.model_copy(update={"x": 99}))

    assert snapshot.nodes[0].data.name == "Alice"
    assert snapshot.nodes[0].position.x == 10


def test_materialize_gives_independent_copies(graph):
    person(graph, 1, 1)
    snapshot = capture(graph.nodes, graph.connections)

    nodes, _ = materialize(snapshot)
    nodes[0].position.x = 500

    assert snapshot.nodes[0].position.x == 1


def test_selection_does_not_affect_equality(graph):
    a = person(graph)
    before = capture(graph.nodes, graph.connections)
    graph.set_selected(a.id, True)
    assert snapshots_equal(before, capture(graph.nodes, graph.connections))

    graph.update_node_data(a.id, {"role": "CTO"})
    assert not snapshots_equal(before, capture(graph.nodes, graph.connections))


def test_canonical_is_stable(graph):
    a, b = person(graph), person(graph)
    graph.connect(a.id, b.id)
    snapshot = capture(graph.nodes, graph.connections)
    assert canonical(snapshot) == canonical(snapshot.model_copy(deep=True))


def test_snapshot_from_legacy_dict():
    snapshot = snapshot_from_value({
        "nodes": [
            {"id": "a", "type": "person", "position": {"x": 0, "y": 0}, "selected": True},
            {"id": "b", "type": "person", "position": {"x": 0, "y": 300}},
        ],
        "edges": [{"id": "e", "source": "a", "target": "b", "targetHandle": "target-top"}],
    })
    assert [n.id for n in snapshot.nodes] == ["a", "b"]
    assert snapshot.nodes[0].selected is False
    assert snapshot.connections[0].target == "b"
