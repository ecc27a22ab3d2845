import random

import pytest

from orgchart_core.clipboard import apply_preset, build_preset, copy_selection, paste
from orgchart_core.config import PASTE_OFFSET
from orgchart_core.context import InteractionContext
from orgchart_core.models import Position

from .helpers import person


@pytest.fixture
def context():
    return InteractionContext()


def test_copy_keeps_only_internal_connections(graph, context):
    a, b, c = person(graph), person(graph), person(graph)
    graph.connect(a.id, b.id)
    graph.connect(b.id, c.id)
    graph.select_only([a.id, b.id])

    assert copy_selection(graph, context) == 2
    assert len(context.clipboard.connections) == 1


def test_empty_selection_keeps_previous_clipboard(graph, context):
    a = person(graph)
    graph.select_only([a.id])
    copy_selection(graph, context)
    graph.deselect_all()

    assert copy_selection(graph, context) == 0
    assert len(context.clipboard.nodes) == 1


def test_paste_remaps_ids_and_preserves_topology(graph, context):
    a, b, c = person(graph, 0, 0), person(graph, 0, 300), person(graph, 300, 300)
    graph.connect(a.id, b.id)
    graph.connect(a.id, c.id)
    graph.connect(b.id, c.id)
    graph.select_only([a.id, b.id])
    copy_selection(graph, context)

    pasted = paste(graph, context)

    assert len(pasted) == 2
    new_ids = {n.id for n in pasted}
    assert new_ids.isdisjoint({a.id, b.id, c.id})
    internal = [x for x in graph.connections if x.source in new_ids or x.target in new_ids]
    assert len(internal) == 1
    assert {internal[0].source, internal[0].target} == new_ids
    assert len(graph) == 5


def test_paste_offsets_and_fans_out(graph, context):
    a = person(graph, 10, 20)
    graph.select_only([a.id])
    copy_selection(graph, context)

    first = paste(graph, context)[0]
    second = paste(graph, context)[0]

    assert first.position == Position(x=10 + PASTE_OFFSET, y=20 + PASTE_OFFSET)
    assert second.position == Position(x=10 + 2 * PASTE_OFFSET, y=20 + 2 * PASTE_OFFSET)
    # single-node paste leaves the selection alone
    assert not first.selected
    assert graph.get_node(a.id).selected


def test_multi_node_paste_selects_pasted_nodes(graph, context):
    a, b = person(graph), person(graph)
    graph.select_only([a.id, b.id])
    copy_selection(graph, context)

    pasted = paste(graph, context)

    assert {n.id for n in graph.selected_nodes()} == {n.id for n in pasted}


def test_clipboard_does_not_alias_live_nodes(graph, context):
    a = person(graph, name="Alice")
    graph.select_only([a.id])
    copy_selection(graph, context)
    graph.update_node_data(a.id, {"name": "Changed"})

    pasted = paste(graph, context)
    assert pasted[0].data.name == "Alice"


def test_paste_with_empty_clipboard(graph, context):
    assert paste(graph, context) == []
    assert len(graph) == 0


def test_build_preset_normalizes_to_bounding_box(graph):
    a, b = person(graph, 120, 80), person(graph, 170, 80)
    graph.connect(a.id, b.id)
    graph.select_only([a.id, b.id])

    preset = build_preset(graph, existing_count=2)

    assert preset.name == "Preset 3"
    assert [(n.position.x, n.position.y) for n in preset.nodes] == [(0, 0), (50, 0)]
    assert len(preset.connections) == 1
    assert preset.meta == {}
    assert all(not n.selected for n in preset.nodes)
    # the live graph is not normalized
    assert graph.get_node(a.id).position.x == 120


def test_build_preset_needs_a_selection(graph):
    person(graph)
    assert build_preset(graph, 0) is None


def test_apply_preset_jitters_and_selects(graph):
    a, b = person(graph, 120, 80), person(graph, 170, 80)
    graph.connect(a.id, b.id)
    graph.select_only([a.id, b.id])
    preset = build_preset(graph, 0)

    inserted = apply_preset(graph, preset, random.Random(1))

    assert len(inserted) == 2
    origin = inserted[0].position
    assert 100 <= origin.x < 200
    assert 100 <= origin.y < 180
    assert inserted[1].position.x - origin.x == pytest.approx(50)
    assert {n.id for n in graph.selected_nodes()} == {n.id for n in inserted}
    # the preset is a value and stays normalized
    assert preset.nodes[0].position == Position(x=0, y=0)
    assert preset.nodes[0].id not in {n.id for n in inserted}


def test_apply_preset_is_deterministic_with_seeded_random(graph):
    a = person(graph, 5, 5)
    graph.select_only([a.id])
    preset = build_preset(graph, 0)

    first = apply_preset(graph, preset, random.Random(3))[0].position
    second = apply_preset(graph, preset, random.Random(3))[0].position
    assert first == second
