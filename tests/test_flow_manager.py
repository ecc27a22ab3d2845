import json

import pytest

from orgchart_backend.flow_manager import FlowManager
from orgchart_core.config import LAYOUT_RANK_SEP, PERSON_NODE_HEIGHT
from orgchart_core.models import (
    DimensionsChange,
    NodeKind,
    Position,
    PositionChange,
    RemoveChange,
    SelectChange,
    TargetAnchor,
)
from orgchart_core.persistence import FlowStore
from orgchart_core.validation import ImportRejected


def add_person(manager, x=0, y=0, **data):
    return manager.add_node(NodeKind.PERSON, Position(x=x, y=y), data or None)


def positions(manager):
    return {n.id: (n.position.x, n.position.y) for n in manager.nodes}


class TestScenario:
    def test_build_layout_and_undo(self, manager):
        n1 = add_person(manager, 100, 100)
        n2 = add_person(manager, 300, 100)
        e1 = manager.connect(n1.id, n2.id)
        assert e1 is not None

        assert manager.auto_layout()
        placed = positions(manager)
        assert placed[n2.id][0] == placed[n1.id][0]
        assert placed[n2.id][1] - placed[n1.id][1] == PERSON_NODE_HEIGHT + LAYOUT_RANK_SEP

        for _ in range(3):
            assert manager.undo()
        assert positions(manager) == {n1.id: (100, 100)}
        assert manager.connections == []

        assert manager.undo()
        assert manager.nodes == []
        assert not manager.can_undo

    def test_redo_replays_forward(self, manager):
        n1 = add_person(manager, 0, 0)
        n2 = add_person(manager, 0, 0)
        manager.connect(n1.id, n2.id)
        while manager.undo():
            pass
        while manager.redo():
            pass
        assert len(manager.nodes) == 2
        assert len(manager.connections) == 1

    def test_undo_reaches_state_after_first_mutation(self, manager):
        first = add_person(manager, 1, 1)
        for i in range(5):
            add_person(manager, i * 50, 0)
        for _ in range(5):
            manager.undo()
        assert [n.id for n in manager.nodes] == [first.id]


class TestBatching:
    def test_drag_makes_one_entry(self, manager):
        node = add_person(manager, 0, 0)
        before = manager.history.past_size

        for x in range(10, 60, 10):
            manager.apply_node_changes([
                PositionChange(id=node.id, position=Position(x=x, y=x), dragging=True)
            ])
        manager.apply_node_changes([PositionChange(id=node.id, dragging=False)])

        assert manager.history.past_size == before + 1
        assert manager.get_node(node.id).position == Position(x=50, y=50)
        manager.undo()
        assert manager.get_node(node.id).position == Position(x=0, y=0)

    def test_section_resize_makes_one_entry(self, manager):
        s = manager.add_node(NodeKind.SECTION, Position(x=0, y=0))
        before = manager.history.past_size

        for w in (520, 560, 600):
            manager.apply_node_changes([DimensionsChange(id=s.id, width=w, height=400, resizing=True)])
        manager.apply_node_changes([DimensionsChange(id=s.id, width=600, height=400, resizing=False)])

        assert manager.history.past_size == before + 1
        assert manager.get_node(s.id).data.width == 600
        manager.undo()
        assert manager.get_node(s.id).data.width == 500

    def test_measurements_and_selection_are_not_history(self, manager):
        node = add_person(manager)
        before = manager.history.past_size
        manager.apply_node_changes([
            DimensionsChange(id=node.id, width=256, height=180),
            SelectChange(id=node.id, selected=True),
        ])
        manager.select_nodes([])
        assert manager.history.past_size == before

    def test_bare_move_is_discrete(self, manager):
        node = add_person(manager)
        manager.apply_node_changes([PositionChange(id=node.id, position=Position(x=5, y=5))])
        assert manager.history.past_size == 2

    def test_remove_change_cascades(self, manager):
        a, b = add_person(manager), add_person(manager)
        manager.connect(a.id, b.id)
        manager.apply_node_changes([RemoveChange(id=a.id)])
        assert [n.id for n in manager.nodes] == [b.id]
        assert manager.connections == []

    def test_typing_burst_is_one_entry(self, manager, scheduler):
        node = add_person(manager)
        for text in ("A", "Al", "Ali"):
            manager.update_node_data(node.id, {"name": text})
            scheduler.advance(100)
        scheduler.advance(600)
        assert manager.history.past_size == 2

        scheduler.advance(1000)
        manager.update_node_data(node.id, {"name": "Alice"})
        scheduler.advance(600)
        assert manager.history.past_size == 3

    def test_non_coalesced_edit_commits_immediately(self, manager):
        node = add_person(manager)
        manager.update_node_data(node.id, {"bg_color": "#fce7f3"}, coalesce=False)
        assert manager.history.past_size == 2
        assert not manager.history.is_paused

    def test_missing_ids_are_silent_no_ops(self, manager):
        add_person(manager)
        assert manager.remove_node("ghost") is False
        assert manager.update_node_data("ghost", {"name": "x"}) is None
        assert manager.connect("ghost", "other") is None
        assert manager.remove_connection("ghost") is False
        assert manager.update_connection_style("ghost", {"color": "#000"}) is None
        assert manager.apply_node_changes([SelectChange(id="ghost", selected=True)]) is False
        assert manager.history.past_size == 1

    def test_drag_of_unknown_node_leaves_no_entry(self, manager):
        add_person(manager)
        manager.apply_node_changes([PositionChange(id="ghost", position=Position(x=5, y=5), dragging=True)])
        assert not manager.history.is_paused
        manager.apply_node_changes([PositionChange(id="ghost", dragging=False)])
        manager.apply_node_changes([DimensionsChange(id="ghost", width=300, height=300, resizing=True)])
        assert manager.history.past_size == 1

    def test_restore_drops_pending_edit(self, manager, scheduler):
        node = add_person(manager)
        snapshot = manager.serialize()
        manager.update_node_data(node.id, {"name": "Half typed"})

        manager.restore(snapshot)
        scheduler.advance(600)

        assert manager.history.past_size == 1
        assert manager.get_node(node.id).data.name == "Nouveau"
        assert not manager.history.is_paused


class TestClipboardAndPresets:
    def test_copy_paste_is_one_entry(self, manager):
        a, b = add_person(manager), add_person(manager)
        manager.connect(a.id, b.id)
        manager.select_nodes([a.id, b.id])
        assert manager.copy_selection() == 2
        before = manager.history.past_size

        pasted = manager.paste()

        assert len(pasted) == 2
        assert manager.history.past_size == before + 1
        assert len(manager.connections) == 2
        manager.undo()
        assert len(manager.nodes) == 2

    def test_preset_lifecycle(self, manager, scheduler, store_path):
        a, b = add_person(manager, 120, 80), add_person(manager, 170, 80)
        manager.select_nodes([a.id, b.id])
        before = manager.history.past_size

        preset_id = manager.create_preset()
        assert manager.history.past_size == before
        preset = manager.get_preset(preset_id)
        assert preset.nodes[0].position.x == 0

        inserted = manager.apply_preset(preset_id)
        assert len(inserted) == 2
        assert manager.history.past_size == before + 1

        manager.rename_preset(preset_id, "Binôme")
        assert manager.get_preset(preset_id).name == "Binôme"
        assert manager.history.past_size == before + 1

        scheduler.run_all()
        saved = json.loads(store_path.read_text(encoding="utf-8"))
        assert saved["presets"][0]["name"] == "Binôme"

        assert manager.remove_preset(preset_id)
        assert manager.presets == []
        assert manager.apply_preset(preset_id) == []

    def test_create_preset_without_selection(self, manager):
        add_person(manager)
        assert manager.create_preset() is None


class TestPersistence:
    def test_autosave_then_load(self, manager, scheduler, store):
        a = add_person(manager, 10, 10, name="Alice")
        manager.set_file_name("Equipe")
        scheduler.run_all()

        other = FlowManager(scheduler=scheduler, store=store)
        assert other.load()
        assert other.get_node(a.id).data.name == "Alice"
        assert other.file_name == "Equipe"
        assert not other.can_undo

    def test_autosave_failure_keeps_memory_state(self, tmp_path, scheduler):
        blocked = tmp_path / "blocked"
        blocked.mkdir()
        manager = FlowManager(scheduler=scheduler, store=FlowStore(blocked, scheduler))

        add_person(manager)
        scheduler.run_all()
        assert len(manager.nodes) == 1

    def test_flush_writes_pending_edit(self, manager, scheduler, store_path):
        node = add_person(manager)
        scheduler.run_all()
        manager.update_node_data(node.id, {"name": "Typed before shutdown"})

        manager.flush()

        saved = json.loads(store_path.read_text(encoding="utf-8"))
        assert saved["nodes"][0]["data"]["name"] == "Typed before shutdown"
        assert manager.history.past_size == 2
        assert scheduler.pending == 0

    def test_export_bumps_version_after_stamping(self, manager):
        manager.set_file_version(3)
        name = manager.export_file_name()
        document = manager.export_document()

        assert "_v3_" in name
        assert document.meta.schema_version == 3
        assert manager.file_version == 4

    def test_version_is_floored(self, manager):
        manager.set_file_version(0)
        assert manager.file_version == 1
        manager.set_file_version(2.7)
        assert manager.file_version == 2
        assert manager.decrement_version()
        assert not manager.decrement_version()
        assert manager.file_version == 1

    def test_import_requires_confirmation(self, manager):
        add_person(manager)
        document = manager.export_document().model_dump(mode="json")
        manager.add_node(NodeKind.SECTION)

        assert manager.import_document(document, confirm=lambda: False) is False
        assert len(manager.nodes) == 2

        assert manager.import_document(document, confirm=True)
        assert len(manager.nodes) == 1
        assert not manager.can_undo
        assert manager.file_version == document["meta"]["schema_version"]

    def test_rejected_import_changes_nothing(self, manager):
        add_person(manager)
        with pytest.raises(ImportRejected):
            manager.import_document({"nodes": "x", "connections": []}, confirm=True)
        assert len(manager.nodes) == 1
        assert manager.can_undo

    def test_reset(self, manager, scheduler, store_path):
        add_person(manager)
        manager.update_node_data(manager.nodes[0].id, {"name": "pending"})
        scheduler.run_all()
        assert store_path.exists()

        assert not manager.reset(confirm=False)
        assert manager.reset(confirm=True)

        assert manager.nodes == []
        assert manager.file_version == 1
        assert not manager.can_undo
        assert scheduler.pending == 0
        assert not store_path.exists()

    def test_restore_accepts_snapshot_dicts(self, manager):
        a = add_person(manager)
        snapshot = manager.serialize().model_dump(mode="json")
        add_person(manager)

        manager.restore(snapshot)
        assert [n.id for n in manager.nodes] == [a.id]


def test_change_callbacks(manager):
    calls = []
    manager.on_change(lambda: calls.append(1))
    add_person(manager)
    manager.undo()
    assert len(calls) == 2


def test_side_connection_layout_through_manager(manager):
    parent = add_person(manager)
    child = add_person(manager)
    manager.connect(parent.id, child.id, target_anchor=TargetAnchor.RIGHT)
    manager.auto_layout()
    placed = positions(manager)
    assert placed[child.id][0] < placed[parent.id][0]
