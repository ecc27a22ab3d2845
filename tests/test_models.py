import pytest

from orgchart_core.config import PERSON_Z_INDEX, SECTION_SELECTED_Z_INDEX, SECTION_Z_INDEX
from orgchart_core.models import (
    Connection,
    DimensionsChange,
    FileMeta,
    FlowState,
    NodeChangesRequest,
    NodeKind,
    PersonNode,
    PositionChange,
    Preset,
    SectionNode,
    TargetAnchor,
    new_node,
    parse_node,
    stack_order,
)


class TestNodes:
    def test_new_person_has_default_payload(self):
        node = new_node(NodeKind.PERSON)
        assert isinstance(node, PersonNode)
        assert node.data.name == "Nouveau"
        assert node.data.role == "Rôle"
        assert node.z_index == PERSON_Z_INDEX
        assert node.id.startswith("n")

    def test_new_section_keeps_extra_payload_keys(self):
        node = new_node("section", data={"title": "R&D", "note": "kept"})
        assert isinstance(node, SectionNode)
        assert node.data.title == "R&D"
        assert node.data.model_dump()["note"] == "kept"

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(ValueError):
            new_node("robot")

    def test_stack_order_policy(self):
        section = new_node(NodeKind.SECTION)
        assert stack_order(section) == SECTION_Z_INDEX
        assert stack_order(section, selected=True) == SECTION_SELECTED_Z_INDEX
        assert stack_order(new_node(NodeKind.PERSON), selected=True) == PERSON_Z_INDEX

    def test_stack_order_fails_loudly_on_unknown_variant(self):
        with pytest.raises(TypeError):
            stack_order(object())

    def test_legacy_person_node(self):
        node = parse_node({
            "id": "a",
            "type": "person",
            "position": {"x": 1, "y": 2},
            "zIndex": 99,
            "data": {"name": "Alice", "bgColor": "#000000", "showComment": True},
        })
        assert isinstance(node, PersonNode)
        assert node.z_index == 99
        assert node.data.bg_color == "#000000"
        assert node.data.show_comment is True

    def test_legacy_section_size_moves_into_payload(self):
        node = parse_node({
            "id": "s",
            "type": "section",
            "position": {"x": 0, "y": 0},
            "style": {"width": 640, "height": 420},
            "data": {"title": "Ops"},
        })
        assert isinstance(node, SectionNode)
        assert (node.data.width, node.data.height) == (640, 420)


class TestConnections:
    def test_defaults_are_hierarchical(self):
        connection = Connection(source="a", target="b")
        assert connection.target_anchor == TargetAnchor.TOP
        assert not connection.is_lateral

    def test_legacy_react_flow_edge(self):
        connection = Connection.model_validate({
            "id": "e1",
            "source": "a",
            "target": "b",
            "sourceHandle": "source-bottom",
            "targetHandle": "target-left",
            "type": "custom",
            "data": {"color": "#ff0000", "dashed": True},
            "style": {"stroke": "#ff0000", "strokeWidth": 3},
        })
        assert connection.target_anchor == TargetAnchor.LEFT
        assert connection.is_lateral
        assert connection.style.color == "#ff0000"
        assert connection.style.dashed is True
        assert connection.style.stroke_width == 3


class TestDocuments:
    @pytest.mark.parametrize("raw, expected", [("3", 3), ("0", 1), ("abc", 1), (None, 1)])
    def test_file_meta_version_is_floored(self, raw, expected):
        meta = FileMeta.model_validate({"app": "OrganMaker", "version": raw, "fileName": "X"})
        assert meta.schema_version == expected
        assert meta.display_name == "X"

    def test_flow_state_accepts_legacy_keys(self):
        state = FlowState.model_validate({
            "nodes": [],
            "edges": [{"id": "e", "source": "a", "target": "b"}],
            "fileName": "Equipe",
            "fileVersion": 4,
        })
        assert len(state.connections) == 1
        assert state.file_name == "Equipe"
        assert state.file_version == 4

    def test_preset_legacy_keys(self):
        preset = Preset.model_validate({
            "name": "Duo",
            "createdAt": "2024-01-02T03:04:05Z",
            "nodes": [],
            "edges": [],
        })
        assert preset.created_at.year == 2024
        assert preset.meta == {}


def test_node_changes_are_discriminated():
    request = NodeChangesRequest.model_validate({"changes": [
        {"type": "position", "id": "a", "position": {"x": 1, "y": 1}, "dragging": True},
        {"type": "dimensions", "id": "b", "width": 10, "height": 20},
        {"type": "select", "id": "a", "selected": True},
        {"type": "remove", "id": "c"},
    ]})
    assert isinstance(request.changes[0], PositionChange)
    assert isinstance(request.changes[1], DimensionsChange)
    assert [c.type for c in request.changes] == ["position", "dimensions", "select", "remove"]
