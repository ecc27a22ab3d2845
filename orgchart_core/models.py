"""
Core data models for org-chart flows.

These models define the canonical schema:
- Nodes are a closed tagged variant on `type`: PersonNode or SectionNode
- Connections join a source node (bottom anchor) to a target node
  (top, left or right anchor)
- Presets are self-contained, position-normalized sub-graphs
- FlowDocument is the export/import envelope

Field Naming Convention:
- Output always uses snake_case
- For backward compatibility, the camelCase / React Flow shaped input of
  older saves (zIndex, bgColor, sourceHandle, edges, ...) is accepted and
  converted on input
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
import uuid

from .config import (
    APP_NAME,
    DEFAULT_EDGE_COLOR,
    DEFAULT_EDGE_STROKE_WIDTH,
    DEFAULT_FILE_NAME,
    DEFAULT_PERSON_BG,
    DEFAULT_PERSON_BORDER,
    DEFAULT_PERSON_NAME,
    DEFAULT_PERSON_ROLE,
    DEFAULT_SECTION_COLOR,
    DEFAULT_SECTION_TITLE,
    PERSON_Z_INDEX,
    SECTION_DEFAULT_HEIGHT,
    SECTION_DEFAULT_WIDTH,
    SECTION_SELECTED_Z_INDEX,
    SECTION_Z_INDEX,
)


class NodeKind(str, Enum):
    """The two kinds of node on the canvas."""
    PERSON = "person"
    SECTION = "section"


class SourceAnchor(str, Enum):
    """Where a connection leaves its source node."""
    BOTTOM = "bottom"


class TargetAnchor(str, Enum):
    """
    Where a connection enters its target node.

    TOP makes the connection hierarchical (a tree edge); LEFT and RIGHT make
    it lateral (a side edge).
    """
    TOP = "top"
    LEFT = "left"
    RIGHT = "right"


# React Flow handle ids used by older saves
_LEGACY_HANDLES = {
    "source-bottom": SourceAnchor.BOTTOM.value,
    "target-top": TargetAnchor.TOP.value,
    "target-left": TargetAnchor.LEFT.value,
    "target-right": TargetAnchor.RIGHT.value,
}


def generate_node_id() -> str:
    """Generate a unique node ID."""
    return f"n{uuid.uuid4().hex[:8]}"


def generate_connection_id() -> str:
    """Generate a unique connection ID."""
    return f"e{uuid.uuid4().hex[:8]}"


def generate_preset_id() -> str:
    """Generate a unique preset ID."""
    return f"p{uuid.uuid4().hex[:8]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _rename_keys(data: dict, renames: dict[str, str], override: bool = False) -> dict:
    """Rename legacy keys in place. An existing new key wins unless `override` is set."""
    for old, new in renames.items():
        if old in data and (override or new not in data):
            data[new] = data.pop(old)
    return data


class Position(BaseModel):
    """Top-left corner of a node in canvas coordinates."""
    x: float = 0
    y: float = 0


# --- Node payloads ---

class PersonData(BaseModel):
    """Payload of a person card. Unknown keys are kept."""
    model_config = ConfigDict(extra="allow")

    name: str = DEFAULT_PERSON_NAME
    role: str = DEFAULT_PERSON_ROLE
    comment: str = ""
    show_comment: bool = False
    photo: Optional[str] = None  # opaque reference (data URL or path)
    bg_color: str = DEFAULT_PERSON_BG
    border_color: str = DEFAULT_PERSON_BORDER

    @model_validator(mode='before')
    @classmethod
    def convert_legacy_fields(cls, data: Any) -> Any:
        """Convert camelCase keys (older saves, canvas edits merged on top)."""
        if isinstance(data, dict):
            data = _rename_keys(dict(data), {
                "showComment": "show_comment",
                "bgColor": "bg_color",
                "borderColor": "border_color",
            }, override=True)
        return data


class SectionData(BaseModel):
    """Payload of a grouping section. Unknown keys are kept."""
    model_config = ConfigDict(extra="allow")

    title: str = DEFAULT_SECTION_TITLE
    color: str = DEFAULT_SECTION_COLOR
    width: float = SECTION_DEFAULT_WIDTH
    height: float = SECTION_DEFAULT_HEIGHT


# --- Nodes ---

# Interaction-only fields: never part of a snapshot, a preset or the clipboard
VOLATILE_NODE_FIELDS = frozenset({"selected", "dragging", "width", "height", "resizing"})
VOLATILE_CONNECTION_FIELDS = frozenset({"selected"})


class _NodeBase(BaseModel):
    id: str = Field(default_factory=generate_node_id)
    position: Position = Field(default_factory=Position)
    z_index: int = 0
    # Volatile interaction state
    selected: bool = False
    dragging: bool = False
    width: Optional[float] = None   # measured by the renderer
    height: Optional[float] = None  # measured by the renderer
    resizing: bool = False

    @model_validator(mode='before')
    @classmethod
    def convert_legacy_node(cls, data: Any) -> Any:
        """Convert React Flow shaped nodes from older saves."""
        if isinstance(data, dict):
            data = _rename_keys(dict(data), {"zIndex": "z_index"})
            style = data.pop("style", None)
            # Sections used to keep their size in the node style
            if data.get("type") == NodeKind.SECTION.value and isinstance(style, dict):
                payload = dict(data.get("data") or {})
                for key in ("width", "height"):
                    if key in style and key not in payload:
                        payload[key] = style[key]
                data["data"] = payload
        return data


class PersonNode(_NodeBase):
    """A person card. Participates in auto-layout."""
    type: Literal["person"] = NodeKind.PERSON.value
    z_index: int = PERSON_Z_INDEX
    data: PersonData = Field(default_factory=PersonData)

    @property
    def kind(self) -> NodeKind:
        return NodeKind.PERSON


class SectionNode(_NodeBase):
    """A grouping backdrop. Never moved by auto-layout."""
    type: Literal["section"] = NodeKind.SECTION.value
    z_index: int = SECTION_Z_INDEX
    data: SectionData = Field(default_factory=SectionData)

    @property
    def kind(self) -> NodeKind:
        return NodeKind.SECTION


Node = Annotated[Union[PersonNode, SectionNode], Field(discriminator="type")]

_node_adapter = TypeAdapter(Node)
_node_list_adapter = TypeAdapter(list[Node])


def parse_node(data: dict) -> Union[PersonNode, SectionNode]:
    """Validate a node dict into the right variant."""
    return _node_adapter.validate_python(data)


def parse_nodes(data: list) -> list[Union[PersonNode, SectionNode]]:
    """Validate a list of node dicts."""
    return _node_list_adapter.validate_python(data)


def stack_order(node: Union[PersonNode, SectionNode], selected: Optional[bool] = None) -> int:
    """
    z-index policy: persons always above sections, a selected section is
    raised slightly but stays behind every person.
    """
    if isinstance(node, PersonNode):
        return PERSON_Z_INDEX
    if isinstance(node, SectionNode):
        if selected is None:
            selected = node.selected
        return SECTION_SELECTED_Z_INDEX if selected else SECTION_Z_INDEX
    raise TypeError(f"Unknown node variant: {type(node).__name__}")


def new_node(kind: NodeKind | str, position: Optional[Position] = None,
             data: Optional[dict] = None) -> Union[PersonNode, SectionNode]:
    """Build a fresh node of the given kind with default payload."""
    kind = NodeKind(kind)
    position = position or Position()
    if kind is NodeKind.PERSON:
        return PersonNode(position=position, data=PersonData(**(data or {})))
    if kind is NodeKind.SECTION:
        return SectionNode(position=position, data=SectionData(**(data or {})))
    raise TypeError(f"Unknown node kind: {kind}")


# --- Connections ---

class ConnectionStyle(BaseModel):
    """Visual style of a connection."""
    color: str = DEFAULT_EDGE_COLOR
    dashed: bool = False
    stroke_width: float = DEFAULT_EDGE_STROKE_WIDTH


class Connection(BaseModel):
    """
    A directed connection between two nodes.

    Uses `source` and `target` as canonical field names.
    Accepts React Flow edges (sourceHandle/targetHandle, data, style.stroke)
    on input for backward compatibility.
    """
    id: str = Field(default_factory=generate_connection_id)
    source: str
    target: str
    source_anchor: SourceAnchor = SourceAnchor.BOTTOM
    target_anchor: TargetAnchor = TargetAnchor.TOP
    style: ConnectionStyle = Field(default_factory=ConnectionStyle)
    # Volatile interaction state
    selected: bool = False

    @model_validator(mode='before')
    @classmethod
    def convert_legacy_fields(cls, data: Any) -> Any:
        """Convert React Flow edge fields from older saves."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for handle_key, anchor_key in (("sourceHandle", "source_anchor"),
                                       ("targetHandle", "target_anchor")):
            if handle_key in data:
                handle = data.pop(handle_key)
                if anchor_key not in data and handle:
                    data[anchor_key] = _LEGACY_HANDLES.get(handle, handle)
        legacy_style = data.get("style")
        if isinstance(legacy_style, dict) and ("stroke" in legacy_style or "strokeWidth" in legacy_style):
            edge_data = data.pop("data", None) or {}
            data["style"] = {
                "color": edge_data.get("color", legacy_style.get("stroke", DEFAULT_EDGE_COLOR)),
                "dashed": bool(edge_data.get("dashed", False)),
                "stroke_width": legacy_style.get("strokeWidth", DEFAULT_EDGE_STROKE_WIDTH),
            }
        elif isinstance(data.get("data"), dict) and "style" not in data:
            edge_data = data.pop("data")
            data["style"] = {
                "color": edge_data.get("color", DEFAULT_EDGE_COLOR),
                "dashed": bool(edge_data.get("dashed", False)),
            }
        return data

    @property
    def is_lateral(self) -> bool:
        """True for side edges (left/right target anchor)."""
        return self.target_anchor in (TargetAnchor.LEFT, TargetAnchor.RIGHT)


# --- Presets ---

class Preset(BaseModel):
    """A named, reusable sub-graph with positions normalized to (0, 0)."""
    id: str = Field(default_factory=generate_preset_id)
    name: str
    created_at: datetime = Field(default_factory=_utcnow)
    meta: dict[str, Any] = Field(default_factory=dict)
    nodes: list[Node] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)

    @model_validator(mode='before')
    @classmethod
    def convert_legacy_fields(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = _rename_keys(dict(data), {"createdAt": "created_at", "edges": "connections"})
        return data


# --- Snapshots and documents ---

class Snapshot(BaseModel):
    """
    Render-agnostic copy of the graph used for undo/redo and persistence.
    Build it through `orgchart_core.snapshot.capture`, never by hand.
    """
    nodes: list[Node] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)


class FileMeta(BaseModel):
    """Metadata block of an exported file."""
    app_name: str = APP_NAME
    schema_version: int = 1
    display_name: str = DEFAULT_FILE_NAME
    exported_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode='before')
    @classmethod
    def convert_legacy_fields(cls, data: Any) -> Any:
        """Older exports used app/version/fileName with a string version."""
        if isinstance(data, dict):
            data = _rename_keys(dict(data), {
                "app": "app_name",
                "version": "schema_version",
                "fileName": "display_name",
                "exportedAt": "exported_at",
            })
            try:
                data["schema_version"] = max(1, int(data.get("schema_version", 1)))
            except (TypeError, ValueError):
                data["schema_version"] = 1
        return data


class FlowDocument(BaseModel):
    """The export/import envelope."""
    meta: FileMeta = Field(default_factory=FileMeta)
    nodes: list[Node] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)
    presets: list[Preset] = Field(default_factory=list)

    @model_validator(mode='before')
    @classmethod
    def convert_legacy_fields(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = _rename_keys(dict(data), {"edges": "connections"})
        return data


class FlowState(BaseModel):
    """What the autosave store keeps between sessions."""
    nodes: list[Node] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)
    file_name: str = DEFAULT_FILE_NAME
    file_version: int = 1
    presets: list[Preset] = Field(default_factory=list)

    @model_validator(mode='before')
    @classmethod
    def convert_legacy_fields(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = _rename_keys(dict(data), {
                "edges": "connections",
                "fileName": "file_name",
                "fileVersion": "file_version",
            })
        return data


# --- Node change events (what a canvas reports while the user interacts) ---

class PositionChange(BaseModel):
    """A node moved. `dragging` is True mid-drag, False on release, None otherwise."""
    type: Literal["position"] = "position"
    id: str
    position: Optional[Position] = None
    dragging: Optional[bool] = None


class SelectChange(BaseModel):
    type: Literal["select"] = "select"
    id: str
    selected: bool


class DimensionsChange(BaseModel):
    """A node was measured or resized. `resizing` behaves like `dragging`."""
    type: Literal["dimensions"] = "dimensions"
    id: str
    width: Optional[float] = None
    height: Optional[float] = None
    resizing: Optional[bool] = None


class RemoveChange(BaseModel):
    type: Literal["remove"] = "remove"
    id: str


NodeChange = Annotated[
    Union[PositionChange, SelectChange, DimensionsChange, RemoveChange],
    Field(discriminator="type"),
]


# --- API Request/Response Models ---

class CreateNodeRequest(BaseModel):
    """Request to create a new node."""
    kind: NodeKind = NodeKind.PERSON
    x: float = 100
    y: float = 100
    data: Optional[dict[str, Any]] = None


class UpdateNodeDataRequest(BaseModel):
    """
    Request to merge fields into a node payload.

    `coalesce` batches the edit with the surrounding keystrokes; set it to
    False for one-shot changes such as picking a colour.
    """
    data: dict[str, Any]
    coalesce: bool = True


class CreateConnectionRequest(BaseModel):
    """Request to connect two nodes."""
    source: str
    target: str
    source_anchor: SourceAnchor = SourceAnchor.BOTTOM
    target_anchor: TargetAnchor = TargetAnchor.TOP

    @model_validator(mode='before')
    @classmethod
    def convert_legacy_fields(cls, data: Any) -> Any:
        """Accept from/to and React Flow handle ids."""
        if isinstance(data, dict):
            data = _rename_keys(dict(data), {"from": "source", "to": "target"})
            for handle_key, anchor_key in (("sourceHandle", "source_anchor"),
                                           ("targetHandle", "target_anchor")):
                if handle_key in data:
                    handle = data.pop(handle_key)
                    if anchor_key not in data and handle:
                        data[anchor_key] = _LEGACY_HANDLES.get(handle, handle)
        return data


class UpdateConnectionStyleRequest(BaseModel):
    """Request to update a connection's style (partial update)."""
    color: Optional[str] = None
    dashed: Optional[bool] = None
    stroke_width: Optional[float] = None


class NodeChangesRequest(BaseModel):
    """A batch of canvas change events."""
    changes: list[NodeChange]


class SelectNodesRequest(BaseModel):
    node_ids: list[str]


class FlowInfoRequest(BaseModel):
    """Request to update the file name and/or version."""
    file_name: Optional[str] = None
    file_version: Optional[int] = None


class RenamePresetRequest(BaseModel):
    name: str
