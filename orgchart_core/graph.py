"""
Graph model - the canonical node and connection lists of one flow.

Pure CRUD with referential invariants:
- connection endpoints always reference existing nodes
- removing a node removes every connection touching it
- stack order follows the person/section policy after every node change

Every operation is total: an unknown id is ignored and reported through the
return value (None / False), never raised.
"""

from typing import Any, Iterable, Optional, Union

from .config import SECTION_MIN_HEIGHT, SECTION_MIN_WIDTH
from .models import (
    Connection,
    ConnectionStyle,
    NodeKind,
    PersonNode,
    Position,
    SectionNode,
    SourceAnchor,
    TargetAnchor,
    new_node,
    stack_order,
)

AnyNode = Union[PersonNode, SectionNode]


class FlowGraph:
    """
    Nodes and connections with O(1) id lookups.

    The lists keep insertion order (it drives draw order and layout
    tie-breaking); the indexes are rebuilt whenever a list is replaced
    wholesale.
    """

    def __init__(self, nodes: Optional[Iterable[AnyNode]] = None,
                 connections: Optional[Iterable[Connection]] = None):
        self.nodes: list[AnyNode] = []
        self.connections: list[Connection] = []

        self._node_index: dict[str, AnyNode] = {}
        self._connection_index: dict[str, Connection] = {}
        self._connections_by_node: dict[str, set[str]] = {}

        self.load(nodes or [], connections or [])

    # --- Index Management ---

    def _rebuild_indexes(self):
        """Rebuild all indexes from the current lists."""
        self._node_index = {n.id: n for n in self.nodes}
        self._connection_index.clear()
        self._connections_by_node.clear()
        for connection in self.connections:
            self._index_connection(connection)

    def _index_connection(self, connection: Connection):
        self._connection_index[connection.id] = connection
        self._connections_by_node.setdefault(connection.source, set()).add(connection.id)
        self._connections_by_node.setdefault(connection.target, set()).add(connection.id)

    def _unindex_connection(self, connection: Connection):
        self._connection_index.pop(connection.id, None)
        for node_id in (connection.source, connection.target):
            if node_id in self._connections_by_node:
                self._connections_by_node[node_id].discard(connection.id)

    def _apply_stack_order(self, node: AnyNode):
        node.z_index = stack_order(node)

    # --- Lookups ---

    def __len__(self) -> int:
        return len(self.nodes)

    def get_node(self, node_id: str) -> Optional[AnyNode]:
        """Get a node by ID (O(1) lookup)."""
        return self._node_index.get(node_id)

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        """Get a connection by ID (O(1) lookup)."""
        return self._connection_index.get(connection_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._node_index

    def connections_for_node(self, node_id: str) -> list[Connection]:
        """All connections touching a node, in list order."""
        ids = self._connections_by_node.get(node_id, set())
        return [c for c in self.connections if c.id in ids]

    def selected_nodes(self) -> list[AnyNode]:
        return [n for n in self.nodes if n.selected]

    def find_connection(self, source: str, target: str, source_anchor: SourceAnchor,
                        target_anchor: TargetAnchor) -> Optional[Connection]:
        """Find an existing connection with the same endpoints and anchors."""
        for connection_id in self._connections_by_node.get(source, set()):
            c = self._connection_index[connection_id]
            if (c.source == source and c.target == target
                    and c.source_anchor == source_anchor and c.target_anchor == target_anchor):
                return c
        return None

    # --- Wholesale replacement ---

    def load(self, nodes: Iterable[AnyNode], connections: Iterable[Connection]):
        """Replace the whole content. Dangling connections are dropped."""
        self.nodes = list(nodes)
        for node in self.nodes:
            self._apply_stack_order(node)
        node_ids = {n.id for n in self.nodes}
        self.connections = [
            c for c in connections if c.source in node_ids and c.target in node_ids
        ]
        self._rebuild_indexes()

    def replace_nodes(self, nodes: Iterable[AnyNode]):
        """Replace the node list in one step, keeping connections that still resolve."""
        self.load(nodes, self.connections)

    # --- Node Operations ---

    def add_node(self, kind: Union[NodeKind, str], position: Optional[Position] = None,
                 data: Optional[dict[str, Any]] = None) -> AnyNode:
        """Create a node with default payload (merged with `data`) and append it."""
        node = new_node(kind, position, data)
        self._apply_stack_order(node)
        self.nodes.append(node)
        self._node_index[node.id] = node
        return node

    def insert(self, nodes: Iterable[AnyNode], connections: Iterable[Connection]):
        """
        Append already-built nodes and connections (paste, presets).
        Connections whose endpoints do not exist afterwards are dropped.
        """
        for node in nodes:
            if node.id in self._node_index:
                continue
            self._apply_stack_order(node)
            self.nodes.append(node)
            self._node_index[node.id] = node
        for connection in connections:
            if connection.id in self._connection_index:
                continue
            if connection.source in self._node_index and connection.target in self._node_index:
                self.connections.append(connection)
                self._index_connection(connection)

    def remove_node(self, node_id: str) -> bool:
        """Delete a node and all connected connections."""
        node = self._node_index.pop(node_id, None)
        if node is None:
            return False

        self.nodes = [n for n in self.nodes if n.id != node_id]

        connected = self._connections_by_node.pop(node_id, set())
        if connected:
            for connection_id in connected:
                connection = self._connection_index.get(connection_id)
                if connection:
                    self._unindex_connection(connection)
            self.connections = [c for c in self.connections if c.id not in connected]
        return True

    def update_node_data(self, node_id: str, partial: dict[str, Any]) -> Optional[AnyNode]:
        """Merge fields into a node's payload (shallow merge, unknown keys kept)."""
        node = self._node_index.get(node_id)
        if node is None:
            return None
        merged = {**node.data.model_dump(), **partial}
        node.data = type(node.data).model_validate(merged)
        return node

    def set_node_position(self, node_id: str, position: Position) -> Optional[AnyNode]:
        node = self._node_index.get(node_id)
        if node is None:
            return None
        node.position = Position(x=position.x, y=position.y)
        return node

    def set_node_flags(self, node_id: str, **flags: Any) -> Optional[AnyNode]:
        """Set interaction-only fields (dragging, resizing, measured width/height)."""
        node = self._node_index.get(node_id)
        if node is None:
            return None
        for key, value in flags.items():
            setattr(node, key, value)
        return node

    def set_section_size(self, node_id: str, width: float, height: float) -> Optional[SectionNode]:
        """
        Resize a section, clamped to the minimum section size. Persons have a
        fixed card size and are ignored.
        """
        node = self._node_index.get(node_id)
        if not isinstance(node, SectionNode):
            return None
        node.data = node.data.model_copy(update={
            "width": max(SECTION_MIN_WIDTH, width),
            "height": max(SECTION_MIN_HEIGHT, height),
        })
        return node

    # --- Selection ---

    def set_selected(self, node_id: str, selected: bool) -> Optional[AnyNode]:
        node = self._node_index.get(node_id)
        if node is None:
            return None
        node.selected = selected
        self._apply_stack_order(node)
        return node

    def select_only(self, node_ids: Iterable[str]):
        """Make exactly the given nodes selected."""
        wanted = set(node_ids)
        for node in self.nodes:
            node.selected = node.id in wanted
            self._apply_stack_order(node)

    def deselect_all(self):
        self.select_only(())

    # --- Connection Operations ---

    def connect(self, source: str, target: str,
                source_anchor: SourceAnchor = SourceAnchor.BOTTOM,
                target_anchor: TargetAnchor = TargetAnchor.TOP,
                style: Optional[ConnectionStyle] = None) -> Optional[Connection]:
        """
        Connect two nodes. Returns None (and changes nothing) if an endpoint
        is missing or the same connection already exists.
        """
        if source not in self._node_index or target not in self._node_index:
            return None
        source_anchor = SourceAnchor(source_anchor)
        target_anchor = TargetAnchor(target_anchor)
        if self.find_connection(source, target, source_anchor, target_anchor):
            return None

        connection = Connection(
            source=source,
            target=target,
            source_anchor=source_anchor,
            target_anchor=target_anchor,
            style=style or ConnectionStyle(),
        )
        self.connections.append(connection)
        self._index_connection(connection)
        return connection

    def remove_connection(self, connection_id: str) -> bool:
        connection = self._connection_index.get(connection_id)
        if connection is None:
            return False
        self.connections = [c for c in self.connections if c.id != connection_id]
        self._unindex_connection(connection)
        return True

    def update_connection_style(self, connection_id: str,
                                partial: dict[str, Any]) -> Optional[Connection]:
        """Update only the provided (non-None) style fields."""
        connection = self._connection_index.get(connection_id)
        if connection is None:
            return None
        merged = connection.style.model_dump()
        merged.update({k: v for k, v in partial.items() if v is not None and k in merged})
        connection.style = ConnectionStyle.model_validate(merged)
        return connection
