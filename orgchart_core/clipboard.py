"""
Clipboard and presets - moving sub-graphs around.

Both features work on the same unit: a set of nodes plus the connections
whose two endpoints are inside that set. Re-inserting such a unit always
gives every node a fresh id and rewrites connection endpoints through the
old-id -> new-id map, so nothing inserted ever aliases live content.
"""

import random
from typing import Iterable, Optional, Union

from .config import (
    PASTE_OFFSET,
    PRESET_BASE_X,
    PRESET_BASE_Y,
    PRESET_JITTER_X,
    PRESET_JITTER_Y,
)
from .context import Clipboard, InteractionContext
from .graph import FlowGraph
from .models import (
    Connection,
    PersonNode,
    Position,
    Preset,
    SectionNode,
    generate_connection_id,
    generate_node_id,
)
from .snapshot import project_connection, project_node

AnyNode = Union[PersonNode, SectionNode]


def extract_selection(graph: FlowGraph) -> tuple[list[AnyNode], list[Connection]]:
    """Deep copies of the selected nodes and of the connections strictly between them."""
    selected = graph.selected_nodes()
    selected_ids = {n.id for n in selected}
    internal = [
        c for c in graph.connections
        if c.source in selected_ids and c.target in selected_ids
    ]
    return [project_node(n) for n in selected], [project_connection(c) for c in internal]


def remap(
    nodes: Iterable[AnyNode],
    connections: Iterable[Connection],
    dx: float,
    dy: float,
    select: bool = False,
) -> tuple[list[AnyNode], list[Connection]]:
    """
    Copy a sub-graph with fresh ids, shifted by (dx, dy).

    Connections with an endpoint outside the sub-graph are dropped.
    """
    id_map: dict[str, str] = {}
    new_nodes: list[AnyNode] = []
    for node in nodes:
        new_id = generate_node_id()
        id_map[node.id] = new_id
        new_nodes.append(project_node(node).model_copy(update={
            "id": new_id,
            "position": Position(x=node.position.x + dx, y=node.position.y + dy),
            "selected": select,
        }))

    new_connections = [
        project_connection(c).model_copy(update={
            "id": generate_connection_id(),
            "source": id_map[c.source],
            "target": id_map[c.target],
        })
        for c in connections
        if c.source in id_map and c.target in id_map
    ]
    return new_nodes, new_connections


def _insert_group(graph: FlowGraph, nodes: list[AnyNode], connections: list[Connection]):
    # A multi-node insertion becomes the new selection
    if len(nodes) > 1:
        graph.deselect_all()
    graph.insert(nodes, connections)


# --- Clipboard ---

def copy_selection(graph: FlowGraph, context: InteractionContext) -> int:
    """
    Copy the selection into the clipboard. An empty selection leaves the
    clipboard untouched.

    Returns:
        Number of nodes copied
    """
    nodes, connections = extract_selection(graph)
    if not nodes:
        return 0
    context.clipboard = Clipboard(nodes=nodes, connections=connections)
    return len(nodes)


def paste(graph: FlowGraph, context: InteractionContext,
          offset: float = PASTE_OFFSET) -> list[AnyNode]:
    """
    Insert the clipboard content shifted by `offset` on both axes.

    The clipboard's own positions move by the same offset afterwards, so
    repeated pastes fan out diagonally.

    Returns:
        The inserted nodes (empty if the clipboard is empty)
    """
    clipboard = context.clipboard
    if clipboard.is_empty:
        return []

    nodes, connections = remap(
        clipboard.nodes, clipboard.connections, offset, offset,
        select=len(clipboard.nodes) > 1,
    )
    _insert_group(graph, nodes, connections)

    for node in clipboard.nodes:
        node.position = Position(x=node.position.x + offset, y=node.position.y + offset)
    return nodes


# --- Presets ---

def build_preset(graph: FlowGraph, existing_count: int) -> Optional[Preset]:
    """
    Turn the selection into a preset, positions normalized to the
    selection's bounding-box minimum. Returns None without a selection.
    """
    nodes, connections = extract_selection(graph)
    if not nodes:
        return None

    min_x = min(n.position.x for n in nodes)
    min_y = min(n.position.y for n in nodes)
    for node in nodes:
        node.position = Position(x=node.position.x - min_x, y=node.position.y - min_y)

    return Preset(
        name=f"Preset {existing_count + 1}",
        nodes=nodes,
        connections=connections,
    )


def apply_preset(graph: FlowGraph, preset: Preset,
                 rng: Optional[random.Random] = None) -> list[AnyNode]:
    """
    Insert a copy of a preset around (PRESET_BASE_X, PRESET_BASE_Y) plus a
    random jitter, so repeated insertions do not overlap exactly.
    The preset itself is never modified.

    Returns:
        The inserted nodes (empty for an empty preset)
    """
    if not preset.nodes:
        return []
    rng = rng or random.Random()
    base_x = PRESET_BASE_X + rng.random() * PRESET_JITTER_X
    base_y = PRESET_BASE_Y + rng.random() * PRESET_JITTER_Y

    nodes, connections = remap(
        preset.nodes, preset.connections, base_x, base_y,
        select=len(preset.nodes) > 1,
    )
    _insert_group(graph, nodes, connections)
    return nodes
