"""
Auto-layout for org charts.

Only person nodes are laid out; sections are backdrops and keep their place.
Connections between two persons are split in two families:
- tree edges (target anchor top): drive a layered, top-to-bottom layout
- side edges (target anchor left/right): the target is stacked next to its
  source after the layered pass, dragging its own tree subtree along

The layered pass is a compact Sugiyama pipeline:
  1. Cycle breaking (reverse DFS back edges)
  2. Longest-path ranking from the roots
  3. Dummy nodes on edges spanning several ranks
  4. Crossing reduction (barycenter sweeps)
  5. Coordinate assignment (neighbour balancing under separation constraints)

Nothing here depends on the current node positions, only on topology and
node order, so running the layout twice gives the same result.
"""

import logging
from collections import defaultdict, deque
from typing import Iterable, Union

import networkx as nx

from .config import (
    LAYOUT_EDGE_SEP,
    LAYOUT_MARGIN_X,
    LAYOUT_MARGIN_Y,
    LAYOUT_NODE_SEP,
    LAYOUT_RANK_SEP,
    PERSON_NODE_HEIGHT,
    PERSON_NODE_WIDTH,
    SIDE_OFFSET_X,
    SIDE_STACK_GAP_Y,
    SIDE_START_Y,
)
from .models import Connection, PersonNode, Position, SectionNode, TargetAnchor

logger = logging.getLogger(__name__)

AnyNode = Union[PersonNode, SectionNode]

DUMMY_PREFIX = "__dummy__"
CROSSING_SWEEPS = 4
COORDINATE_PASSES = 8

# Side children hang on the opposite side of the anchor they use: the arrow
# leaves the parent's bottom, then turns towards the child's anchor.
SIDE_DIRECTION = {
    TargetAnchor.RIGHT: -1,  # enters the child's right side -> child on the left
    TargetAnchor.LEFT: 1,    # enters the child's left side -> child on the right
}


def classify_connections(
    nodes: Iterable[AnyNode],
    connections: Iterable[Connection],
) -> tuple[list[Connection], list[Connection]]:
    """
    Split person-to-person connections into tree edges and side edges.

    Connections touching a section are ignored.

    Returns:
        (tree_edges, side_edges), each in connection-list order
    """
    person_ids = {n.id for n in nodes if isinstance(n, PersonNode)}
    tree_edges: list[Connection] = []
    side_edges: list[Connection] = []
    for connection in connections:
        if connection.source not in person_ids or connection.target not in person_ids:
            continue
        if connection.is_lateral:
            side_edges.append(connection)
        else:
            tree_edges.append(connection)
    return tree_edges, side_edges


# --- Layered layout ---

def _acyclic_edges(order: list[str], edges: list[tuple[str, str]]) -> list[tuple[str, str]]:
    """Reverse the back edges found by a DFS in node order."""
    successors: dict[str, list[str]] = defaultdict(list)
    for source, target in edges:
        successors[source].append(target)

    state: dict[str, int] = {}  # 1 = on stack, 2 = finished
    back_edges: set[tuple[str, str]] = set()
    for start in order:
        if start in state:
            continue
        state[start] = 1
        stack = [(start, iter(successors[start]))]
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                state[node] = 2
                stack.pop()
            elif state.get(child) == 1:
                back_edges.add((node, child))
            elif child not in state:
                state[child] = 1
                stack.append((child, iter(successors[child])))

    result: list[tuple[str, str]] = []
    seen: set[tuple[str, str]] = set()
    for edge in edges:
        source, target = edge
        if edge in back_edges:
            source, target = target, source
        if (source, target) not in seen:
            seen.add((source, target))
            result.append((source, target))
    return result


def assign_ranks(order: list[str], edges: list[tuple[str, str]]) -> dict[str, int]:
    """
    Longest-path ranking: roots get rank 0, every other node sits one rank
    below its deepest parent. Cycles are broken first.
    """
    dag = nx.DiGraph()
    dag.add_nodes_from(order)
    dag.add_edges_from(_acyclic_edges(order, edges))

    index = {node_id: i for i, node_id in enumerate(order)}
    ranks: dict[str, int] = {}
    for node_id in nx.lexicographical_topological_sort(dag, key=index.__getitem__):
        ranks[node_id] = max((ranks[p] + 1 for p in dag.predecessors(node_id)), default=0)
    return ranks


def _build_layered_graph(
    order: list[str],
    edges: list[tuple[str, str]],
    ranks: dict[str, int],
) -> tuple[nx.DiGraph, dict[str, int]]:
    """Insert a dummy node on every rank crossed by a long edge."""
    graph = nx.DiGraph()
    graph.add_nodes_from(order, dummy=False)
    all_ranks = dict(ranks)

    for source, target in _acyclic_edges(order, edges):
        previous = source
        for step in range(1, ranks[target] - ranks[source]):
            dummy = f"{DUMMY_PREFIX}{source}->{target}:{step}"
            graph.add_node(dummy, dummy=True)
            all_ranks[dummy] = ranks[source] + step
            graph.add_edge(previous, dummy)
            previous = dummy
        graph.add_edge(previous, target)
    return graph, all_ranks


def _initial_order(graph: nx.DiGraph, order: list[str], ranks: dict[str, int]) -> list[list[str]]:
    """DFS from the roots so that siblings start out next to each other."""
    layers: list[list[str]] = [[] for _ in range(max(ranks.values()) + 1)]
    index = {node_id: i for i, node_id in enumerate(order)}
    visited: set[str] = set()
    for start in sorted(order, key=lambda n: (ranks[n], index[n])):
        stack = [start]
        while stack:
            node_id = stack.pop()
            if node_id in visited:
                continue
            visited.add(node_id)
            layers[ranks[node_id]].append(node_id)
            stack.extend(reversed(list(graph.successors(node_id))))
    return layers


def count_crossings(graph: nx.DiGraph, layers: list[list[str]]) -> int:
    """Number of edge crossings between consecutive layers."""
    total = 0
    for upper, lower in zip(layers, layers[1:]):
        lower_pos = {node_id: i for i, node_id in enumerate(lower)}
        segments = [
            (i, lower_pos[child])
            for i, node_id in enumerate(upper)
            for child in graph.successors(node_id)
            if child in lower_pos
        ]
        for a in range(len(segments)):
            for b in range(a + 1, len(segments)):
                (u1, l1), (u2, l2) = segments[a], segments[b]
                if (u1 - u2) * (l1 - l2) < 0:
                    total += 1
    return total


def _barycenter_order(layer: list[str], fixed: list[str], neighbours) -> list[str]:
    """
    Sort a layer by the mean position of each node's neighbours in the fixed
    layer. Nodes without such neighbours keep their slot.
    """
    fixed_pos = {node_id: i for i, node_id in enumerate(fixed)}
    sortable = []
    result: list = [None] * len(layer)
    for i, node_id in enumerate(layer):
        positions = [fixed_pos[n] for n in neighbours(node_id) if n in fixed_pos]
        if positions:
            sortable.append((sum(positions) / len(positions), i, node_id))
        else:
            result[i] = node_id
    sortable.sort()
    queue = deque(node_id for _, _, node_id in sortable)
    for i in range(len(result)):
        if result[i] is None:
            result[i] = queue.popleft()
    return result


def minimize_crossings(graph: nx.DiGraph, layers: list[list[str]]) -> list[list[str]]:
    """Alternate down/up barycenter sweeps, keeping the best ordering seen."""
    best = [list(layer) for layer in layers]
    best_crossings = count_crossings(graph, best)
    current = [list(layer) for layer in layers]

    for _ in range(CROSSING_SWEEPS):
        if best_crossings == 0:
            break
        for r in range(1, len(current)):
            current[r] = _barycenter_order(current[r], current[r - 1], graph.predecessors)
        for r in range(len(current) - 2, -1, -1):
            current[r] = _barycenter_order(current[r], current[r + 1], graph.successors)
        crossings = count_crossings(graph, current)
        if crossings < best_crossings:
            best = [list(layer) for layer in current]
            best_crossings = crossings
    return best


def _place_layer(layer: list[str], desired: dict[str, float], gaps: list[float]) -> dict[str, float]:
    """
    Closest placement to `desired` (least squares) that keeps every
    neighbour pair at least its gap apart, preserving order.
    Pool-adjacent-violators over the gap-shifted targets.
    """
    offsets = [0.0]
    for gap in gaps:
        offsets.append(offsets[-1] + gap)

    blocks: list[list[float]] = []  # [sum, count]
    for node_id, offset in zip(layer, offsets):
        blocks.append([desired[node_id] - offset, 1])
        while len(blocks) > 1 and blocks[-2][0] / blocks[-2][1] > blocks[-1][0] / blocks[-1][1]:
            total, count = blocks.pop()
            blocks[-1][0] += total
            blocks[-1][1] += count

    placed: dict[str, float] = {}
    i = 0
    for total, count in blocks:
        value = total / count
        for _ in range(int(count)):
            placed[layer[i]] = value + offsets[i]
            i += 1
    return placed


def layered_layout(
    order: list[str],
    sizes: dict[str, tuple[float, float]],
    edges: list[tuple[str, str]],
    rank_sep: float = LAYOUT_RANK_SEP,
    node_sep: float = LAYOUT_NODE_SEP,
    edge_sep: float = LAYOUT_EDGE_SEP,
    margin_x: float = LAYOUT_MARGIN_X,
    margin_y: float = LAYOUT_MARGIN_Y,
) -> dict[str, tuple[float, float]]:
    """
    Top-to-bottom layered layout.

    Args:
        order: Node ids; their order breaks every tie
        sizes: (width, height) per node id
        edges: Directed (source, target) pairs; self loops are ignored
        rank_sep: Vertical gap between ranks
        node_sep: Horizontal gap between neighbouring nodes
        edge_sep: Horizontal gap around dummy nodes
        margin_x: Left margin of the whole drawing
        margin_y: Top margin of the whole drawing

    Returns:
        Centre (x, y) of every node in `order`
    """
    if not order:
        return {}

    known = set(order)
    edges = [(s, t) for s, t in edges if s != t and s in known and t in known]

    ranks = assign_ranks(order, edges)
    graph, all_ranks = _build_layered_graph(order, edges, ranks)
    layers = minimize_crossings(graph, _initial_order(graph, order, all_ranks))

    def width(node_id: str) -> float:
        return 0.0 if graph.nodes[node_id]["dummy"] else sizes[node_id][0]

    def sep(node_id: str) -> float:
        return edge_sep if graph.nodes[node_id]["dummy"] else node_sep

    gaps = [
        [(width(a) + width(b)) / 2 + (sep(a) + sep(b)) / 2 for a, b in zip(layer, layer[1:])]
        for layer in layers
    ]

    # Start packed from the left, then balance against neighbours
    x: dict[str, float] = {}
    for layer, layer_gaps in zip(layers, gaps):
        x.update(_place_layer(layer, {n: 0.0 for n in layer}, layer_gaps))

    def balance(r: int, neighbours) -> None:
        desired = {}
        for node_id in layers[r]:
            linked = [x[n] for n in neighbours(node_id)]
            desired[node_id] = sum(linked) / len(linked) if linked else x[node_id]
        x.update(_place_layer(layers[r], desired, gaps[r]))

    for _ in range(COORDINATE_PASSES):
        for r in range(1, len(layers)):
            balance(r, graph.predecessors)
        for r in range(len(layers) - 2, -1, -1):
            balance(r, graph.successors)

    # Rank heights come from real nodes only
    heights = [max((sizes[n][1] for n in layer if n in known), default=0.0) for layer in layers]
    centre_y = []
    top = float(margin_y)
    for height in heights:
        centre_y.append(top + height / 2)
        top += height + rank_sep

    shift = margin_x - min(x[n] - sizes[n][0] / 2 for n in order)
    return {n: (x[n] + shift, centre_y[ranks[n]]) for n in order}


# --- Side children ---

def tree_descendants(node_id: str, tree_children: dict[str, list[str]]) -> list[str]:
    """
    Every node reachable from `node_id` through tree edges, each listed once,
    the start node excluded (cycles and diamonds collapse to one visit).
    """
    visited = {node_id}
    result: list[str] = []
    stack = list(reversed(tree_children.get(node_id, [])))
    while stack:
        child = stack.pop()
        if child in visited:
            continue
        visited.add(child)
        result.append(child)
        stack.extend(reversed(tree_children.get(child, [])))
    return result


def _processing_order(persons: list[PersonNode], person_edges: list[Connection]) -> list[str]:
    """
    Breadth-first from the roots (persons without an incoming person
    connection), then every unreached person in node order.
    """
    children: dict[str, list[str]] = defaultdict(list)
    has_parent: set[str] = set()
    for connection in person_edges:
        children[connection.source].append(connection.target)
        has_parent.add(connection.target)

    visited: set[str] = set()
    order: list[str] = []
    queue = deque(p.id for p in persons if p.id not in has_parent)
    while queue:
        node_id = queue.popleft()
        if node_id in visited:
            continue
        visited.add(node_id)
        order.append(node_id)
        queue.extend(c for c in children[node_id] if c not in visited)

    order.extend(p.id for p in persons if p.id not in visited)
    return order


def place_side_children(
    positions: dict[str, Position],
    process_order: list[str],
    tree_edges: list[Connection],
    side_edges: list[Connection],
) -> dict[str, Position]:
    """
    Stack side children next to their parent and move their tree subtrees
    by the same delta. `positions` is updated in place and returned.
    """
    tree_children: dict[str, list[str]] = defaultdict(list)
    for connection in tree_edges:
        tree_children[connection.source].append(connection.target)

    side_children: dict[str, dict[TargetAnchor, list[str]]] = {}
    for connection in side_edges:
        sides = side_children.setdefault(
            connection.source, {TargetAnchor.RIGHT: [], TargetAnchor.LEFT: []}
        )
        sides[connection.target_anchor].append(connection.target)

    def reposition(child_id: str, new_position: Position) -> None:
        old = positions[child_id]
        dx = new_position.x - old.x
        dy = new_position.y - old.y
        positions[child_id] = new_position
        for descendant in tree_descendants(child_id, tree_children):
            moved = positions[descendant]
            positions[descendant] = Position(x=moved.x + dx, y=moved.y + dy)

    for parent_id in process_order:
        sides = side_children.get(parent_id)
        if not sides:
            continue
        parent = positions[parent_id]
        for anchor in (TargetAnchor.RIGHT, TargetAnchor.LEFT):
            for i, child_id in enumerate(sides[anchor]):
                reposition(child_id, Position(
                    x=parent.x + SIDE_DIRECTION[anchor] * SIDE_OFFSET_X,
                    y=parent.y + PERSON_NODE_HEIGHT + SIDE_START_Y
                    + i * (PERSON_NODE_HEIGHT + SIDE_STACK_GAP_Y),
                ))
    return positions


# --- Entry points ---

def compute_layout(nodes: list[AnyNode], connections: list[Connection]) -> dict[str, Position]:
    """
    New top-left position of every person node.

    Args:
        nodes: All nodes of the flow (sections are ignored)
        connections: All connections of the flow

    Returns:
        Mapping person id -> Position
    """
    persons = [n for n in nodes if isinstance(n, PersonNode)]
    if not persons:
        return {}

    tree_edges, side_edges = classify_connections(nodes, connections)
    tree_parented = {c.target for c in tree_edges}
    side_only = {c.target for c in side_edges} - tree_parented

    # Exclusive side children get a negligible footprint in the layered pass
    sizes = {
        p.id: (1.0, 1.0) if p.id in side_only else (float(PERSON_NODE_WIDTH), float(PERSON_NODE_HEIGHT))
        for p in persons
    }
    order = [p.id for p in persons]
    centres = layered_layout(order, sizes, [(c.source, c.target) for c in tree_edges])

    positions = {
        node_id: Position(x=cx - PERSON_NODE_WIDTH / 2, y=cy - PERSON_NODE_HEIGHT / 2)
        for node_id, (cx, cy) in centres.items()
    }

    person_ids = set(order)
    person_edges = [c for c in connections if c.source in person_ids and c.target in person_ids]
    process_order = _processing_order(persons, person_edges)
    place_side_children(positions, process_order, tree_edges, side_edges)
    logger.debug("layout: %d persons, %d tree edges, %d side edges",
                 len(persons), len(tree_edges), len(side_edges))
    return positions


def auto_layout(nodes: list[AnyNode], connections: list[Connection]) -> list[AnyNode]:
    """
    Lay out the person nodes of a flow.

    Returns a new node list (sections first, untouched, then the persons
    with their new positions) meant to replace the graph's list in one go.
    Input nodes are not modified.
    """
    positions = compute_layout(nodes, connections)
    sections = [n.model_copy(deep=True) for n in nodes if isinstance(n, SectionNode)]
    persons = [
        n.model_copy(deep=True, update={"position": positions[n.id]})
        for n in nodes if isinstance(n, PersonNode)
    ]
    return [*sections, *persons]
