from orgchart_core.models import NodeKind, Position, TargetAnchor


def person(graph, x=0, y=0, **data):
    """Add a person node to a FlowGraph."""
    return graph.add_node(NodeKind.PERSON, Position(x=x, y=y), data or None)


def section(graph, x=0, y=0, **data):
    return graph.add_node(NodeKind.SECTION, Position(x=x, y=y), data or None)


def side(graph, parent, child, anchor=TargetAnchor.LEFT):
    return graph.connect(parent.id, child.id, target_anchor=anchor)
