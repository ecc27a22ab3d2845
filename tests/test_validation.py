from orgchart_core.models import Connection, TargetAnchor
from orgchart_core.validation import IssueSeverity, validate_flow, validation_summary

from .helpers import person, section, side


def messages(issues, severity):
    return [i.message for i in issues if i.severity == severity]


def test_empty_flow_is_informational():
    issues = validate_flow([], [])
    assert len(issues) == 1
    assert issues[0].severity == IssueSeverity.INFO
    assert validation_summary(issues)["valid"]


def test_clean_tree_has_no_issues(graph):
    root, a, b = person(graph), person(graph), person(graph)
    graph.connect(root.id, a.id)
    graph.connect(root.id, b.id)
    side(graph, a, person(graph), TargetAnchor.RIGHT)

    assert validate_flow(graph.nodes, graph.connections) == []


def test_dangling_endpoints_are_errors(graph):
    a = person(graph)
    connections = [Connection(id="bad", source=a.id, target="ghost")]

    issues = validate_flow(graph.nodes, connections)

    errors = [i for i in issues if i.severity == IssueSeverity.ERROR]
    assert len(errors) == 1
    assert errors[0].connection_id == "bad"
    summary = validation_summary(issues)
    assert summary["errors"] == 1
    assert not summary["valid"]


def test_structural_warnings(graph):
    a, b, c = person(graph), person(graph), person(graph)
    graph.connect(a.id, b.id)
    graph.connect(b.id, c.id)
    graph.connect(c.id, a.id)
    graph.connect(a.id, c.id)
    connections = list(graph.connections) + [
        Connection(source=a.id, target=a.id),
        Connection(source=a.id, target=b.id),
    ]

    warnings = messages(validate_flow(graph.nodes, connections), IssueSeverity.WARNING)

    assert any("Self-referencing" in m for m in warnings)
    assert any("Duplicate connection" in m for m in warnings)
    assert any("hierarchical parents" in m for m in warnings)
    assert any("Hierarchy cycle" in m for m in warnings)


def test_connections_touching_sections_are_reported(graph):
    s, p = section(graph), person(graph)
    connection = graph.connect(s.id, p.id)

    issues = validate_flow(graph.nodes, graph.connections)

    assert [i.connection_id for i in issues] == [connection.id]
    assert issues[0].to_dict()["type"] == "info"
