"""
Flow validation - import payload checks and structural issue reports.

`check_import_payload` guards the destructive import path: anything it
rejects leaves the open flow untouched. `validate_flow` is advisory only;
it reports problems but never blocks a mutation.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import networkx as nx

if TYPE_CHECKING:
    from .models import Connection, PersonNode, SectionNode


class ImportRejected(ValueError):
    """Raised when an import payload does not have the expected shape."""


class IssueSeverity(str, Enum):
    """Severity levels for validation issues."""
    ERROR = "error"      # Invalid state, must be fixed
    WARNING = "warning"  # Potential problem, should review
    INFO = "info"        # Informational, may be intentional


@dataclass
class ValidationIssue:
    """A single validation issue found in a flow."""
    severity: IssueSeverity
    message: str
    node_id: str | None = None
    connection_id: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        result = {
            "type": self.severity.value,
            "message": self.message
        }
        if self.node_id:
            result["node_id"] = self.node_id
        if self.connection_id:
            result["connection_id"] = self.connection_id
        return result


def check_import_payload(payload: Any) -> dict:
    """
    Check the shape of an import payload before anything is replaced.

    The payload must be an object whose `nodes` and `connections` (or the
    older `edges`) are lists. Entry-level problems are left to the models.

    Returns:
        The payload as a dict

    Raises:
        ImportRejected: if the payload cannot be a flow document
    """
    if not isinstance(payload, dict):
        raise ImportRejected("Import payload must be a JSON object")
    if not isinstance(payload.get("nodes"), list):
        raise ImportRejected("Import payload has no 'nodes' list")
    connections = payload.get("connections", payload.get("edges"))
    if not isinstance(connections, list):
        raise ImportRejected("Import payload has no 'connections' list")
    return payload


def validate_flow(
    nodes: "list[PersonNode | SectionNode]",
    connections: "list[Connection]",
) -> list[ValidationIssue]:
    """
    Validate a flow and return a list of issues.

    Checks for:
    - Empty flow - INFO
    - Connection endpoints that do not exist - ERROR
    - Self-referencing connections - WARNING
    - Duplicate connections (same endpoints and anchors) - WARNING
    - Persons with more than one hierarchical parent - WARNING
    - Cycles among hierarchical connections - WARNING
    - Connections touching a section - INFO
    """
    issues: list[ValidationIssue] = []

    if not nodes:
        issues.append(ValidationIssue(
            severity=IssueSeverity.INFO,
            message="Flow has no nodes"
        ))
        return issues

    node_ids = {n.id for n in nodes}
    person_ids = {n.id for n in nodes if n.type == "person"}
    section_ids = node_ids - person_ids

    for connection in connections:
        for role, endpoint in (("source", connection.source), ("target", connection.target)):
            if endpoint not in node_ids:
                issues.append(ValidationIssue(
                    severity=IssueSeverity.ERROR,
                    message=f"Connection references non-existent {role} node: {endpoint}",
                    connection_id=connection.id
                ))

    for connection in connections:
        if connection.source == connection.target:
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message="Self-referencing connection (node points to itself)",
                connection_id=connection.id,
                node_id=connection.source
            ))

    seen: set[tuple] = set()
    for connection in connections:
        key = (connection.source, connection.target,
               connection.source_anchor, connection.target_anchor)
        if key in seen:
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message=f"Duplicate connection from {connection.source} to {connection.target}",
                connection_id=connection.id
            ))
        else:
            seen.add(key)

    # Hierarchy checks only look at person-to-person top-anchored connections
    tree = nx.DiGraph()
    tree.add_nodes_from(sorted(person_ids))
    parents: dict[str, list[str]] = {}
    for connection in connections:
        if connection.is_lateral:
            continue
        if connection.source in person_ids and connection.target in person_ids:
            tree.add_edge(connection.source, connection.target)
            parents.setdefault(connection.target, []).append(connection.source)

    for node_id, node_parents in parents.items():
        distinct = sorted(set(node_parents))
        if len(distinct) > 1:
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message=f"Node has {len(distinct)} hierarchical parents: {', '.join(distinct)}",
                node_id=node_id
            ))

    for component in nx.strongly_connected_components(tree):
        if len(component) > 1:
            members = sorted(component)
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message=f"Hierarchy cycle between: {', '.join(members)}",
                node_id=members[0]
            ))

    for connection in connections:
        if connection.source in section_ids or connection.target in section_ids:
            issues.append(ValidationIssue(
                severity=IssueSeverity.INFO,
                message="Connection touches a section and is ignored by auto-layout",
                connection_id=connection.id
            ))

    return issues


def validation_summary(issues: list[ValidationIssue]) -> dict:
    """
    Create a summary of validation issues.

    Returns:
        Dictionary with counts by severity
    """
    errors = len([i for i in issues if i.severity == IssueSeverity.ERROR])
    return {
        "total": len(issues),
        "errors": errors,
        "warnings": len([i for i in issues if i.severity == IssueSeverity.WARNING]),
        "info": len([i for i in issues if i.severity == IssueSeverity.INFO]),
        "valid": errors == 0
    }
