"""
Org-chart Core - models, graph, history, layout, clipboard and persistence.

This package is the single source of truth for flow logic; the backend
service only wires it to HTTP and WebSocket clients.
"""

from .models import (
    # Enums
    NodeKind,
    SourceAnchor,
    TargetAnchor,
    # Core models
    Position,
    PersonData,
    SectionData,
    PersonNode,
    SectionNode,
    Node,
    ConnectionStyle,
    Connection,
    Preset,
    Snapshot,
    FileMeta,
    FlowDocument,
    FlowState,
    # Canvas events
    PositionChange,
    SelectChange,
    DimensionsChange,
    RemoveChange,
    NodeChange,
)

from .graph import FlowGraph
from .history import HistoryManager
from .scheduler import Scheduler, ManualScheduler, AsyncioScheduler
from .snapshot import capture, materialize, snapshots_equal
from .layout import auto_layout, compute_layout, classify_connections
from .persistence import FlowStore, build_export, parse_import, export_file_name
from .validation import validate_flow, ValidationIssue, IssueSeverity, ImportRejected

__all__ = [
    # Enums
    "NodeKind",
    "SourceAnchor",
    "TargetAnchor",
    # Models
    "Position",
    "PersonData",
    "SectionData",
    "PersonNode",
    "SectionNode",
    "Node",
    "ConnectionStyle",
    "Connection",
    "Preset",
    "Snapshot",
    "FileMeta",
    "FlowDocument",
    "FlowState",
    # Canvas events
    "PositionChange",
    "SelectChange",
    "DimensionsChange",
    "RemoveChange",
    "NodeChange",
    # Engine
    "FlowGraph",
    "HistoryManager",
    "Scheduler",
    "ManualScheduler",
    "AsyncioScheduler",
    "capture",
    "materialize",
    "snapshots_equal",
    # Layout
    "auto_layout",
    "compute_layout",
    "classify_connections",
    # Persistence
    "FlowStore",
    "build_export",
    "parse_import",
    "export_file_name",
    # Validation
    "validate_flow",
    "ValidationIssue",
    "IssueSeverity",
    "ImportRejected",
]
