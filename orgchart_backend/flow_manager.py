"""
Flow Manager - the single mutation path for one open org-chart flow.

This module implements:
- Graph mutations wrapped in history (discrete operations, drag and resize
  gestures, coalesced text edits)
- Auto-layout, clipboard and presets
- Autosave, export/import, reset and file name/version bookkeeping
- Change callbacks for real-time sync

Every entry point runs to completion synchronously; the only deferred work
is the text-edit quiet period and the autosave debounce, both driven by the
injected Scheduler.
"""

import logging
import math
import random
from typing import Any, Callable, Iterable, Optional, Union

from orgchart_core import clipboard, layout
from orgchart_core.config import DEFAULT_FILE_NAME, EDIT_COMMIT_DELAY_MS, UNDO_LIMIT
from orgchart_core.context import InteractionContext
from orgchart_core.graph import FlowGraph
from orgchart_core.history import GESTURE_DRAG, GESTURE_RESIZE, HistoryManager
from orgchart_core.models import (
    Connection,
    ConnectionStyle,
    DimensionsChange,
    FlowDocument,
    FlowState,
    NodeKind,
    PersonNode,
    Position,
    PositionChange,
    Preset,
    RemoveChange,
    SectionNode,
    SelectChange,
    Snapshot,
    SourceAnchor,
    TargetAnchor,
)
from orgchart_core.persistence import FlowStore, build_export, export_file_name, parse_import
from orgchart_core.scheduler import ManualScheduler, Scheduler
from orgchart_core.snapshot import capture, materialize, snapshot_from_value
from orgchart_core.validation import ValidationIssue, validate_flow

logger = logging.getLogger(__name__)

AnyNode = Union[PersonNode, SectionNode]
Confirmation = Union[bool, Callable[[], bool]]


def _confirmed(confirm: Confirmation) -> bool:
    return bool(confirm() if callable(confirm) else confirm)


class FlowManager:
    """
    Manages one flow's graph, history, presets and persistence.

    The history works on snapshots of the graph (nodes and connections).
    Presets, the file name and the file version are persisted with the
    flow but are not part of the undo history.
    """

    def __init__(
        self,
        scheduler: Optional[Scheduler] = None,
        store: Optional[FlowStore] = None,
        rng: Optional[random.Random] = None,
        undo_limit: int = UNDO_LIMIT,
        edit_delay_ms: float = EDIT_COMMIT_DELAY_MS,
    ):
        self._scheduler = scheduler or ManualScheduler()
        self._store = store
        self._rng = rng or random.Random()

        self.graph = FlowGraph()
        self.context = InteractionContext()
        self.history = HistoryManager(
            capture=self.serialize,
            restore=self._restore_graph,
            scheduler=self._scheduler,
            context=self.context,
            limit=undo_limit,
            edit_delay_ms=edit_delay_ms,
        )
        self.history.on_edit_committed = self._save

        self.presets: list[Preset] = []
        self.file_name: str = DEFAULT_FILE_NAME
        self.file_version: int = 1

        self._on_change_callbacks: list[Callable] = []

    # --- Properties ---

    @property
    def nodes(self) -> list[AnyNode]:
        return self.graph.nodes

    @property
    def connections(self) -> list[Connection]:
        return self.graph.connections

    @property
    def can_undo(self) -> bool:
        """Check if undo is available."""
        return self.history.can_undo

    @property
    def can_redo(self) -> bool:
        """Check if redo is available."""
        return self.history.can_redo

    # --- Change Callbacks ---

    def on_change(self, callback: Callable):
        """Register a callback for flow changes."""
        self._on_change_callbacks.append(callback)

    def _notify_change(self):
        """Notify all registered callbacks of a change."""
        for callback in self._on_change_callbacks:
            callback()

    def _save(self):
        if self._store is not None:
            self._store.save_later(self.flow_state())

    def _changed(self, save: bool = True):
        if save:
            self._save()
        self._notify_change()

    # --- History plumbing ---

    def _discrete(self, mutate: Callable[[], Any]) -> Any:
        """Run one discrete operation: at most one history entry, saved immediately."""
        before = self.history.checkpoint()
        result = mutate()
        self.history.commit_if_changed(before)
        self._changed()
        return result

    def _restore_graph(self, snapshot: Snapshot):
        nodes, connections = materialize(snapshot)
        self.graph.load(nodes, connections)

    def undo(self) -> bool:
        """Undo the last action."""
        if not self.history.undo():
            return False
        self._changed()
        return True

    def redo(self) -> bool:
        """Redo the last undone action."""
        if not self.history.redo():
            return False
        self._changed()
        return True

    def flush(self):
        """Commit pending batches and write any pending autosave (shutdown)."""
        if self.history.flush():
            self._save()
        if self._store is not None:
            self._store.flush()

    # --- Node Operations ---

    def add_node(self, kind: Union[NodeKind, str] = NodeKind.PERSON,
                 position: Optional[Position] = None,
                 data: Optional[dict[str, Any]] = None) -> AnyNode:
        """Add a new person or section node."""
        return self._discrete(lambda: self.graph.add_node(kind, position, data))

    def remove_node(self, node_id: str) -> bool:
        """Delete a node and every connection touching it."""
        if not self.graph.has_node(node_id):
            return False
        return self._discrete(lambda: self.graph.remove_node(node_id))

    def remove_nodes(self, node_ids: Iterable[str]) -> int:
        """Delete several nodes as one operation. Returns how many existed."""
        node_ids = [i for i in node_ids if self.graph.has_node(i)]
        if not node_ids:
            return 0
        return self._discrete(lambda: sum(self.graph.remove_node(i) for i in node_ids))

    def update_node_data(self, node_id: str, partial: dict[str, Any],
                         coalesce: bool = True) -> Optional[AnyNode]:
        """
        Merge fields into a node's payload.

        With `coalesce` the edit joins the current typing burst: the burst
        becomes one history entry once no edit arrived for the quiet period.
        Without it the edit is a discrete operation (colour pick, toggle).
        """
        if not self.graph.has_node(node_id):
            return None
        if not coalesce:
            return self._discrete(lambda: self.graph.update_node_data(node_id, partial))

        self.history.begin_edit()
        node = self.graph.update_node_data(node_id, partial)
        # Saved by the quiet-period commit
        self._changed(save=False)
        return node

    def move_node(self, node_id: str, x: float, y: float) -> Optional[AnyNode]:
        """Set a node's position as one discrete operation."""
        if not self.graph.has_node(node_id):
            return None
        return self._discrete(lambda: self.graph.set_node_position(node_id, Position(x=x, y=y)))

    def get_node(self, node_id: str) -> Optional[AnyNode]:
        return self.graph.get_node(node_id)

    # --- Canvas events ---

    def apply_node_changes(self, changes: Iterable) -> bool:
        """
        Apply a batch of canvas change events.

        A position change with `dragging=True` starts (or continues) a drag,
        `dragging=False` ends it; the whole drag is one history entry.
        Dimension changes with `resizing` work the same way for section
        resizing. Removals are a discrete operation, and a bare position
        change outside any gesture is a discrete move. Selection and
        measured sizes never reach the history.

        Returns:
            True if any event referenced an existing node
        """
        changes = list(changes)
        removed = [c.id for c in changes if isinstance(c, RemoveChange)]
        if removed:
            self.remove_nodes(removed)
        changes = [c for c in changes if not isinstance(c, RemoveChange)]
        if not changes:
            return bool(removed)

        known = [c for c in changes if self.graph.has_node(c.id)]
        drag_started = any(isinstance(c, PositionChange) and c.dragging for c in known)
        drag_ended = any(isinstance(c, PositionChange) and c.dragging is False for c in changes)
        resize_started = any(isinstance(c, DimensionsChange) and c.resizing for c in known)
        resize_ended = any(isinstance(c, DimensionsChange) and c.resizing is False for c in changes)
        bare_move = any(
            isinstance(c, PositionChange) and c.dragging is None and c.position is not None
            for c in known
        )

        before = None
        if bare_move and not (drag_started or resize_started or self.context.gesture_snapshots):
            before = self.history.checkpoint()
        if drag_started:
            self.history.begin_gesture(GESTURE_DRAG)
        if resize_started:
            self.history.begin_gesture(GESTURE_RESIZE)

        touched = False
        for change in changes:
            touched = self._apply_change(change) or touched

        if before is not None:
            self.history.commit_if_changed(before)
        if drag_ended:
            self.history.end_gesture(GESTURE_DRAG)
        if resize_ended:
            self.history.end_gesture(GESTURE_RESIZE)

        # Mid-gesture frames are saved once the gesture ends
        self._changed(save=not self.context.gesture_snapshots)
        return touched or bool(removed)

    def _apply_change(self, change) -> bool:
        if isinstance(change, PositionChange):
            node = self.graph.set_node_flags(change.id, dragging=bool(change.dragging))
            if node is not None and change.position is not None:
                self.graph.set_node_position(change.id, change.position)
            return node is not None
        if isinstance(change, SelectChange):
            return self.graph.set_selected(change.id, change.selected) is not None
        if isinstance(change, DimensionsChange):
            node = self.graph.set_node_flags(change.id, resizing=bool(change.resizing))
            if node is None:
                return False
            if change.width is not None and change.height is not None:
                self.graph.set_node_flags(change.id, width=change.width, height=change.height)
                if change.resizing is not None:
                    self.graph.set_section_size(change.id, change.width, change.height)
            return True
        raise TypeError(f"Unknown node change: {change!r}")

    def select_nodes(self, node_ids: Iterable[str]):
        """Replace the selection. Not part of the history."""
        self.graph.select_only(node_ids)
        self._changed(save=False)

    def delete_selection(self) -> int:
        """Delete the selected nodes and selected connections as one operation."""
        node_ids = [n.id for n in self.graph.selected_nodes()]
        connection_ids = [c.id for c in self.graph.connections if c.selected]
        if not node_ids and not connection_ids:
            return 0

        def mutate():
            for node_id in node_ids:
                self.graph.remove_node(node_id)
            for connection_id in connection_ids:
                self.graph.remove_connection(connection_id)
            return len(node_ids) + len(connection_ids)

        return self._discrete(mutate)

    # --- Connection Operations ---

    def connect(self, source: str, target: str,
                source_anchor: SourceAnchor = SourceAnchor.BOTTOM,
                target_anchor: TargetAnchor = TargetAnchor.TOP,
                style: Optional[ConnectionStyle] = None) -> Optional[Connection]:
        """Connect two nodes. Returns None for a missing endpoint or a duplicate."""
        if not (self.graph.has_node(source) and self.graph.has_node(target)):
            return None
        return self._discrete(
            lambda: self.graph.connect(source, target, source_anchor, target_anchor, style)
        )

    def remove_connection(self, connection_id: str) -> bool:
        if self.graph.get_connection(connection_id) is None:
            return False
        return self._discrete(lambda: self.graph.remove_connection(connection_id))

    def update_connection_style(self, connection_id: str,
                                partial: dict[str, Any]) -> Optional[Connection]:
        """Update colour / dashed / stroke width of a connection."""
        if self.graph.get_connection(connection_id) is None:
            return None
        return self._discrete(lambda: self.graph.update_connection_style(connection_id, partial))

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        return self.graph.get_connection(connection_id)

    # --- Layout ---

    def auto_layout(self) -> bool:
        """Re-position every person node as one undoable operation."""
        if not self.graph.nodes:
            return False

        def mutate():
            self.graph.replace_nodes(layout.auto_layout(self.graph.nodes, self.graph.connections))
            return True

        return self._discrete(mutate)

    # --- Clipboard ---

    def copy_selection(self) -> int:
        """Copy the selection to the clipboard. Not undoable, not persisted."""
        count = clipboard.copy_selection(self.graph, self.context)
        logger.debug("copied %d node(s)", count)
        return count

    def paste(self) -> list[AnyNode]:
        if self.context.clipboard.is_empty:
            return []
        return self._discrete(lambda: clipboard.paste(self.graph, self.context))

    # --- Presets ---

    def get_preset(self, preset_id: str) -> Optional[Preset]:
        return next((p for p in self.presets if p.id == preset_id), None)

    def create_preset(self) -> Optional[str]:
        """Store the selection as a new preset. Returns its id, or None."""
        preset = clipboard.build_preset(self.graph, len(self.presets))
        if preset is None:
            return None
        self.presets.append(preset)
        self._changed()
        return preset.id

    def apply_preset(self, preset_id: str) -> list[AnyNode]:
        """Insert a copy of a preset as one undoable operation."""
        preset = self.get_preset(preset_id)
        if preset is None or not preset.nodes:
            return []
        return self._discrete(lambda: clipboard.apply_preset(self.graph, preset, self._rng))

    def rename_preset(self, preset_id: str, name: str) -> Optional[Preset]:
        preset = self.get_preset(preset_id)
        if preset is None:
            return None
        preset.name = name
        self._changed()
        return preset

    def remove_preset(self, preset_id: str) -> bool:
        if self.get_preset(preset_id) is None:
            return False
        self.presets = [p for p in self.presets if p.id != preset_id]
        self._changed()
        return True

    # --- Snapshots ---

    def serialize(self) -> Snapshot:
        """Snapshot of the current graph."""
        return capture(self.graph.nodes, self.graph.connections)

    def restore(self, value: Union[Snapshot, dict]):
        """
        Replace the graph with a snapshot (or snapshot-shaped dict).

        Pending drag, resize and edit captures describe the old graph and are
        dropped without a history entry.
        """
        self.context.discard_pending()
        self._restore_graph(snapshot_from_value(value))
        self._changed()

    def flow_state(self) -> FlowState:
        """Everything the autosave keeps."""
        snapshot = self.serialize()
        return FlowState(
            nodes=snapshot.nodes,
            connections=snapshot.connections,
            file_name=self.file_name,
            file_version=self.file_version,
            presets=[p.model_copy(deep=True) for p in self.presets],
        )

    def _replace_all(self, nodes: list, connections: list, presets: list[Preset],
                     file_name: str, file_version: int):
        """Swap in a whole new flow; no undo may cross this."""
        self.history.clear()
        self.graph.load(nodes, connections)
        self.presets = list(presets)
        self.file_name = file_name or DEFAULT_FILE_NAME
        self.file_version = max(1, int(file_version))

    # --- Persistence ---

    def load(self) -> bool:
        """
        Load the autosaved flow. History is cleared either way.

        Returns:
            True if an autosave was found and loaded
        """
        state = self._store.load() if self._store is not None else None
        if state is None:
            self.history.clear()
            self._notify_change()
            return False
        self._replace_all(state.nodes, state.connections, state.presets,
                          state.file_name, state.file_version)
        logger.info("Loaded autosave: %d nodes, %d connections",
                    len(self.graph.nodes), len(self.graph.connections))
        self._notify_change()
        return True

    def export_document(self) -> FlowDocument:
        """
        Build the export envelope stamped with the current version, then
        bump the version for the next export.
        """
        self.history.flush()
        document = build_export(self.flow_state())
        self.file_version += 1
        logger.info("Exported '%s' v%d", self.file_name, document.meta.schema_version)
        self._changed()
        return document

    def import_document(self, payload: Any, confirm: Confirmation) -> bool:
        """
        Replace the flow with an exported document.

        The payload is checked first; a rejected payload raises
        ImportRejected and leaves everything untouched. A valid payload is
        applied only if `confirm` (a bool or a callable returning one) agrees.

        Returns:
            True if the flow was replaced, False if not confirmed
        """
        document = parse_import(payload)
        if not _confirmed(confirm):
            return False
        self._replace_all(document.nodes, document.connections, document.presets,
                          document.meta.display_name, document.meta.schema_version)
        if self._store is not None:
            self._store.save_now(self.flow_state())
        logger.info("Imported '%s': %d nodes, %d connections",
                    self.file_name, len(self.graph.nodes), len(self.graph.connections))
        self._notify_change()
        return True

    def reset(self, confirm: Confirmation) -> bool:
        """Start over with an empty flow and forget the autosave, if confirmed."""
        if not _confirmed(confirm):
            return False
        self._replace_all([], [], [], DEFAULT_FILE_NAME, 1)
        if self._store is not None:
            self._store.clear()
        logger.info("Flow reset")
        self._notify_change()
        return True

    # --- File name / version ---

    def set_file_name(self, name: str):
        self.file_name = name
        self._changed()

    def set_file_version(self, version: float):
        """Set the version, rounded down and floored at 1."""
        self.file_version = max(1, math.floor(version))
        self._changed()

    def increment_version(self):
        self.file_version += 1
        self._changed()

    def decrement_version(self) -> bool:
        if self.file_version <= 1:
            return False
        self.file_version -= 1
        self._changed()
        return True

    def export_file_name(self) -> str:
        """File name the next export should be saved under."""
        return export_file_name(self.file_name, self.file_version)

    # --- Queries ---

    def validate(self) -> list[ValidationIssue]:
        return validate_flow(self.graph.nodes, self.graph.connections)

    def get_state(self) -> dict:
        """Get the full current state for API responses."""
        return {
            "flow": {
                "nodes": [n.model_dump(mode="json") for n in self.graph.nodes],
                "connections": [c.model_dump(mode="json") for c in self.graph.connections],
            },
            "presets": [p.model_dump(mode="json") for p in self.presets],
            "file_name": self.file_name,
            "file_version": self.file_version,
            "can_undo": self.can_undo,
            "can_redo": self.can_redo,
        }
