"""
Interaction context - per-flow state that is not part of the tracked model.

Holds the clipboard and the pending captures of in-progress gestures. One
instance belongs to one FlowManager; nothing here is process-wide.
"""

from dataclasses import dataclass, field
from typing import Optional, Union

from .models import Connection, PersonNode, SectionNode, Snapshot
from .scheduler import TimerHandle


@dataclass
class Clipboard:
    """Deep copies of the last copied nodes and their internal connections."""
    nodes: list[Union[PersonNode, SectionNode]] = field(default_factory=list)
    connections: list[Connection] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.nodes


@dataclass
class InteractionContext:
    """Clipboard plus the pre-gesture snapshots of batches still in progress."""
    clipboard: Clipboard = field(default_factory=Clipboard)
    # gesture name ("drag", "resize") -> snapshot taken before it started
    gesture_snapshots: dict[str, Snapshot] = field(default_factory=dict)
    edit_snapshot: Optional[Snapshot] = None
    edit_timer: Optional[TimerHandle] = None

    @property
    def has_pending_batch(self) -> bool:
        return bool(self.gesture_snapshots) or self.edit_snapshot is not None

    def cancel_edit_timer(self) -> None:
        if self.edit_timer is not None:
            self.edit_timer.cancel()
            self.edit_timer = None

    def discard_pending(self) -> None:
        """Drop every pending capture and timer without committing anything."""
        self.cancel_edit_timer()
        self.edit_snapshot = None
        self.gesture_snapshots.clear()
