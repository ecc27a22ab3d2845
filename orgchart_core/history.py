"""
Undo/redo history with gesture batching.

The history is a pair of bounded snapshot stacks. Every entry on `past` is
the state *before* some user action; undo swaps the current state onto
`future` and restores that entry.

Batching is built on one primitive: capture the pre-gesture snapshot, let
the caller mutate freely, then commit that single snapshot once the gesture
is over.

- Gestures (drag, resize): explicit begin/end driven by canvas events
- Text edits: the first edit of a burst captures, every edit restarts a
  quiet-period timer, the timer commits
- Discrete operations: checkpoint() before, commit_if_changed() after
"""

import logging
from typing import Callable, Optional

from .config import EDIT_COMMIT_DELAY_MS, UNDO_LIMIT
from .context import InteractionContext
from .models import Snapshot
from .scheduler import Scheduler
from .snapshot import snapshots_equal

logger = logging.getLogger(__name__)

GESTURE_DRAG = "drag"
GESTURE_RESIZE = "resize"


class HistoryManager:
    """
    Bounded undo/redo stacks of snapshots.

    The manager never touches the graph itself: `capture` returns a snapshot
    of the current graph and `restore` replaces the graph with a snapshot.
    """

    def __init__(
        self,
        capture: Callable[[], Snapshot],
        restore: Callable[[Snapshot], None],
        scheduler: Scheduler,
        context: Optional[InteractionContext] = None,
        limit: int = UNDO_LIMIT,
        edit_delay_ms: float = EDIT_COMMIT_DELAY_MS,
    ):
        self._capture = capture
        self._restore = restore
        self._scheduler = scheduler
        self.context = context or InteractionContext()
        self.limit = limit
        self.edit_delay_ms = edit_delay_ms
        self._past: list[Snapshot] = []
        self._future: list[Snapshot] = []

        # Called after a timer-driven commit (the caller persists there)
        self.on_edit_committed: Optional[Callable[[], None]] = None

    # --- Properties ---

    @property
    def can_undo(self) -> bool:
        """Check if undo is available."""
        return len(self._past) > 0 or self.context.has_pending_batch

    @property
    def can_redo(self) -> bool:
        """Check if redo is available."""
        return len(self._future) > 0

    @property
    def past_size(self) -> int:
        return len(self._past)

    @property
    def future_size(self) -> int:
        return len(self._future)

    @property
    def is_paused(self) -> bool:
        """True while a gesture or an edit burst holds an uncommitted capture."""
        return self.context.has_pending_batch

    # --- Stack primitives ---

    def commit(self, snapshot: Snapshot):
        """Push a pre-action snapshot and invalidate the redo stack."""
        self._past.append(snapshot)
        while len(self._past) > self.limit:
            self._past.pop(0)
        self._future.clear()

    def checkpoint(self) -> Snapshot:
        """
        Start a discrete operation: settle pending batches so they keep
        their place in the stack, then capture the pre-operation state.
        """
        self.flush()
        return self._capture()

    def commit_if_changed(self, before: Snapshot) -> bool:
        """Finish a discrete operation; no-op mutations leave no entry."""
        if snapshots_equal(before, self._capture()):
            return False
        self.commit(before)
        return True

    def undo(self) -> bool:
        """Restore the previous state. Returns False if there is nothing to undo."""
        self.flush()
        if not self._past:
            return False
        self._future.append(self._capture())
        while len(self._future) > self.limit:
            self._future.pop(0)
        self._restore(self._past.pop())
        logger.debug("undo: %d past, %d future", len(self._past), len(self._future))
        return True

    def redo(self) -> bool:
        """Re-apply the last undone state. Returns False if there is nothing to redo."""
        self.flush()
        if not self._future:
            return False
        self._past.append(self._capture())
        while len(self._past) > self.limit:
            self._past.pop(0)
        self._restore(self._future.pop())
        logger.debug("redo: %d past, %d future", len(self._past), len(self._future))
        return True

    def clear(self):
        """Forget all history and every pending capture (reset / load)."""
        self.context.discard_pending()
        self._past.clear()
        self._future.clear()

    # --- Gestures (drag, resize) ---

    def gesture_active(self, name: str) -> bool:
        return name in self.context.gesture_snapshots

    def begin_gesture(self, name: str) -> bool:
        """Capture the pre-gesture state. Returns True on the first call only."""
        if name in self.context.gesture_snapshots:
            return False
        self._flush_edit()
        self.context.gesture_snapshots[name] = self._capture()
        logger.debug("%s started, history paused", name)
        return True

    def end_gesture(self, name: str) -> bool:
        """Commit the single entry for a finished gesture."""
        snapshot = self.context.gesture_snapshots.pop(name, None)
        if snapshot is None:
            return False
        self.commit(snapshot)
        logger.debug("%s ended, one entry committed", name)
        return True

    # --- Text-edit bursts ---

    def begin_edit(self):
        """
        Call before applying an edit. The first edit of a burst captures the
        pre-edit state; every edit restarts the quiet-period timer.
        """
        if self.context.edit_snapshot is None:
            self.context.edit_snapshot = self._capture()
            logger.debug("edit burst started")
        self.context.cancel_edit_timer()
        self.context.edit_timer = self._scheduler.call_later(self.edit_delay_ms, self._on_edit_timer)

    def _on_edit_timer(self):
        self.context.edit_timer = None
        if self._flush_edit() and self.on_edit_committed:
            self.on_edit_committed()

    def _flush_edit(self) -> bool:
        self.context.cancel_edit_timer()
        snapshot = self.context.edit_snapshot
        if snapshot is None:
            return False
        self.context.edit_snapshot = None
        self.commit(snapshot)
        logger.debug("edit burst committed")
        return True

    def flush(self) -> bool:
        """Commit every pending batch now. Returns True if anything was committed."""
        # A burst started mid-gesture is newer than the gesture capture
        committed = False
        for name in list(self.context.gesture_snapshots):
            committed = self.end_gesture(name) or committed
        return self._flush_edit() or committed
