"""
Persistence - autosave store, export envelope and import parsing.

Autosave is fire-and-forget: writes are coalesced through a debounce timer
and a failed write is logged and skipped. The in-memory flow stays
authoritative and is never rolled back.
"""

import json
import logging
import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from .config import (
    DATA_DIR,
    DEFAULT_FILE_NAME,
    EXPORT_FALLBACK_NAME,
    SAVE_DEBOUNCE_MS,
    STORAGE_FILE_NAME,
)
from .models import FileMeta, FlowDocument, FlowState, Preset
from .scheduler import Scheduler, TimerHandle
from .validation import ImportRejected, check_import_payload

logger = logging.getLogger(__name__)

_UNSAFE_FILE_CHARS = re.compile(r"[^a-zA-Z0-9\u00C0-\u017F\-_]")
_presets_adapter = TypeAdapter(list[Preset])


def default_storage_path() -> Path:
    return DATA_DIR / STORAGE_FILE_NAME


class FlowStore:
    """
    JSON file holding the autosaved flow.

    `save_later` coalesces bursts of writes into one, `save_now` writes
    immediately and cancels any pending write.
    """

    def __init__(self, path: Optional[Path] = None, scheduler: Optional[Scheduler] = None,
                 delay_ms: float = SAVE_DEBOUNCE_MS):
        self.path = Path(path) if path else default_storage_path()
        self._scheduler = scheduler
        self.delay_ms = delay_ms
        self._timer: Optional[TimerHandle] = None
        self._pending: Optional[FlowState] = None

    @property
    def has_pending_write(self) -> bool:
        return self._pending is not None

    def save_later(self, state: FlowState):
        """Schedule a write of `state`, superseding any write not yet done."""
        if self._scheduler is None:
            self.save_now(state)
            return
        self._pending = state
        self._cancel_timer()
        self._timer = self._scheduler.call_later(self.delay_ms, self._on_timer)

    def _on_timer(self):
        self._timer = None
        self.flush()

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def flush(self) -> bool:
        """Write the pending state now, if any."""
        state = self._pending
        if state is None:
            return False
        return self.save_now(state)

    def save_now(self, state: FlowState) -> bool:
        """
        Write `state` to disk.

        Returns:
            True if written, False if the write failed (already logged)
        """
        self._cancel_timer()
        self._pending = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w', encoding='utf-8') as f:
                json.dump(state.model_dump(mode="json"), f, ensure_ascii=False)
        except OSError as e:
            logger.warning("Autosave to %s failed, keeping in-memory state: %s", self.path, e)
            return False
        return True

    def load(self) -> Optional[FlowState]:
        """
        Read the autosaved flow.

        Returns None when there is no autosave or it cannot be read; an
        unreadable file is logged and otherwise ignored.
        """
        if not self.path.exists():
            return None
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return parse_state(data)
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable autosave %s: %s", self.path, e)
            return None

    def clear(self):
        """Drop any pending write and delete the autosave file."""
        self._cancel_timer()
        self._pending = None
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove autosave %s: %s", self.path, e)


# --- Autosave payload ---

def parse_state(data: Any) -> FlowState:
    """
    Build a FlowState from an autosave payload, tolerating missing keys and
    older field names. Raises ValueError on anything else.
    """
    if not isinstance(data, dict):
        raise ValueError("Autosave payload is not an object")
    data = dict(data)
    data["nodes"] = data.get("nodes") or []
    data["presets"] = _parse_presets(data.get("presets"))
    data["file_name"] = data.pop("fileName", None) or data.get("file_name") or DEFAULT_FILE_NAME
    data["file_version"] = _parse_version(data.pop("fileVersion", None) or data.get("file_version"))
    return FlowState.model_validate(data)


def _parse_presets(value: Any) -> list[Preset]:
    if not isinstance(value, list):
        return []
    try:
        return _presets_adapter.validate_python(value)
    except ValidationError as e:
        logger.warning("Dropping unreadable presets: %s", e.error_count())
        return []


def _parse_version(value: Any) -> int:
    try:
        return max(1, int(value))
    except (TypeError, ValueError):
        return 1


# --- Export / import ---

def build_export(state: FlowState, exported_at: Optional[datetime] = None) -> FlowDocument:
    """Wrap a flow into the export envelope, stamped with its current version."""
    return FlowDocument(
        meta=FileMeta(
            schema_version=state.file_version,
            display_name=state.file_name,
            exported_at=exported_at or datetime.now(timezone.utc),
        ),
        nodes=state.nodes,
        connections=state.connections,
        presets=state.presets,
    )


def parse_import(payload: Any) -> FlowDocument:
    """
    Validate an import payload into a FlowDocument.

    Missing or unreadable presets become an empty list and a missing or
    invalid version becomes 1; anything wrong with nodes or connections
    rejects the whole payload.

    Raises:
        ImportRejected: if the payload cannot be imported
    """
    data = dict(check_import_payload(payload))
    meta = data.get("meta")
    data["meta"] = dict(meta) if isinstance(meta, dict) else {}
    data["presets"] = _parse_presets(data.get("presets"))
    try:
        return FlowDocument.model_validate(data)
    except ValidationError as e:
        raise ImportRejected(f"Import payload has invalid entries: {e.error_count()} error(s)") from e


def export_file_name(display_name: str, version: int, today: Optional[date] = None) -> str:
    """`<safe name>_v<version>_<YYYY-MM-DD>.json`, with a fallback stem."""
    today = today or datetime.now(timezone.utc).date()
    safe = _UNSAFE_FILE_CHARS.sub("-", display_name or "")
    safe = re.sub(r"-+", "-", safe).strip("-")
    return f"{safe or EXPORT_FALLBACK_NAME}_v{version}_{today.isoformat()}.json"
