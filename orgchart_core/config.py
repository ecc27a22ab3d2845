"""
Central configuration for the org-chart engine.

Every tunable constant lives here. A few values can be overridden through
environment variables (ORGCHART_*), which is mostly useful for the local
service and for slowing timers down while debugging.
"""

import os
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


# --- Application ---

APP_NAME = "OrganMaker"
DEFAULT_FILE_NAME = "Mon Organigramme"
EXPORT_FALLBACK_NAME = "organigramme"

# Directory holding the autosave file
DATA_DIR = Path(os.environ.get(
    "ORGCHART_DATA_DIR",
    str(Path.home() / ".local" / "share" / "orgchart")
))
STORAGE_FILE_NAME = "organmaker-flow.json"

# Local service
SERVICE_HOST = os.environ.get("ORGCHART_HOST", "127.0.0.1")
SERVICE_PORT = _env_int("ORGCHART_PORT", 8766)

# --- Undo / Redo ---

UNDO_LIMIT = 50
EDIT_COMMIT_DELAY_MS = _env_int("ORGCHART_EDIT_COMMIT_DELAY_MS", 600)
SAVE_DEBOUNCE_MS = _env_int("ORGCHART_SAVE_DEBOUNCE_MS", 300)

# --- Node dimensions ---

PERSON_NODE_WIDTH = 256
PERSON_NODE_HEIGHT = 200  # estimated, used by the layout
SECTION_DEFAULT_WIDTH = 500
SECTION_DEFAULT_HEIGHT = 350
SECTION_MIN_WIDTH = 200
SECTION_MIN_HEIGHT = 150

# --- Stack order (z-index) ---

PERSON_Z_INDEX = 10
SECTION_Z_INDEX = -10
SECTION_SELECTED_Z_INDEX = -5

# --- Auto-layout ---

LAYOUT_RANK_SEP = 100   # vertical gap between ranks
LAYOUT_NODE_SEP = 60    # horizontal gap between neighbours in a rank
LAYOUT_EDGE_SEP = 10    # horizontal gap next to dummy (edge) nodes
LAYOUT_MARGIN_X = 40
LAYOUT_MARGIN_Y = 40
SIDE_OFFSET_X = 180     # horizontal offset of side-attached children
SIDE_STACK_GAP_Y = 25   # vertical gap between stacked side children
SIDE_START_Y = 40       # gap between a parent and its first side child

# --- Copy / paste / presets ---

PASTE_OFFSET = 60
PRESET_BASE_X = 100
PRESET_BASE_Y = 100
PRESET_JITTER_X = 100
PRESET_JITTER_Y = 80

# --- Default colours and texts ---

DEFAULT_EDGE_COLOR = "#6366f1"
DEFAULT_EDGE_STROKE_WIDTH = 2
DEFAULT_PERSON_BG = "#ffffff"
DEFAULT_PERSON_BORDER = "#e5e7eb"
DEFAULT_SECTION_COLOR = "#e0e7ff"

DEFAULT_PERSON_NAME = "Nouveau"
DEFAULT_PERSON_ROLE = "Rôle"
DEFAULT_SECTION_TITLE = "Nouvelle Section"
