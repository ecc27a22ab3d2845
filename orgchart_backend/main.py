"""
Org-chart Backend - FastAPI Application

Local, single-user service exposing one open flow to a UI:
- REST API for every flow operation (nodes, connections, canvas events,
  undo/redo, layout, clipboard, presets, export/import)
- WebSocket endpoint broadcasting flow_updated after every change
- Autosave of the open flow to a local JSON file
"""
import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from orgchart_core.config import SERVICE_HOST, SERVICE_PORT
from orgchart_core.models import (
    CreateConnectionRequest,
    CreateNodeRequest,
    FlowInfoRequest,
    NodeChangesRequest,
    Position,
    RenamePresetRequest,
    SelectNodesRequest,
    UpdateConnectionStyleRequest,
    UpdateNodeDataRequest,
)
from orgchart_core.persistence import FlowStore
from orgchart_core.scheduler import AsyncioScheduler
from orgchart_core.validation import ImportRejected, validation_summary

from .flow_manager import FlowManager
from .websocket_manager import ws_manager

logger = logging.getLogger(__name__)

flow_manager = FlowManager(scheduler=AsyncioScheduler(), store=FlowStore())


# --- Async change notification ---
# Bridge between sync FlowManager callbacks and async WebSocket broadcasts

_change_event = asyncio.Event()


def on_flow_change():
    """Callback for flow changes - sets event for async handler."""
    _change_event.set()


async def change_broadcaster():
    """Background task that broadcasts changes to WebSocket clients."""
    while True:
        await _change_event.wait()
        _change_event.clear()
        await ws_manager.notify_flow_updated(flow_manager)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup/shutdown tasks."""
    flow_manager.load()
    flow_manager.on_change(on_flow_change)

    broadcaster_task = asyncio.create_task(change_broadcaster())

    yield

    broadcaster_task.cancel()
    try:
        await broadcaster_task
    except asyncio.CancelledError:
        pass
    flow_manager.flush()


# --- FastAPI App ---

app = FastAPI(
    title="Org-chart API",
    description="Local backend for the org-chart builder",
    version="1.0.0",
    lifespan=lifespan
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _state() -> dict:
    return {"success": True, **flow_manager.get_state()}


# --- Health Check ---

@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "connections": ws_manager.connection_count}


# --- Flow State ---

@app.get("/api/flow")
async def get_flow():
    """Get the current flow state."""
    return flow_manager.get_state()


@app.patch("/api/flow")
async def update_flow_info(request: FlowInfoRequest):
    """Update the file name and/or version."""
    if request.file_name is not None:
        flow_manager.set_file_name(request.file_name)
    if request.file_version is not None:
        flow_manager.set_file_version(request.file_version)
    return {
        "success": True,
        "file_name": flow_manager.file_name,
        "file_version": flow_manager.file_version,
    }


@app.post("/api/flow/version/increment")
async def increment_version():
    flow_manager.increment_version()
    return {"success": True, "file_version": flow_manager.file_version}


@app.post("/api/flow/version/decrement")
async def decrement_version():
    changed = flow_manager.decrement_version()
    return {"success": changed, "file_version": flow_manager.file_version}


@app.post("/api/flow/reset")
async def reset_flow(confirm: bool = Query(default=False)):
    """Clear the flow and its autosave. Requires confirm=true."""
    if not flow_manager.reset(confirm):
        return {"success": False, "message": "Reset not confirmed"}
    return _state()


# --- Export / Import ---

@app.get("/api/flow/export")
async def export_flow():
    """
    Export the flow. The file name reflects the exported version; the
    version is bumped afterwards.
    """
    file_name = flow_manager.export_file_name()
    document = flow_manager.export_document()
    return {"success": True, "file_name": file_name, "document": document.model_dump(mode="json")}


@app.post("/api/flow/import")
async def import_flow(request: Request, confirm: bool = Query(default=False)):
    """Replace the flow with an exported document. Requires confirm=true."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid JSON: {e}")
    try:
        imported = flow_manager.import_document(payload, confirm)
    except ImportRejected as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not imported:
        return {"success": False, "message": "Import not confirmed"}
    return _state()


# --- Undo/Redo ---

@app.post("/api/undo")
async def undo():
    """Undo the last action."""
    if flow_manager.undo():
        return _state()
    return {"success": False, "message": "Nothing to undo"}


@app.post("/api/redo")
async def redo():
    """Redo the last undone action."""
    if flow_manager.redo():
        return _state()
    return {"success": False, "message": "Nothing to redo"}


# --- Node Operations ---

@app.post("/api/nodes")
async def create_node(request: CreateNodeRequest):
    """Create a new person or section node."""
    try:
        node = flow_manager.add_node(
            kind=request.kind,
            position=Position(x=request.x, y=request.y),
            data=request.data
        )
        return {"success": True, "node": node.model_dump(mode="json")}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# Canvas events MUST be before the parameterized route
@app.post("/api/nodes/changes")
async def apply_node_changes(request: NodeChangesRequest):
    """Apply canvas change events (drag, resize, select, remove)."""
    touched = flow_manager.apply_node_changes(request.changes)
    return {"success": touched}


@app.get("/api/nodes/{node_id}")
async def get_node(node_id: str):
    """Get a specific node."""
    node = flow_manager.get_node(node_id)
    if node:
        return {"success": True, "node": node.model_dump(mode="json")}
    raise HTTPException(status_code=404, detail="Node not found")


@app.patch("/api/nodes/{node_id}")
async def update_node_data(node_id: str, request: UpdateNodeDataRequest):
    """Merge fields into a node's data."""
    try:
        node = flow_manager.update_node_data(node_id, request.data, coalesce=request.coalesce)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if node:
        return {"success": True, "node": node.model_dump(mode="json")}
    raise HTTPException(status_code=404, detail="Node not found")


@app.delete("/api/nodes/{node_id}")
async def delete_node(node_id: str):
    """Delete a node and its connections."""
    if flow_manager.remove_node(node_id):
        return {"success": True}
    raise HTTPException(status_code=404, detail="Node not found")


# --- Selection ---

@app.put("/api/selection")
async def select_nodes(request: SelectNodesRequest):
    flow_manager.select_nodes(request.node_ids)
    return {"success": True, "selected": [n.id for n in flow_manager.graph.selected_nodes()]}


@app.delete("/api/selection")
async def delete_selection():
    """Delete everything selected."""
    removed = flow_manager.delete_selection()
    return {"success": removed > 0, "removed": removed}


# --- Connection Operations ---

@app.post("/api/connections")
async def create_connection(request: CreateConnectionRequest):
    """Connect two nodes."""
    for node_id in (request.source, request.target):
        if flow_manager.get_node(node_id) is None:
            raise HTTPException(status_code=404, detail=f"Node not found: {node_id}")
    connection = flow_manager.connect(
        request.source,
        request.target,
        source_anchor=request.source_anchor,
        target_anchor=request.target_anchor
    )
    if connection is None:
        raise HTTPException(status_code=400, detail="Connection already exists")
    return {"success": True, "connection": connection.model_dump(mode="json")}


@app.get("/api/connections/{connection_id}")
async def get_connection(connection_id: str):
    connection = flow_manager.get_connection(connection_id)
    if connection:
        return {"success": True, "connection": connection.model_dump(mode="json")}
    raise HTTPException(status_code=404, detail="Connection not found")


@app.patch("/api/connections/{connection_id}")
async def update_connection_style(connection_id: str, request: UpdateConnectionStyleRequest):
    """Update a connection's colour, dash or stroke width."""
    connection = flow_manager.update_connection_style(
        connection_id, request.model_dump(exclude_none=True)
    )
    if connection:
        return {"success": True, "connection": connection.model_dump(mode="json")}
    raise HTTPException(status_code=404, detail="Connection not found")


@app.delete("/api/connections/{connection_id}")
async def delete_connection(connection_id: str):
    if flow_manager.remove_connection(connection_id):
        return {"success": True}
    raise HTTPException(status_code=404, detail="Connection not found")


# --- Layout ---

@app.post("/api/layout/auto")
async def auto_layout():
    """Arrange person nodes into a hierarchy."""
    if flow_manager.auto_layout():
        return _state()
    raise HTTPException(status_code=400, detail="No nodes to layout")


# --- Clipboard ---

@app.post("/api/clipboard/copy")
async def copy_selection():
    count = flow_manager.copy_selection()
    return {"success": count > 0, "copied": count}


@app.post("/api/clipboard/paste")
async def paste():
    nodes = flow_manager.paste()
    return {"success": bool(nodes), "nodes": [n.model_dump(mode="json") for n in nodes]}


# --- Presets ---

@app.get("/api/presets")
async def list_presets():
    return {"success": True, "presets": [p.model_dump(mode="json") for p in flow_manager.presets]}


@app.post("/api/presets")
async def create_preset():
    """Create a preset from the current selection."""
    preset_id = flow_manager.create_preset()
    if preset_id is None:
        raise HTTPException(status_code=400, detail="Nothing selected")
    return {"success": True, "preset": flow_manager.get_preset(preset_id).model_dump(mode="json")}


@app.post("/api/presets/{preset_id}/apply")
async def apply_preset(preset_id: str):
    if flow_manager.get_preset(preset_id) is None:
        raise HTTPException(status_code=404, detail="Preset not found")
    nodes = flow_manager.apply_preset(preset_id)
    return {"success": bool(nodes), "nodes": [n.model_dump(mode="json") for n in nodes]}


@app.patch("/api/presets/{preset_id}")
async def rename_preset(preset_id: str, request: RenamePresetRequest):
    preset = flow_manager.rename_preset(preset_id, request.name)
    if preset:
        return {"success": True, "preset": preset.model_dump(mode="json")}
    raise HTTPException(status_code=404, detail="Preset not found")


@app.delete("/api/presets/{preset_id}")
async def delete_preset(preset_id: str):
    if flow_manager.remove_preset(preset_id):
        return {"success": True}
    raise HTTPException(status_code=404, detail="Preset not found")


# --- Validation ---

@app.get("/api/flow/validate")
async def validate_current_flow():
    """
    Validate the current flow for structural issues.

    Returns a list of issues (errors, warnings, info) and a summary.
    """
    issues = flow_manager.validate()
    return {
        "success": True,
        "issues": [issue.to_dict() for issue in issues],
        "summary": validation_summary(issues)
    }


# --- WebSocket ---

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time updates.

    Clients connect here to receive flow_updated events.
    """
    await ws_manager.connect(websocket)

    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text('{"type": "pong"}')
    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)


# --- Run with uvicorn ---

def run(host: Optional[str] = None, port: Optional[int] = None):
    """Console entry point: serve the API with basic logging configured."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=host or SERVICE_HOST, port=port or SERVICE_PORT)


if __name__ == "__main__":
    run()
