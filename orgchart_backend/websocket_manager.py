"""
WebSocket Manager - tells the open org-chart UIs that the flow changed.

The service holds a single flow, so every client subscribes to the same
stream. Events carry just enough for a UI to decide whether to re-fetch
GET /api/flow: the file name and version, node and connection counts and
the undo/redo availability for toolbar buttons.
"""
import asyncio
import json
import logging
from typing import Any, Set

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

FLOW_UPDATED = "flow_updated"


def flow_event(flow_manager: Any) -> dict:
    """Build the `flow_updated` payload from a FlowManager."""
    return {
        "type": FLOW_UPDATED,
        "file_name": flow_manager.file_name,
        "file_version": flow_manager.file_version,
        "node_count": len(flow_manager.nodes),
        "connection_count": len(flow_manager.connections),
        "can_undo": flow_manager.can_undo,
        "can_redo": flow_manager.can_redo,
    }


class WebSocketManager:
    """
    Org-chart UIs subscribed to flow changes.

    Consecutive changes collapse into one event upstream (the broadcaster
    waits on an asyncio.Event), so a drag produces a handful of events,
    not one per frame. A client whose socket fails is unsubscribed.
    """

    def __init__(self):
        self._clients: Set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self._last_event: dict = {}

    @property
    def connection_count(self) -> int:
        return len(self._clients)

    async def connect(self, websocket: WebSocket):
        """Accept a UI and send it the latest flow event so it can sync at once."""
        await websocket.accept()
        async with self._lock:
            self._clients.add(websocket)
        logger.info("Org-chart UI connected (%d open)", len(self._clients))
        if self._last_event:
            await websocket.send_text(json.dumps(self._last_event))

    async def disconnect(self, websocket: WebSocket):
        async with self._lock:
            self._clients.discard(websocket)
        logger.info("Org-chart UI disconnected (%d open)", len(self._clients))

    async def broadcast(self, message: dict):
        if not self._clients:
            return

        text = json.dumps(message, ensure_ascii=False)
        dropped: Set[WebSocket] = set()
        async with self._lock:
            for websocket in self._clients:
                try:
                    await websocket.send_text(text)
                except (WebSocketDisconnect, RuntimeError, OSError) as e:
                    logger.debug("Unsubscribing org-chart UI after failed send: %s", e)
                    dropped.add(websocket)
            self._clients -= dropped

    async def notify_flow_updated(self, flow_manager: Any):
        """Push the current flow summary to every UI."""
        self._last_event = flow_event(flow_manager)
        await self.broadcast(self._last_event)


ws_manager = WebSocketManager()
