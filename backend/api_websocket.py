"""WebSocket endpoint for live mind map updates and the connect message."""
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from typing import List, Optional
import asyncio
import json
import logging

from api_nodes import ServiceFactory, get_mind_node_service_factory
from config import WS_KEEPALIVE_SECONDS
from models import ConnectNodesRequest, field_errors
from services_broadcast import CHANNELS, broadcaster
from services_mind_nodes import InvalidNodeIdError

logger = logging.getLogger("mind_mesh")

router = APIRouter(tags=["websocket"])


async def _send_error(websocket: WebSocket, detail) -> None:
    await websocket.send_text(json.dumps({"type": "error", "detail": detail}, default=str))


def _connect_in_own_session(open_service: ServiceFactory, request: ConnectNodesRequest):
    with open_service() as service:
        return service.connect_nodes(request)


async def _handle_connect_message(websocket: WebSocket, data: str, open_service: ServiceFactory) -> None:
    try:
        request = ConnectNodesRequest.model_validate_json(data)
    except ValidationError as e:
        await _send_error(websocket, field_errors(e.errors()))
        return

    try:
        # Neo4j calls block; keep them off the event loop
        await run_in_threadpool(_connect_in_own_session, open_service, request)
    except InvalidNodeIdError as e:
        await _send_error(websocket, str(e))
    except Exception:
        logger.exception(f"Error connecting nodes over WebSocket: {request.source_id} -> {request.target_id}")
        await _send_error(websocket, "Internal server error")


@router.websocket("/ws")
async def mind_map_stream(
    websocket: WebSocket,
    channels: Optional[List[str]] = Query(None),
    open_service: ServiceFactory = Depends(get_mind_node_service_factory),
):
    """
    Live updates for the mind map.

    Clients receive `{"channel": ..., "payload": ...}` frames for the channels
    they asked for (both by default) and may send one message type,
    `{"sourceId": ..., "targetId": ...}`, to connect two nodes. The result of
    a connect arrives as a /topic/graph broadcast, not as a reply. Each
    connect message runs on its own Neo4j session.
    """
    requested = channels or list(CHANNELS)
    unknown = [c for c in requested if c not in CHANNELS]
    if unknown:
        logger.warning(f"Rejecting WebSocket subscription to unknown channels: {unknown}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    await broadcaster.subscribe(websocket, requested)

    try:
        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_text(), timeout=WS_KEEPALIVE_SECONDS)
            except asyncio.TimeoutError:
                await websocket.send_text("ping")
                continue

            if data == "ping":
                await websocket.send_text("pong")
            elif data == "pong":
                continue
            else:
                await _handle_connect_message(websocket, data, open_service)
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.unsubscribe(websocket)
        logger.info("WebSocket disconnected")
