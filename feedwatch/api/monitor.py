import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from feedwatch.core.dependencies import get_runtime
from feedwatch.runtime import AppRuntime
from feedwatch.schemas.messages import FetchRequest, StopRequest, parse_message
from feedwatch.schemas.monitor import MonitorStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/monitor", tags=["monitor"])

# Message types the observer UI may send
CLIENT_MESSAGE_TYPES = {"FETCH_REQUEST", "STOP_REQUEST"}


@router.get("/status", response_model=MonitorStatus, summary="Get Monitor Status")
async def get_status(runtime: AppRuntime = Depends(get_runtime)):
    """Current orchestrator state: idle, polling or waiting on a reload."""
    return runtime.monitor.status()


@router.post("/fetch", response_model=MonitorStatus, status_code=202, summary="Fetch Posts Now")
async def fetch_now(runtime: AppRuntime = Depends(get_runtime)):
    """Open or focus the feed tab and scrape it. Results arrive on the event stream."""
    await runtime.bus.send(FetchRequest())
    return runtime.monitor.status()


@router.post("/stop", response_model=MonitorStatus, summary="Stop Monitoring")
async def stop_monitoring(runtime: AppRuntime = Depends(get_runtime)):
    await runtime.bus.send(StopRequest())
    return runtime.monitor.status()


@router.post("/messages", response_model=MonitorStatus, status_code=202, summary="Send Message")
async def send_message(
    body: dict[str, Any] = Body(...),
    runtime: AppRuntime = Depends(get_runtime),
):
    """Accept a raw client message, validated against the message union."""
    try:
        message = parse_message(body)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    if message.type not in CLIENT_MESSAGE_TYPES:
        raise HTTPException(status_code=400, detail=f"Clients cannot send {message.type}")
    await runtime.bus.send(message)
    return runtime.monitor.status()


@router.websocket("/events")
async def monitor_events(websocket: WebSocket):
    """Stream every broadcast message (new data, errors, stops) as JSON.

    The client may also send FETCH_REQUEST / STOP_REQUEST messages on the
    same socket.
    """
    runtime: AppRuntime | None = getattr(websocket.app.state, "runtime", None)
    if runtime is None:
        await websocket.close(code=1013)
        return

    async with runtime.bus.observe() as queue:
        await websocket.accept()

        async def forward_events():
            while True:
                message = await queue.get()
                await websocket.send_json(message.model_dump(mode="json"))

        forwarder = asyncio.create_task(forward_events())
        try:
            while True:
                text = await websocket.receive_text()
                try:
                    message = parse_message(json.loads(text))
                except ValueError as e:
                    logger.warning(f"Ignoring invalid client message: {e}")
                    continue
                if message.type not in CLIENT_MESSAGE_TYPES:
                    logger.warning(f"Ignoring client message of type {message.type}")
                    continue
                await runtime.bus.send(message)
        except WebSocketDisconnect:
            logger.debug("Event stream client disconnected")
        finally:
            forwarder.cancel()
            await asyncio.gather(forwarder, return_exceptions=True)
