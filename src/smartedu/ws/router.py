"""WebSocket endpoint streaming a user's controller events."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from smartedu.auth.jwt import verify_token
from smartedu.controller import AppController, ControllerEvent
from smartedu.database import get_session_factory
from smartedu.registry import ControllerRegistry
from smartedu.session.provider import get_or_create_account

logger = structlog.get_logger()

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
) -> None:
    """Push controller events to the client.

    Protocol:
        Client -> Server:
            {"action": "ping"}

        Server -> Client:
            {"type": "snapshot", "payload": {...}}
            {"type": "profile" | "notifications" | "feed" | "session", "payload": {...}}
            {"type": "pong"}
            {"type": "error", "message": "..."}
    """
    try:
        payload = verify_token(token, expected_type="access")
        account_id = str(payload["sub"])
    except Exception as e:
        await websocket.close(code=4001, reason=f"Authentication failed: {e}")
        return

    async with get_session_factory()() as db:
        await get_or_create_account(db, account_id, payload.get("email"))

    registry: ControllerRegistry = websocket.app.state.registry
    controller = await registry.acquire(account_id, token)
    try:
        await _serve(websocket, controller, account_id)
    finally:
        await registry.release(account_id)


async def _serve(websocket: WebSocket, controller: AppController, account_id: str) -> None:
    await websocket.accept()
    outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    def on_event(event: ControllerEvent, event_payload: dict[str, Any]) -> None:
        outbox.put_nowait({"type": event, "payload": event_payload})

    unsubscribe = controller.subscribe(on_event)
    logger.info("ws_connected", account_id=account_id)

    async def pump() -> None:
        while True:
            message = await outbox.get()
            await websocket.send_json(message)

    sender = asyncio.create_task(pump())
    try:
        await websocket.send_json({"type": "snapshot", "payload": controller.snapshot()})
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue

            action = msg.get("action") if isinstance(msg, dict) else None
            if action == "ping":
                await websocket.send_json({"type": "pong"})
            else:
                await websocket.send_json({"type": "error", "message": f"Unknown action: {action}"})

    except WebSocketDisconnect:
        logger.info("ws_disconnected", account_id=account_id)
    except Exception:
        logger.exception("ws_error", account_id=account_id)
    finally:
        unsubscribe()
        sender.cancel()
