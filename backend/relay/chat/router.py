"""Chat router providing the relay WebSocket endpoint.

This module provides:
    - WebSocket /ws: Encrypted chat relay

The WebSocket protocol supports:
    - Anonymous identity assignment on connect
    - Shared-secret or named-join authorization
    - History replay once a socket is authorized
    - Real-time broadcasting of encrypted text and media messages
    - Reaction toggling

Every frame is a JSON object with a ``type`` key naming the event; the
remaining keys are the event payload.

Protocol Message Types (client to server):
    - auth: {clave} shared-secret credential
    - join: {nombre, clave} display name + credential
    - mensaje: {cipherText, iv, fecha?} or {urlFull, urlThumb, mimeType, byteSize, originalName, fecha?}
    - reaccion: {mensajeId, emoji}
"""
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from relay.config import AccessMode

from .access import AuthOutcome, ChatSession
from .manager import ConnectionManager
from .schemas import EventType

logger = logging.getLogger(__name__)

router = APIRouter()


def get_manager(websocket: WebSocket) -> ConnectionManager:
    """Return the ConnectionManager built for this application."""
    return websocket.app.state.manager


async def _grant_access(manager: ConnectionManager, websocket: WebSocket) -> None:
    """Replay the history (sent exactly once) and join the authorized group."""
    history = await manager.grant_access(websocket)
    logger.info(f"[WS] Sent history with {len(history)} messages")


async def _handle_auth(
    manager: ConnectionManager, websocket: WebSocket, session: ChatSession, data: dict
) -> None:
    outcome = manager.context.gate.check_auth(session, data.get("clave"))
    if outcome == AuthOutcome.GRANTED:
        await manager.send(websocket, EventType.AUTH_OK)
        await _grant_access(manager, websocket)
    elif outcome == AuthOutcome.DENIED:
        await manager.send(websocket, EventType.AUTH_DENIED, {"error": "Clave incorrecta"})
        delay = manager.context.config.chat.denial_close_delay_ms / 1000
        manager.schedule_close(websocket, delay)
    else:
        logger.debug(f"[WS] auth from {session.socket_id} ignored")


async def _handle_join(
    manager: ConnectionManager, websocket: WebSocket, session: ChatSession, data: dict
) -> bool:
    """Handle a ``join`` event. Returns False if the socket was closed."""
    outcome = manager.context.gate.check_join(session, data.get("nombre"), data.get("clave"))
    if outcome == AuthOutcome.GRANTED:
        await manager.send(websocket, EventType.JOIN_OK, {"autor": session.autor})
        await _grant_access(manager, websocket)
    elif outcome == AuthOutcome.DENIED:
        await manager.send(websocket, EventType.JOIN_ERROR, {"error": "Nombre o clave incorrectos"})
        await manager.close(websocket)
        return False
    else:
        logger.debug(f"[WS] join from {session.socket_id} ignored")
    return True


@router.websocket("/ws")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for the chat relay.

    Protocol Flow (shared_secret mode):
        1. Client connects → Server sends: {type: "identidad", autor: "anon-xxxxx"}
        2. Client sends: {type: "auth", clave}
           → ok:    {type: "auth-ok"}, then {type: "historial", mensajes: [...]}
           → wrong: {type: "auth-denegado", error}, socket closed shortly after
             unless a retry with the right secret arrives first
        3. Client sends: {type: "mensaje", cipherText, iv, fecha?}
           → Server broadcasts to authorized sockets: {type: "mensaje", ...record}
        4. Client sends: {type: "reaccion", mensajeId, emoji}
           → Server broadcasts: {type: "reaccion-actualizada", mensajeId, reacciones}

    In open mode step 2 is skipped and the history follows the identity.
    In named_join mode no identity is sent; the client sends
    {type: "join", nombre, clave} and receives joinOk/joinError instead.
    """
    manager = get_manager(websocket)
    gate = manager.context.gate
    session = await manager.connect(websocket)

    try:
        if gate.mode != AccessMode.NAMED_JOIN:
            # Tell the client its anonymous tag so it can spot its own messages
            await manager.send(websocket, EventType.IDENTITY, {"autor": session.autor})

        if gate.on_connect(session):
            await _grant_access(manager, websocket)

        # Main message loop, until the socket is closed from either side
        while websocket.application_state == WebSocketState.CONNECTED:
            try:
                data = await websocket.receive_json()
            except ValueError:
                logger.info(f"[WS] Ignoring non-JSON frame from {session.socket_id}")
                continue
            if not isinstance(data, dict):
                logger.info(f"[WS] Ignoring non-object frame from {session.socket_id}")
                continue

            event = data.get("type")
            logger.debug("[WS] %s received: type=%s", session.socket_id, event)

            if event == EventType.AUTH.value:
                await _handle_auth(manager, websocket, session, data)
            elif event == EventType.JOIN.value:
                if not await _handle_join(manager, websocket, session, data):
                    break
            elif event == EventType.MESSAGE.value:
                await manager.publish_message(websocket, data)
            elif event == EventType.REACTION.value:
                await manager.react(websocket, data)
            else:
                logger.info(f"[WS] Unknown event {event!r} from {session.socket_id} ignored")

    except WebSocketDisconnect:
        logger.info(f"[WS] Client {session.socket_id} went away")
    finally:
        manager.disconnect(websocket)
