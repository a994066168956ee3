# lasermark/api/ws.py

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from lasermark.ws.manager import ws_manager

router = APIRouter(tags=["ws"])


@router.websocket("/ws/events")
async def ws_events(ws: WebSocket):
    """Cell events for the HMI (marking_data, scanner_read, alarms, ...).

    Push only; anything the client sends is read and ignored to keep the
    connection alive.
    """
    await ws_manager.connect(ws)
    try:
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        ws_manager.disconnect(ws)
