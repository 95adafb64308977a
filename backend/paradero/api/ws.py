"""WebSocket endpoint streaming a stop's live arrivals, one frame per cycle."""

import asyncio
import logging

import orjson
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from paradero.api.stops import to_arrival_info
from paradero.core.arrival_sync import ArrivalBoard, LiveArrivalSync
from paradero.schemas.arrival import StopArrivals

logger = logging.getLogger(__name__)

router = APIRouter()

# Will be set by main.py
red = None


def board_payload(code: str, board: ArrivalBoard) -> bytes:
    message = StopArrivals(
        stop=code,
        error=board.error,
        arrivals=[to_arrival_info(e) for e in board.entities],
    )
    return orjson.dumps(message.model_dump())


@router.websocket("/ws/stops/{code}/arrivals")
async def arrivals_ws(websocket: WebSocket, code: str) -> None:
    """Stream arrivals for ``code``; accepts {"action": "pause" | "resume"}."""
    await websocket.accept()

    if red is None:
        await websocket.close(code=1011, reason="Service not ready")
        return

    # Frames leave through a queue so apply() never awaits the socket
    outbox: asyncio.Queue = asyncio.Queue(maxsize=10)

    def publish(board: ArrivalBoard) -> None:
        try:
            outbox.put_nowait(board_payload(code, board))
        except asyncio.QueueFull:
            logger.debug("Client for stop %s is lagging, dropping a frame", code)

    board = ArrivalBoard(on_publish=publish)
    sync = LiveArrivalSync(fetch=lambda: red.fetch_arrivals(code), apply=board.apply)

    async def sender() -> None:
        while True:
            await websocket.send_bytes(await outbox.get())

    async def receiver() -> None:
        while True:
            raw = await websocket.receive_text()
            try:
                message = orjson.loads(raw)
            except orjson.JSONDecodeError:
                logger.debug("Ignoring malformed control message on stop %s", code)
                continue
            action = message.get("action") if isinstance(message, dict) else None
            if action == "pause":
                sync.pause()
            elif action == "resume":
                sync.resume()

    sync.start()
    tasks = [asyncio.ensure_future(sender()), asyncio.ensure_future(receiver())]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for t in tasks:
            if t.done() and not t.cancelled() and t.exception() is not None:
                exc = t.exception()
                if not isinstance(exc, WebSocketDisconnect):
                    logger.error("Arrivals stream for stop %s failed: %r", code, exc)
    except asyncio.CancelledError:
        pass
    finally:
        for t in tasks:
            t.cancel()
        await sync.close()
        logger.debug("Arrivals stream for stop %s closed", code)
