"""
Live event stream: forwards every published change event to websocket clients
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from config import Config
from services.notification_service import NotificationEvent, notification_hub

logger = logging.getLogger(__name__)

router = APIRouter()


def _offer(events: asyncio.Queue, event: NotificationEvent) -> None:
    try:
        events.put_nowait(event)
    except asyncio.QueueFull:
        logger.warning(f"⚠️ EVENT_STREAM_BACKLOG: dropped {type(event).__name__} for slow client")


@router.websocket("/ws/events")
async def event_stream(websocket: WebSocket):
    await websocket.accept()

    loop = asyncio.get_running_loop()
    events: asyncio.Queue = asyncio.Queue(maxsize=Config.NOTIFICATION_QUEUE_SIZE)

    # Publishers run on worker threads; hop onto the event loop
    def forward(event: NotificationEvent) -> None:
        loop.call_soon_threadsafe(_offer, events, event)

    async def pump():
        while True:
            event = await events.get()
            await websocket.send_json(event.to_message())

    token = notification_hub.subscribe(forward)
    sender = asyncio.create_task(pump())
    logger.info(f"🔌 EVENT_STREAM_CONNECTED: subscriber {token}")

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        pass
    finally:
        notification_hub.unsubscribe(token)
        sender.cancel()
        logger.info(f"🔌 EVENT_STREAM_DISCONNECTED: subscriber {token}")
