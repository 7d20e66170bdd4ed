"""MJPEG video and WebSocket metadata streaming."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import asdict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from dashcam.api.services.engine import VideoEngine
from dashcam.api.services.state import get_engine

router = APIRouter()

logger = logging.getLogger(__name__)


@router.get("/stream/video")
async def stream_video():
    async def generator():
        engine: VideoEngine = await asyncio.to_thread(get_engine)
        async for chunk in engine.mjpeg_generator():
            yield chunk

    return StreamingResponse(
        generator(),
        media_type="multipart/x-mixed-replace; boundary=frame",
        headers={
            "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
            "Pragma": "no-cache",
            # Helps avoid proxy buffering (e.g., nginx) in front of the stream.
            "X-Accel-Buffering": "no",
        },
    )


@router.websocket("/stream/metadata")
async def stream_metadata(ws: WebSocket):
    """Push one JSON summary per processed frame and answer `{"type": "ping"}` messages."""

    await ws.accept()
    engine: VideoEngine = await asyncio.to_thread(get_engine)
    send_lock = asyncio.Lock()

    async def _send(payload: dict) -> None:
        async with send_lock:
            await ws.send_json(payload)

    async def _send_summaries() -> None:
        async for summary in engine.metadata_stream():
            payload = asdict(summary)
            payload["stream_fps"] = engine.stream_fps()
            await _send(payload)

    async def _answer_pings() -> None:
        while True:
            text = await ws.receive_text()
            try:
                msg = json.loads(text)
            except ValueError:
                continue
            if isinstance(msg, dict) and msg.get("type") == "ping":
                await _send({"type": "pong", "t": msg.get("t"), "server_time": time.time()})

    tasks = {asyncio.create_task(_send_summaries()), asyncio.create_task(_answer_pings())}
    done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    for task in done:
        exc = task.exception()
        if exc is None or isinstance(exc, WebSocketDisconnect):
            continue
        logger.error("Metadata websocket crashed", exc_info=exc)
        await ws.close(code=1011)
        return
