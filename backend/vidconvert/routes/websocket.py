"""WebSocket endpoint for live conversion progress."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from vidconvert.dependencies import get_broadcaster
from vidconvert.services.progress_broadcaster import ProgressBroadcaster

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/progress")
async def progress_endpoint(
    websocket: WebSocket,
    job_id: Optional[str] = Query(None, alias="jobId"),
    broadcaster: ProgressBroadcaster = Depends(get_broadcaster),
):
    """
    WebSocket endpoint for progress updates.

    Pushes {"jobId", "progress"} messages where progress is an int 0-100,
    then "Complete" or "Error". Events published before the client
    connected are not replayed. Client messages are read and ignored.
    """
    await websocket.accept()
    handle = await broadcaster.subscribe(websocket, job_id=job_id)

    try:
        while True:
            await websocket.receive_text()

    except WebSocketDisconnect:
        logger.info("Progress client disconnected normally")
    except Exception as e:
        logger.error(f"Progress websocket error: {e}")

    finally:
        await broadcaster.unsubscribe(handle)
