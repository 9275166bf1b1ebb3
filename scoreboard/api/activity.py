"""Live activity stream (Server-Sent Events)."""

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from scoreboard.api.deps import get_event_relay
from scoreboard.services.events import EventRelay

router = APIRouter()


@router.get("/stream")
async def stream_activity(relay: EventRelay = Depends(get_event_relay)) -> StreamingResponse:
    """Metric and achievement events as they happen. Starts with a `connected` event."""
    return StreamingResponse(
        relay.subscribe(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
