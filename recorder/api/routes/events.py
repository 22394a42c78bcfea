"""Event ingestion routes called by the in-page recorder."""

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import Response

from recorder.api.schemas import ErrorResponse, EventList, EventsAccepted
from recorder.api.services import RecorderService, get_recorder_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/recorder",
    tags=["Events"],
    responses={
        422: {"model": ErrorResponse, "description": "Validation Error"},
    }
)


@router.post(
    "/events/{session_id}",
    response_model=EventsAccepted,
    summary="Ingest recorded events",
    description="Accepts a single event object or a list of events. Malformed events are skipped.",
)
async def ingest_events(
    session_id: str,
    payload: Union[List[Dict[str, Any]], Dict[str, Any]] = Body(...),
    service: RecorderService = Depends(get_recorder_service)
) -> EventsAccepted:
    events = payload if isinstance(payload, list) else [payload]
    accepted = await service.ingest_events(session_id, events)
    logger.debug(f"Accepted {accepted}/{len(events)} events for session {session_id}")
    return EventsAccepted(accepted=accepted)


@router.get(
    "/events/{session_id}",
    response_model=EventList,
    summary="List recorded events",
)
async def list_events(
    session_id: str,
    limit: Optional[int] = Query(default=None, ge=0, le=10000, description="Return only the newest N events"),
    service: RecorderService = Depends(get_recorder_service)
) -> EventList:
    events = service.list_events(session_id, limit=limit)
    return EventList(
        session_id=session_id,
        events=events,
        total_count=service.event_store.count(session_id),
    )


@router.api_route(
    "/ping",
    methods=["GET", "HEAD"],
    summary="Connectivity check",
    include_in_schema=True,
)
async def ping() -> Response:
    return Response(content="pong", media_type="text/plain")
