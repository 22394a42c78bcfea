"""Session control routes for the recorder API.

This module implements FastAPI routes for starting, stopping, reinjecting
and inspecting recording sessions.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response

from recorder.api.schemas import (
    ErrorResponse,
    NavigateRequest,
    NavigateResponse,
    ReinjectResponse,
    SessionDetail,
    SessionList,
    StartSessionRequest,
    StopSessionRequest,
)
from recorder.api.services import RecorderService, get_recorder_service
from recorder.models import ObserverStatus
from recorder.supervision import SessionNotFoundError, SessionStateError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/recorder/sessions",
    tags=["Sessions"],
    responses={
        404: {"model": ErrorResponse, "description": "Session Not Found"},
        409: {"model": ErrorResponse, "description": "Invalid Session State"},
        422: {"model": ErrorResponse, "description": "Validation Error"},
        500: {"model": ErrorResponse, "description": "Internal Server Error"},
    }
)


@router.post(
    "",
    response_model=SessionDetail,
    status_code=201,
    summary="Start a recording session",
    description="""
    Open a browser tab, navigate to `start_url` and install the recorder.

    The session comes back `active` when the payload was verified in the
    page, or `degraded` when every injection strategy failed. Degraded
    sessions keep being retried by the health-check scheduler.
    """
)
async def start_session(
    request: StartSessionRequest,
    http_request: Request,
    service: RecorderService = Depends(get_recorder_service)
) -> SessionDetail:
    """Start a new recording session."""
    request_id = getattr(http_request.state, "request_id", None)

    try:
        config = request.to_recording_config(service.default_server_url)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid parameters: {e}")

    try:
        session, status = await service.start_session(config)
    except Exception as e:
        logger.error(f"Failed to start session: {e}", extra={"request_id": request_id}, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to start recording session")

    logger.info(
        f"Started session {session.session_id} ({session.status.value})",
        extra={"request_id": request_id, "session_id": session.session_id}
    )
    return SessionDetail(session=session, status=status)


@router.get(
    "",
    response_model=SessionList,
    summary="List sessions",
)
async def list_sessions(
    service: RecorderService = Depends(get_recorder_service)
) -> SessionList:
    sessions = service.list_sessions()
    return SessionList(sessions=sessions, total_count=len(sessions))


@router.post(
    "/{session_id}/stop",
    response_model=SessionDetail,
    summary="Stop a recording session",
)
async def stop_session(
    session_id: str,
    body: Optional[StopSessionRequest] = None,
    service: RecorderService = Depends(get_recorder_service)
) -> SessionDetail:
    """Stop a session, tear down the in-page recorder and close its tab."""
    reason = body.reason if body else "stopped"
    try:
        session = await service.stop_session(session_id, reason=reason)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return SessionDetail(session=session, status=None)


@router.post(
    "/{session_id}/reinject",
    response_model=ReinjectResponse,
    summary="Force reinjection",
    description="""
    Reinstall the recorder now. Manual reinjection ignores the automatic
    retry cap and clears the `abandoned` flag when it succeeds.
    """
)
async def reinject(
    session_id: str,
    service: RecorderService = Depends(get_recorder_service)
) -> ReinjectResponse:
    try:
        result = await service.force_reinject(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return ReinjectResponse(
        session_id=session_id,
        result=result,
        status=service.supervisor.get_status(session_id),
    )


@router.post(
    "/{session_id}/navigate",
    response_model=NavigateResponse,
    summary="Navigate a session's tab",
    description="""
    Load a new URL in the session's tab. CSP bypass is re-armed before the
    load and the recorder is reinstalled into the new document.
    """
)
async def navigate(
    session_id: str,
    request: NavigateRequest,
    service: RecorderService = Depends(get_recorder_service)
) -> NavigateResponse:
    try:
        navigated, session, status = await service.navigate(session_id, request.url)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    if not navigated:
        logger.warning(f"Session {session_id} could not load {request.url}")
    return NavigateResponse(navigated=navigated, session=session, status=status)


@router.get(
    "/{session_id}/status",
    response_model=ObserverStatus,
    summary="Get payload status",
)
async def get_status(
    session_id: str,
    service: RecorderService = Depends(get_recorder_service)
) -> ObserverStatus:
    try:
        _, status = service.get_session(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return status


@router.get(
    "/{session_id}",
    response_model=SessionDetail,
    summary="Get session details",
)
async def get_session(
    session_id: str,
    service: RecorderService = Depends(get_recorder_service)
) -> SessionDetail:
    try:
        session, status = service.get_session(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return SessionDetail(session=session, status=status)


@router.get(
    "/{session_id}/debug",
    summary="Session diagnostics",
    description="""
    Marker state, helper availability, in-page errors, CSP analysis and a
    connectivity test from the page back to this server.
    """
)
async def debug_session(
    session_id: str,
    service: RecorderService = Depends(get_recorder_service)
):
    try:
        return await service.diagnostics(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get(
    "/{session_id}/screenshot",
    summary="Capture the session's tab",
    responses={200: {"content": {"image/png": {}}}},
)
async def screenshot(
    session_id: str,
    service: RecorderService = Depends(get_recorder_service)
) -> Response:
    try:
        image = await service.screenshot(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return Response(content=image, media_type="image/png")
