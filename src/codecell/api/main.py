"""
FastAPI application for the code execution service.

This module configures the FastAPI application, creates the execution
supervisor for the lifetime of the app, registers the HTTP routes for
synchronous execution, streamed execution, stopping and session teardown,
exposes the per-session WebSocket that delivers output events, and
enforces authentication via an API key.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager, suppress
from typing import AsyncIterator, Dict, List

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..config import Config
from ..errors import CodecellError, SessionBusyError, ShuttingDownError, UnsupportedLanguageError
from ..events import EventHub
from ..models import (
    ErrorEvent,
    ExecuteRequest,
    ExecuteResponse,
    RuntimeStatus,
    SessionEvent,
    SessionExecuteRequest,
    SessionInfo,
    StopResponse,
    StoppedEvent,
    SubmitResponse,
)
from ..registry import ProcessRegistry
from ..runtimes import check_language
from ..scratch import ScratchArea
from ..supervisor import Supervisor


logger = logging.getLogger("codecell")

if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("[codecell] %(levelname)s - %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)


config = Config.from_env()

logger.setLevel(config.log_level)

logger.info(
    "Loaded config: scratch_dir=%s, allowed_langs=%s, stream_limit=%s",
    config.scratch_dir,
    config.allowed_langs,
    config.stream_limit,
)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # The registry outlives every request and is shared by submit, stop and teardown.
    supervisor = Supervisor(
        registry=ProcessRegistry(),
        events=EventHub(),
        scratch=ScratchArea(config.scratch_dir),
        allowed_langs=config.allowed_langs,
        stream_limit=config.stream_limit,
    )
    _app.state.supervisor = supervisor
    logger.info("Supervisor ready (languages=%s)", [lang.value for lang in supervisor.languages])

    yield

    await supervisor.shutdown()
    logger.info("Supervisor stopped")


app = FastAPI(title="Code Execution Service", version="0.1.0", lifespan=lifespan)


def get_supervisor(request: Request) -> Supervisor:
    return request.app.state.supervisor


def _http_error(exc: CodecellError) -> HTTPException:
    if isinstance(exc, UnsupportedLanguageError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, SessionBusyError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ShuttingDownError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


@app.middleware("http")
async def authenticate(request, call_next):
    """Middleware to enforce API key authentication on all requests."""
    path = request.url.path
    method = request.method
    client = getattr(request.client, "host", "unknown")

    logger.info("Incoming request: %s %s from %s", method, path, client)

    provided_key = request.headers.get("x-api-key")
    if config.api_key:
        if provided_key != config.api_key:
            logger.warning("Invalid API key for %s %s from %s", method, path, client)
            return JSONResponse(status_code=401, content={"detail": "Invalid API key"})

    response = await call_next(request)
    logger.info("Response: %s %s -> %s", method, path, response.status_code)
    return response


@app.get("/health")
async def health() -> Dict[str, str]:
    """Return a simple health check response."""
    return {"status": "ok"}


@app.post("/exec", response_model=ExecuteResponse)
async def exec_root(req: ExecuteRequest, supervisor: Supervisor = Depends(get_supervisor)) -> ExecuteResponse:
    """Run a snippet and return its terminal result in the response."""
    session_id = req.session_id or uuid.uuid4().hex
    logger.info("[/exec] Received %s request for session %s", req.language.value, session_id)

    try:
        result = await supervisor.execute(req.code, session_id, req.language)
    except CodecellError as exc:
        logger.warning("[/exec] Rejected request for session %s: %s", session_id, exc)
        raise _http_error(exc)
    except Exception as exc:
        logger.exception("[/exec] Unhandled error during execution: %s", exc)
        raise HTTPException(status_code=500, detail="Execution error")

    logger.info(
        "[/exec] Execution finished: exit_code=%s, status=%s, duration_ms=%s",
        result.exit_code,
        result.status.value,
        result.duration_ms,
    )
    return ExecuteResponse(
        stdout=result.stdout,
        stderr=result.stderr,
        exit_code=result.exit_code,
        duration_ms=result.duration_ms,
        status=result.status,
    )


@app.post(
    "/v1/sessions/{session_id}/execute",
    response_model=SubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def execute_code(
    session_id: str,
    req: SessionExecuteRequest,
    supervisor: Supervisor = Depends(get_supervisor),
) -> SubmitResponse:
    """Start a snippet in ``session_id``.

    Returns as soon as the program is running (or compilation has failed).
    Output and the terminal result are delivered to the session's
    WebSocket subscribers.
    """
    try:
        await supervisor.submit(req.code, session_id, req.language)
    except CodecellError as exc:
        raise _http_error(exc)
    return SubmitResponse(session_id=session_id)


@app.post("/v1/sessions/{session_id}/stop", response_model=StopResponse)
async def stop_execution(session_id: str, supervisor: Supervisor = Depends(get_supervisor)) -> StopResponse:
    """Kill the running program of a session, if any."""
    return StopResponse(stopped=await supervisor.stop(session_id))


@app.get("/v1/sessions/{session_id}", response_model=SessionInfo)
async def get_session(session_id: str, supervisor: Supervisor = Depends(get_supervisor)) -> SessionInfo:
    """Report whether a program is running for a session."""
    return SessionInfo(session_id=session_id, running=supervisor.is_running(session_id))


@app.delete("/v1/sessions/{session_id}")
async def close_session(session_id: str, supervisor: Supervisor = Depends(get_supervisor)) -> Dict[str, str]:
    """Tear down a session whose surface has gone away."""
    await supervisor.teardown(session_id)
    return {"detail": "Session closed"}


@app.get("/v1/runtimes", response_model=List[RuntimeStatus])
def list_runtimes(supervisor: Supervisor = Depends(get_supervisor)) -> List[RuntimeStatus]:
    """Report which enabled languages have their toolchain installed."""
    return [check_language(language) for language in supervisor.languages]


@app.websocket("/v1/sessions/{session_id}/ws")
async def session_socket(websocket: WebSocket, session_id: str) -> None:
    """Bidirectional channel for one session.

    The server pushes every event of the session.  The client may send
    ``{"type": "execute", "language": ..., "code": ...}`` and
    ``{"type": "stop"}``.  Closing the last socket of a session tears the
    session down.
    """
    if config.api_key:
        provided_key = websocket.headers.get("x-api-key") or websocket.query_params.get("api_key")
        if provided_key != config.api_key:
            logger.warning("Invalid API key for websocket on session %s", session_id)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

    await websocket.accept()
    supervisor: Supervisor = websocket.app.state.supervisor
    subscription = supervisor.events.subscribe(session_id)
    send_lock = asyncio.Lock()

    async def send(event: SessionEvent) -> None:
        async with send_lock:
            await websocket.send_json(event.model_dump(mode="json"))

    async def forward() -> None:
        async for event in subscription:
            await send(event)

    forwarder = asyncio.create_task(forward())
    logger.info("WebSocket connected for session %s", session_id)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                await send(ErrorEvent(detail="Messages must be JSON objects"))
                continue
            kind = message.get("type") if isinstance(message, dict) else None
            if kind == "execute":
                try:
                    req = SessionExecuteRequest.model_validate(message)
                    await supervisor.submit(req.code, session_id, req.language)
                except ValidationError as exc:
                    await send(ErrorEvent(detail=f"Invalid execute message: {exc.errors()[0]['msg']}"))
                except CodecellError as exc:
                    await send(ErrorEvent(detail=str(exc)))
            elif kind == "stop":
                await send(StoppedEvent(stopped=await supervisor.stop(session_id)))
            else:
                await send(ErrorEvent(detail=f"Unknown message type: {kind!r}"))
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected for session %s", session_id)
    finally:
        forwarder.cancel()
        with suppress(Exception, asyncio.CancelledError):
            await forwarder
        subscription.close()
        # Other sockets on the same session keep the run alive.
        if supervisor.events.subscriber_count(session_id) == 0:
            await supervisor.teardown(session_id)
