"""Pydantic models for request, response and event bodies.

These models express the structure exchanged over the HTTP API and the
per-session WebSocket.  Events are plain JSON objects tagged with a ``type``
field so that a browser client can dispatch on it directly.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field


class Language(str, Enum):
    """Languages the supervisor knows how to run."""

    PYTHON = "python"
    NODE = "node"
    TYPESCRIPT = "typescript"
    RUST = "rust"
    JAVA = "java"


class Stream(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


class RunStatus(str, Enum):
    """How a run ended.

    ``exit_code`` is ``-1`` for every status except ``exited`` and
    ``compile_error``; the status tells those cases apart.
    """

    EXITED = "exited"
    SIGNALED = "signaled"
    CANCELLED = "cancelled"
    COMPILE_ERROR = "compile_error"


class ExecuteRequest(BaseModel):
    """Request body for a synchronous execution."""

    language: Language = Field(
        default=Language.PYTHON,
        description="Language of the snippet.",
    )
    code: str = Field(..., description="Source code to execute.")
    session_id: Optional[str] = Field(
        default=None,
        description="Session key.  A fresh one is generated when omitted.",
    )


class SessionExecuteRequest(BaseModel):
    """Request body for a streamed execution inside a known session."""

    language: Language
    code: str = Field(..., description="Source code to execute.")


class ExecuteResponse(BaseModel):
    """Response body for a synchronous execution."""

    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    status: RunStatus


class SubmitResponse(BaseModel):
    session_id: str
    accepted: bool = True


class StopResponse(BaseModel):
    stopped: bool


class SessionInfo(BaseModel):
    """Running state of a session."""

    session_id: str
    running: bool


class RuntimeStatus(BaseModel):
    """Availability of the toolchain behind one language."""

    language: Language
    available: bool
    missing: List[str] = Field(default_factory=list)
    install_hint: Optional[str] = None


# ---------------------------------------------------------------------------
# Session events
# ---------------------------------------------------------------------------


class OutputEvent(BaseModel):
    """One line of program output, terminator included."""

    type: Literal["output"] = "output"
    line: str
    stream: Stream


class CompletedEvent(BaseModel):
    """Terminal result of one execution."""

    type: Literal["completed"] = "completed"
    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    status: RunStatus


class StateChangedEvent(BaseModel):
    type: Literal["state_changed"] = "state_changed"
    is_running: bool


class StoppedEvent(BaseModel):
    """Reply to a ``stop`` command received over the WebSocket."""

    type: Literal["stopped"] = "stopped"
    stopped: bool


class ErrorEvent(BaseModel):
    """Reply to a WebSocket command that was rejected."""

    type: Literal["error"] = "error"
    detail: str


SessionEvent = Union[OutputEvent, CompletedEvent, StateChangedEvent, StoppedEvent, ErrorEvent]
