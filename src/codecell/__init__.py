"""Code execution supervisor package.

This package runs code snippets submitted by an editor as external
processes, streams their output line by line, lets the user stop a run
midway and removes every scratch file a run created.  It supports Python,
Node.js, TypeScript, Rust and Java.

The top-level modules include:

* ``config`` – configuration handling for environment variables.
* ``models`` – Pydantic models defining request, response and event schemas.
* ``scratch`` – per-session scratch paths and best-effort deletion.
* ``executor`` – language pipelines: prepare, compile, run and clean up.
* ``registry`` – the map of session keys to running processes.
* ``streaming`` – concurrent line-by-line draining of program output.
* ``events`` – per-session fan-out of events to listeners.
* ``supervisor`` – submit, stop and teardown entry points.
* ``runtimes`` – toolchain availability checks with install hints.
* ``api`` – FastAPI application exposing HTTP and WebSocket endpoints.
"""

from .errors import CodecellError, SessionBusyError, SetupError, ShuttingDownError, UnsupportedLanguageError
from .events import EventHub
from .executor import ExecutionResult
from .models import Language, RunStatus
from .registry import ProcessRegistry
from .scratch import ScratchArea
from .supervisor import Run, Supervisor

__all__ = [
    "CodecellError",
    "EventHub",
    "ExecutionResult",
    "Language",
    "ProcessRegistry",
    "Run",
    "RunStatus",
    "ScratchArea",
    "SessionBusyError",
    "SetupError",
    "ShuttingDownError",
    "Supervisor",
    "UnsupportedLanguageError",
]
