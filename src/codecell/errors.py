"""Errors raised synchronously by the execution supervisor.

Only failures that happen before a run is accepted surface as exceptions.
Compile errors, non-zero exits and cancellations are ordinary results and
travel through the ``completed`` event instead.
"""

from __future__ import annotations


class CodecellError(RuntimeError):
    """Base class for errors reported to the caller of ``submit``."""


class UnsupportedLanguageError(CodecellError, ValueError):
    """Raised when a request names a language that is unknown or disabled."""

    def __init__(self, language: str) -> None:
        super().__init__(f"Unsupported language: {language}")
        self.language = language


class SessionBusyError(CodecellError):
    """Raised when a session already has a run in flight."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id!r} already has a running execution")
        self.session_id = session_id


class ShuttingDownError(CodecellError):
    """Raised when attempting to submit while the supervisor shuts down."""


class SetupError(CodecellError):
    """Raised when scratch files cannot be written or a process cannot be spawned."""
