"""
Base interfaces and dataclasses for language pipelines.

A pipeline is the language-specific recipe behind one execution request:
it writes scratch artifacts (:meth:`Pipeline.prepare`), optionally
compiles them (:meth:`Pipeline.compile`), spawns the program
(:meth:`Pipeline.run`) and finally deletes whatever it created
(:meth:`Pipeline.cleanup`).  Streaming, process tracking and result
reporting are handled once by the supervisor; pipelines only vary these
four steps.

Each pipeline instance serves exactly one request and owns its artifact
set.  :meth:`Pipeline.cleanup` is idempotent so that every exit path may
call it without coordinating with the others.
"""

from __future__ import annotations

import abc
import asyncio
import contextlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar, List, Optional, Sequence, Tuple

from ..errors import SetupError
from ..models import Language, RunStatus
from ..scratch import ScratchArea

logger = logging.getLogger(__name__)

UNKNOWN_EXIT_CODE = -1


@dataclass
class ExecutionResult:
    """Terminal result of one execution request.

    Attributes
    ----------
    stdout: str
        Full standard output of the run.
    stderr: str
        Full standard error of the run, or compiler diagnostics when
        ``status`` is ``compile_error``.
    exit_code: int
        Exit status of the program or compiler; ``-1`` when none is
        reportable.
    duration_ms: int
        Wall-clock time since the request was accepted, in milliseconds.
    status: RunStatus
        How the run ended.
    """

    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    status: RunStatus = RunStatus.EXITED


@dataclass
class CompileFailure:
    """Outcome of a compiler invocation that exited unsuccessfully."""

    exit_code: int
    stderr: str


def resolve_exit(returncode: Optional[int]) -> Tuple[int, RunStatus]:
    """Translate a subprocess return code into ``(exit_code, status)``.

    asyncio reports death by signal as a negative return code; that has no
    portable exit code, so it maps to the sentinel.
    """
    if returncode is None or returncode < 0:
        return UNKNOWN_EXIT_CODE, RunStatus.SIGNALED
    return returncode, RunStatus.EXITED


class Pipeline(abc.ABC):
    """
    Abstract base class for language pipelines.

    Subclasses set :attr:`language` and :attr:`required_commands`, and
    implement :meth:`prepare` and :meth:`command`.  Compiled languages
    also override :meth:`compile`.
    """

    language: ClassVar[Language]
    required_commands: ClassVar[Tuple[str, ...]] = ()

    def __init__(self, code: str, session_id: str, scratch: ScratchArea) -> None:
        self.code = code
        self.session_id = session_id
        self.scratch = scratch
        self.artifacts: List[Path] = []
        self._cleaned = False

    @abc.abstractmethod
    async def prepare(self) -> List[Path]:
        """Write scratch artifacts and return the artifact set."""
        raise NotImplementedError

    async def compile(self) -> Optional[CompileFailure]:
        """Compile prepared sources.

        Returns ``None`` when there is nothing to compile or compilation
        succeeded.  On failure the artifacts have already been removed.
        """
        return None

    @abc.abstractmethod
    def command(self) -> List[str]:
        """Return the argv that runs the prepared program."""
        raise NotImplementedError

    def working_dir(self) -> Optional[Path]:
        return None

    async def run(self, limit: int = 64 * 1024) -> asyncio.subprocess.Process:
        """Spawn the program with piped output and stdin closed."""
        return await self._spawn(self.command(), self.working_dir(), limit)

    def cleanup(self) -> None:
        """Delete every artifact this pipeline created.  Safe to call twice."""
        if self._cleaned:
            return
        self._cleaned = True
        for path in reversed(self.artifacts):
            self.scratch.remove(path)
        logger.debug("Cleaned up %d artifact(s) for session %s", len(self.artifacts), self.session_id)

    async def acleanup(self) -> None:
        """Run :meth:`cleanup` in a worker thread so deletes never block the loop."""
        await asyncio.to_thread(self.cleanup)

    # -- helpers -------------------------------------------------------------

    async def _write(self, path: Path, content: str, track: bool = True) -> None:
        # Track before writing so a partial write is still cleaned up.
        if track:
            self.artifacts.append(path)
        try:
            await asyncio.to_thread(path.write_text, content, encoding="utf-8")
        except OSError as exc:
            raise SetupError(f"Failed to write {path}: {exc}") from exc

    async def _spawn(
        self,
        args: Sequence[str],
        cwd: Optional[Path] = None,
        limit: int = 64 * 1024,
    ) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *args,
                cwd=str(cwd) if cwd is not None else None,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=limit,
                # Own process group so a kill reaches runner children (npx -> node).
                start_new_session=os.name == "posix",
            )
        except OSError as exc:
            raise SetupError(f"Failed to execute {args[0]}: {exc}") from exc

    async def _run_compiler(self, args: Sequence[str], cwd: Optional[Path] = None) -> Optional[CompileFailure]:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(cwd) if cwd is not None else None,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise SetupError(f"Failed to compile {self.language.value}: {exc}") from exc
        try:
            _, stderr = await process.communicate()
        except BaseException:
            # Cancelled mid-compile: the compiler must be gone before its files are removed.
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise
        if process.returncode == 0:
            return None
        exit_code, _ = resolve_exit(process.returncode)
        await self.acleanup()
        return CompileFailure(exit_code=exit_code, stderr=stderr.decode("utf-8", errors="replace"))
