"""Execution supervisor: submit, stream, complete, cancel.

The supervisor turns a ``(code, session_id, language)`` request into a
running OS process and sees it through to exactly one terminal result:

1. **Setup** (inside :meth:`Supervisor.submit`): reserve the session, let the
   language pipeline write scratch files and compile, spawn the program and
   track it in the :class:`~codecell.registry.ProcessRegistry`.
2. **Stream** (background task): drain stdout and stderr concurrently and
   publish every line as an ``output`` event.
3. **Complete**: untrack and await the process, resolve its exit code,
   delete the scratch artifacts, then publish ``completed`` followed by
   ``state_changed(false)``.

Only setup failures are raised to the caller.  Compile errors, non-zero
exits and cancellations all arrive as a ``completed`` event, so a returned
:class:`Run` means "attempted", not "succeeded".

A session accepts one run at a time: a second submit while a run is in
flight raises :class:`~codecell.errors.SessionBusyError`.  Scratch paths are
derived from the session key, so two concurrent runs of one session would
overwrite and delete each other's files.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import Dict, Iterable, Mapping, Optional, Tuple, Type, Union

from .errors import SessionBusyError, ShuttingDownError, UnsupportedLanguageError
from .events import EventHub
from .executor import PIPELINES, UNKNOWN_EXIT_CODE, ExecutionResult, Pipeline, resolve_exit
from .models import CompletedEvent, Language, OutputEvent, RunStatus, StateChangedEvent, Stream
from .registry import ProcessRegistry, terminate
from .scratch import ScratchArea
from .streaming import drain_process

logger = logging.getLogger(__name__)


def _consume_exception(future: "asyncio.Future[ExecutionResult]") -> None:
    # Nobody is required to wait on a run; keep asyncio from warning about it.
    if not future.cancelled():
        future.exception()


class Run:
    """Handle on one accepted execution request."""

    def __init__(self, session_id: str, language: Language) -> None:
        self.session_id = session_id
        self.language = language
        self.started = time.perf_counter()
        self.task: Optional[asyncio.Task] = None
        self._result: "asyncio.Future[ExecutionResult]" = asyncio.get_running_loop().create_future()
        self._result.add_done_callback(_consume_exception)

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started) * 1000)

    def done(self) -> bool:
        return self._result.done()

    async def wait(self) -> ExecutionResult:
        """Wait for the terminal result without cancelling the run on timeout."""
        return await asyncio.shield(self._result)


class Supervisor:
    """Run code snippets as supervised, cancellable processes."""

    def __init__(
        self,
        registry: ProcessRegistry,
        events: EventHub,
        scratch: ScratchArea,
        allowed_langs: Optional[Iterable[Union[Language, str]]] = None,
        stream_limit: int = 64 * 1024,
        pipelines: Optional[Mapping[Language, Type[Pipeline]]] = None,
    ) -> None:
        self.registry = registry
        self.events = events
        self.scratch = scratch
        self.stream_limit = stream_limit
        self._pipelines: Dict[Language, Type[Pipeline]] = dict(pipelines or PIPELINES)
        if allowed_langs is None:
            self._allowed = set(self._pipelines)
        else:
            self._allowed = {Language(lang) for lang in allowed_langs}
        self._runs: Dict[str, Run] = {}
        self._shutting_down = False

    # -- Query -----------------------------------------------------------------

    def pipeline_for(self, language: Union[Language, str]) -> Type[Pipeline]:
        """Return the pipeline class for ``language``.

        Raises :class:`UnsupportedLanguageError` for unknown or disabled languages.
        """
        try:
            lang = Language(language)
        except ValueError:
            raise UnsupportedLanguageError(str(language)) from None
        if lang not in self._allowed or lang not in self._pipelines:
            raise UnsupportedLanguageError(lang.value)
        return self._pipelines[lang]

    @property
    def languages(self) -> Tuple[Language, ...]:
        return tuple(lang for lang in Language if lang in self._allowed and lang in self._pipelines)

    def is_running(self, session_id: str) -> bool:
        """Whether a program is currently tracked for ``session_id``."""
        return session_id in self.registry

    def is_busy(self, session_id: str) -> bool:
        """Whether a run was accepted for ``session_id`` and has not completed."""
        return session_id in self._runs

    def get_run(self, session_id: str) -> Optional[Run]:
        return self._runs.get(session_id)

    # -- Entry points ----------------------------------------------------------

    async def submit(self, code: str, session_id: str, language: Union[Language, str]) -> Run:
        """Accept a request and start it; results arrive as session events.

        Preparation and compilation happen before this returns.  Raises a
        :class:`~codecell.errors.CodecellError` subclass when the request
        cannot be set up; in that case nothing is tracked and no event is
        published.
        """
        self._refuse_if_shutting_down(session_id)
        pipeline_cls = self.pipeline_for(language)
        if session_id in self._runs:
            raise SessionBusyError(session_id)

        # Reserve the session before the first await.
        run = Run(session_id, pipeline_cls.language)
        self._runs[session_id] = run
        pipeline = pipeline_cls(code, session_id, self.scratch)
        logger.info("Submit %s run for session %s", run.language.value, session_id)

        try:
            await pipeline.prepare()
            failure = await pipeline.compile()
            if failure is not None:
                logger.info(
                    "Compilation failed for session %s: exit_code=%s",
                    session_id,
                    failure.exit_code,
                )
                self._complete(
                    run,
                    ExecutionResult(
                        stdout="",
                        stderr=failure.stderr,
                        exit_code=failure.exit_code,
                        duration_ms=run.elapsed_ms(),
                        status=RunStatus.COMPILE_ERROR,
                    ),
                    tracked=False,
                )
                return run
            # Shutdown may have started while we were compiling.
            self._refuse_if_shutting_down(session_id)
            process = await pipeline.run(self.stream_limit)
            if self._shutting_down:
                terminate(process)
                await process.wait()
                self._refuse_if_shutting_down(session_id)
        except BaseException:
            try:
                await pipeline.acleanup()
            finally:
                self._runs.pop(session_id, None)
                run._result.cancel()
            raise

        self.registry.track(session_id, process)
        logger.info("Started session %s: pid=%s, argv=%s", session_id, process.pid, pipeline.command())
        self.events.emit(session_id, StateChangedEvent(is_running=True))
        run.task = asyncio.create_task(
            self._supervise(run, pipeline, process),
            name=f"codecell-run-{session_id}",
        )
        return run

    async def execute(self, code: str, session_id: str, language: Union[Language, str]) -> ExecutionResult:
        """Submit a request and wait for its terminal result."""
        run = await self.submit(code, session_id, language)
        return await run.wait()

    async def stop(self, session_id: str) -> bool:
        """Kill the program running for ``session_id``.

        The run still completes through the normal path, with the ``-1``
        exit code and ``cancelled`` status.  Returns ``False`` if nothing
        was running.
        """
        killed = await self.registry.kill(session_id)
        logger.info("Stop requested for session %s: killed=%s", session_id, killed)
        return killed

    async def teardown(self, session_id: str) -> None:
        """Best-effort kill when the session's surface goes away."""
        if await self.registry.kill(session_id):
            logger.info("Tore down running process for closed session %s", session_id)

    async def shutdown(self) -> None:
        """Refuse new runs, kill every running program and wait for in-flight runs."""
        self._shutting_down = True
        logger.info("Supervisor shutting down (active_runs=%d)", len(self._runs))
        killed = await self.registry.kill_all()
        if killed:
            logger.warning("Killed %d running process(es) during shutdown", killed)
        # Runs still in setup have no task yet; their result future covers them.
        pending = set()
        for run in list(self._runs.values()):
            pending.add(run._result)
            if run.task is not None:
                pending.add(run.task)
        if pending:
            await asyncio.wait(pending)

    def _refuse_if_shutting_down(self, session_id: str) -> None:
        if self._shutting_down:
            logger.info("Refusing run for session %s: shutting down", session_id)
            raise ShuttingDownError("Supervisor is shutting down; not accepting new runs")

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    # -- Run lifecycle -----------------------------------------------------------

    def _emit_line(self, session_id: str, line: str, stream: Stream) -> None:
        self.events.emit(session_id, OutputEvent(line=line, stream=stream))

    async def _supervise(self, run: Run, pipeline: Pipeline, process: asyncio.subprocess.Process) -> None:
        session_id = run.session_id
        try:
            stdout, stderr = await drain_process(process, functools.partial(self._emit_line, session_id))
            exit_code, status = await self._resolve_exit(session_id)
            await pipeline.acleanup()
        except asyncio.CancelledError:
            logger.warning("Run for session %s cancelled before completion", session_id)
            await self._abandon(run, pipeline)
            raise
        except Exception as exc:
            logger.exception("Run for session %s failed: %s", session_id, exc)
            await self._abandon(run, pipeline, exc)
            return

        result = ExecutionResult(
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            duration_ms=run.elapsed_ms(),
            status=status,
        )
        logger.info(
            "Session %s finished: exit_code=%s, status=%s, duration_ms=%s",
            session_id,
            result.exit_code,
            result.status.value,
            result.duration_ms,
        )
        self._complete(run, result, tracked=True)

    async def _resolve_exit(self, session_id: str) -> Tuple[int, RunStatus]:
        process = self.registry.untrack(session_id)
        if process is None:
            # Already untracked and reaped by stop/teardown.
            return UNKNOWN_EXIT_CODE, RunStatus.CANCELLED
        return resolve_exit(await process.wait())

    def _complete(self, run: Run, result: ExecutionResult, tracked: bool) -> None:
        session_id = run.session_id
        self._runs.pop(session_id, None)
        self.events.emit(
            session_id,
            CompletedEvent(
                stdout=result.stdout,
                stderr=result.stderr,
                exit_code=result.exit_code,
                duration_ms=result.duration_ms,
                status=result.status,
            ),
        )
        if tracked:
            self.events.emit(session_id, StateChangedEvent(is_running=False))
        run._result.set_result(result)

    async def _abandon(self, run: Run, pipeline: Pipeline, exc: Optional[BaseException] = None) -> None:
        """Release everything a run holds when it cannot complete normally."""
        session_id = run.session_id
        orphan = self.registry.untrack(session_id)
        if orphan is not None:
            terminate(orphan)
        try:
            await pipeline.acleanup()
        finally:
            self._runs.pop(session_id, None)
            self.events.emit(session_id, StateChangedEvent(is_running=False))
            if exc is None:
                run._result.cancel()
            else:
                run._result.set_exception(exc)
