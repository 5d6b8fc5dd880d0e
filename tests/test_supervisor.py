"""
End-to-end tests for the execution supervisor.

Programs are real child processes of the test interpreter; see
``conftest.py`` for the pipelines standing in for other toolchains.
"""

from __future__ import annotations

import asyncio
import os

import anyio
import pytest
from conftest import FailingCompilerPipeline, LocalPythonPipeline, SlowCompilerPipeline

from codecell.errors import SessionBusyError, SetupError, ShuttingDownError, UnsupportedLanguageError
from codecell.executor import PythonPipeline
from codecell.models import CompletedEvent, Language, OutputEvent, RunStatus, StateChangedEvent, Stream
from codecell.supervisor import Supervisor

LONG_RUNNING = "import time\nprint('started', flush=True)\nwhile True:\n    time.sleep(0.1)\n"


async def _wait_for_output(subscription) -> OutputEvent:
    with anyio.fail_after(30):
        async for event in subscription:
            if isinstance(event, OutputEvent):
                return event
    raise AssertionError("subscription closed before any output")


def _types(events):
    return [event.type for event in events]


@pytest.mark.anyio
async def test_two_lines_scenario(supervisor, hub, scratch_dir):
    run = await supervisor.submit("print('a')\nprint('b')\n", "s1", Language.PYTHON)
    result = await run.wait()

    events = hub.events["s1"]
    assert events[0] == StateChangedEvent(is_running=True)
    assert [e for e in events if isinstance(e, OutputEvent)] == [
        OutputEvent(line="a\n", stream=Stream.STDOUT),
        OutputEvent(line="b\n", stream=Stream.STDOUT),
    ]
    completed = events[-2]
    assert isinstance(completed, CompletedEvent)
    assert completed.stdout == "a\nb\n"
    assert completed.stderr == ""
    assert completed.exit_code == 0
    assert completed.status is RunStatus.EXITED
    assert events[-1] == StateChangedEvent(is_running=False)

    assert result.stdout == "a\nb\n"
    assert result.exit_code == 0
    assert result.duration_ms >= 0
    assert list(scratch_dir.iterdir()) == []
    assert not supervisor.is_running("s1")
    assert not supervisor.is_busy("s1")


@pytest.mark.anyio
async def test_output_events_match_buffers(supervisor, hub):
    code = (
        "import sys\n"
        "for i in range(5):\n"
        "    print(f'out {i}', flush=True)\n"
        "for i in range(3):\n"
        "    print(f'err {i}', file=sys.stderr, flush=True)\n"
    )
    result = await supervisor.execute(code, "s1", Language.PYTHON)

    outputs = [e for e in hub.events["s1"] if isinstance(e, OutputEvent)]
    stdout_lines = [e.line for e in outputs if e.stream is Stream.STDOUT]
    stderr_lines = [e.line for e in outputs if e.stream is Stream.STDERR]
    assert len(stdout_lines) == 5
    assert len(stderr_lines) == 3
    assert "".join(stdout_lines) == result.stdout
    assert "".join(stderr_lines) == result.stderr
    assert _types(hub.events["s1"]).count("completed") == 1


@pytest.mark.anyio
async def test_partial_last_line_is_flushed(supervisor, hub):
    result = await supervisor.execute("print('no newline', end='')", "s1", "python")

    assert result.stdout == "no newline"
    assert [e.line for e in hub.events["s1"] if isinstance(e, OutputEvent)] == ["no newline"]


@pytest.mark.anyio
async def test_runtime_failure_is_ordinary_result(supervisor, scratch_dir):
    result = await supervisor.execute("import sys\nprint('boom', file=sys.stderr)\nsys.exit(3)\n", "s1", "python")

    assert result.exit_code == 3
    assert result.status is RunStatus.EXITED
    assert result.stderr == "boom\n"
    assert list(scratch_dir.iterdir()) == []


@pytest.mark.skipif(os.name != "posix", reason="signals are POSIX only")
@pytest.mark.anyio
async def test_death_by_signal_reports_sentinel(supervisor):
    result = await supervisor.execute("import os, signal\nos.kill(os.getpid(), signal.SIGTERM)\n", "s1", "python")

    assert result.exit_code == -1
    assert result.status is RunStatus.SIGNALED


@pytest.mark.anyio
async def test_stop_long_running_program(supervisor, hub, scratch_dir):
    subscription = hub.subscribe("s1")
    run = await supervisor.submit(LONG_RUNNING, "s1", Language.PYTHON)
    assert supervisor.is_running("s1")

    first = await _wait_for_output(subscription)
    assert first.line == "started\n"

    assert await supervisor.stop("s1") is True
    with anyio.fail_after(10):
        result = await run.wait()

    assert result.exit_code == -1
    assert result.status is RunStatus.CANCELLED
    assert result.stdout == "started\n"
    assert list(scratch_dir.iterdir()) == []
    assert not supervisor.is_running("s1")
    assert hub.events["s1"][-1] == StateChangedEvent(is_running=False)
    assert _types(hub.events["s1"]).count("completed") == 1
    subscription.close()


@pytest.mark.anyio
async def test_stop_without_running_process(supervisor, hub):
    assert await supervisor.stop("idle") is False
    assert await supervisor.stop("idle") is False
    assert hub.events["idle"] == []


@pytest.mark.anyio
async def test_second_submit_on_busy_session_is_rejected(supervisor, registry, hub):
    subscription = hub.subscribe("s1")
    run = await supervisor.submit(LONG_RUNNING, "s1", Language.PYTHON)
    await _wait_for_output(subscription)

    with pytest.raises(SessionBusyError):
        await supervisor.submit("print('again')", "s1", Language.PYTHON)
    assert registry.active_count == 1

    # Other sessions are unaffected.
    other = await supervisor.execute("print('other')", "s2", Language.PYTHON)
    assert other.stdout == "other\n"

    await supervisor.stop("s1")
    await run.wait()
    # Free again once the first run completed.
    again = await supervisor.execute("print('again')", "s1", Language.PYTHON)
    assert again.stdout == "again\n"
    subscription.close()


@pytest.mark.anyio
async def test_compile_failure_short_circuits(registry, hub, scratch, scratch_dir):
    supervisor = Supervisor(registry, hub, scratch, pipelines={Language.RUST: FailingCompilerPipeline})

    run = await supervisor.submit("fn main( {", "s1", Language.RUST)
    assert run.done()
    result = await run.wait()

    assert result.stdout == ""
    assert "expected item" in result.stderr
    assert result.exit_code == 1
    assert result.status is RunStatus.COMPILE_ERROR
    assert _types(hub.events["s1"]) == ["completed"]
    assert registry.active_count == 0
    assert not supervisor.is_busy("s1")
    assert list(scratch_dir.iterdir()) == []


@pytest.mark.anyio
async def test_compiled_program_runs_and_cleans_up(supervisor, scratch_dir):
    result = await supervisor.execute("print('compiled')\n", "s1", Language.RUST)

    assert result.stdout == "compiled\n"
    assert result.exit_code == 0
    assert list(scratch_dir.iterdir()) == []


@pytest.mark.anyio
async def test_directory_pipeline_runs_in_scratch_directory(supervisor, scratch_dir):
    code = "public class Widget {\n    public static void main(String[] args) {}\n}\n"
    result = await supervisor.execute(code, "s1", Language.JAVA)

    assert result.stdout == "Widget.class Widget.java\n"
    assert list(scratch_dir.iterdir()) == []


@pytest.mark.anyio
async def test_unsupported_language(supervisor, hub):
    with pytest.raises(UnsupportedLanguageError):
        await supervisor.submit("x", "s1", "cobol")
    # Known language without a configured pipeline.
    with pytest.raises(UnsupportedLanguageError):
        await supervisor.submit("x", "s1", Language.NODE)
    assert hub.events["s1"] == []


@pytest.mark.anyio
async def test_disallowed_language(registry, hub, scratch):
    supervisor = Supervisor(registry, hub, scratch, allowed_langs=["python"], pipelines={Language.PYTHON: LocalPythonPipeline})
    assert supervisor.languages == (Language.PYTHON,)
    with pytest.raises(UnsupportedLanguageError):
        await supervisor.submit("fn main() {}", "s1", "rust")


@pytest.mark.anyio
async def test_setup_failure_leaves_nothing_behind(registry, hub, scratch, scratch_dir):
    class Missing(PythonPipeline):
        interpreter = "definitely_not_a_real_command_12345"

    supervisor = Supervisor(registry, hub, scratch, pipelines={Language.PYTHON: Missing})
    with pytest.raises(SetupError):
        await supervisor.submit("print(1)", "s1", Language.PYTHON)

    assert hub.events["s1"] == []
    assert registry.active_count == 0
    assert not supervisor.is_busy("s1")
    assert list(scratch_dir.iterdir()) == []


@pytest.mark.anyio
async def test_teardown_kills_without_waiting(supervisor, hub, scratch_dir):
    subscription = hub.subscribe("s1")
    run = await supervisor.submit(LONG_RUNNING, "s1", Language.PYTHON)
    await _wait_for_output(subscription)
    subscription.close()

    await supervisor.teardown("s1")
    assert not supervisor.is_running("s1")

    with anyio.fail_after(10):
        result = await run.wait()
    assert result.status is RunStatus.CANCELLED
    assert list(scratch_dir.iterdir()) == []


@pytest.mark.anyio
async def test_concurrent_sessions(supervisor):
    codes = {f"s{i}": f"print({i})" for i in range(4)}
    results = await asyncio.gather(*(supervisor.execute(code, key, "python") for key, code in codes.items()))
    assert [r.stdout for r in results] == ["0\n", "1\n", "2\n", "3\n"]


@pytest.mark.anyio
async def test_shutdown_stops_runs_and_refuses_new_ones(supervisor, hub, scratch_dir):
    subscription = hub.subscribe("s1")
    run = await supervisor.submit(LONG_RUNNING, "s1", Language.PYTHON)
    await _wait_for_output(subscription)

    with anyio.fail_after(10):
        await supervisor.shutdown()

    assert run.done()
    assert (await run.wait()).status is RunStatus.CANCELLED
    assert supervisor.is_shutting_down
    with pytest.raises(ShuttingDownError):
        await supervisor.submit("print(1)", "s2", Language.PYTHON)
    assert list(scratch_dir.iterdir()) == []
    subscription.close()


@pytest.mark.anyio
async def test_shutdown_while_compiling_refuses_to_start(registry, hub, scratch, scratch_dir):
    supervisor = Supervisor(registry, hub, scratch, pipelines={Language.RUST: SlowCompilerPipeline})
    submit = asyncio.create_task(supervisor.submit("fn main() {}", "s1", Language.RUST))
    await asyncio.sleep(0.3)
    assert supervisor.is_busy("s1")

    with anyio.fail_after(10):
        await supervisor.shutdown()
        with pytest.raises(ShuttingDownError):
            await submit

    assert registry.active_count == 0
    assert not supervisor.is_busy("s1")
    assert hub.events["s1"] == []
    assert list(scratch_dir.iterdir()) == []


@pytest.mark.anyio
async def test_cancelled_submit_kills_compiler(registry, hub, scratch, scratch_dir):
    supervisor = Supervisor(registry, hub, scratch, pipelines={Language.RUST: SlowCompilerPipeline})
    submit = asyncio.create_task(supervisor.submit("fn main() {}", "s1", Language.RUST))
    await asyncio.sleep(0.3)

    submit.cancel()
    with pytest.raises(asyncio.CancelledError):
        await submit

    assert not supervisor.is_busy("s1")
    assert list(scratch_dir.iterdir()) == []
    # A surviving compiler would drop its binary into the scratch area by now.
    await asyncio.sleep(1.5)
    assert list(scratch_dir.iterdir()) == []
