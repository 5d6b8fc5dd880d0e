"""Shared test fixtures.

Pipelines that would call ``python3``, ``rustc`` or ``javac`` are replaced by
subclasses that use the interpreter running the tests, so the supervisor can
be exercised end to end without any other toolchain installed.
"""

from __future__ import annotations

import shutil
import sys
from collections import defaultdict
from pathlib import Path
from typing import Dict, List

import pytest

from codecell.events import EventHub
from codecell.executor import CompiledPipeline, JavaPipeline, PythonPipeline
from codecell.models import Language, SessionEvent
from codecell.registry import ProcessRegistry
from codecell.scratch import ScratchArea
from codecell.supervisor import Supervisor

PY = sys.executable


class LocalPythonPipeline(PythonPipeline):
    interpreter = PY


class FailingCompilerPipeline(CompiledPipeline):
    """A compiled language whose compiler always rejects the source."""

    language = Language.RUST
    extension = "rs"
    compiler = PY

    def compile_command(self) -> List[str]:
        return [
            PY,
            "-c",
            "import sys; sys.stderr.write('error: expected item, found `fn`\\n'); sys.exit(1)",
        ]


class CopyCompilerPipeline(CompiledPipeline):
    """A compiled language whose "binary" is the source run through Python."""

    language = Language.RUST
    extension = "rs"
    compiler = PY

    def compile_command(self) -> List[str]:
        return [PY, "-c", "import shutil, sys; shutil.copy(sys.argv[1], sys.argv[2])", str(self.source_path), str(self.binary_path)]

    def command(self) -> List[str]:
        return [PY, str(self.binary_path)]


class SlowCompilerPipeline(CopyCompilerPipeline):
    """A compiled language whose compiler takes a second before producing the binary."""

    def compile_command(self) -> List[str]:
        script = "import sys, time; time.sleep(1); open(sys.argv[1], 'w').write(\"print('late')\\n\")"
        return [PY, "-c", script, str(self.binary_path)]


class FakeJavaPipeline(JavaPipeline):
    """Directory-based pipeline that "compiles" by dropping a class file next to the source."""

    def compile_command(self) -> List[str]:
        return [PY, "-c", f"open('{self.class_name}.class', 'w').write('cafebabe')"]

    def command(self) -> List[str]:
        return [PY, "-c", "import os; print(' '.join(sorted(os.listdir('.'))))"]


class RecordingHub(EventHub):
    """Event hub that also keeps every published event per session."""

    def __init__(self) -> None:
        super().__init__()
        self.events: Dict[str, List[SessionEvent]] = defaultdict(list)

    def emit(self, session_id: str, event: SessionEvent) -> None:
        self.events[session_id].append(event)
        super().emit(session_id, event)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def scratch_dir(tmp_path: Path) -> Path:
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def scratch(scratch_dir: Path) -> ScratchArea:
    return ScratchArea(scratch_dir)


@pytest.fixture
def hub() -> RecordingHub:
    return RecordingHub()


@pytest.fixture
def registry() -> ProcessRegistry:
    return ProcessRegistry()


@pytest.fixture
def supervisor(registry: ProcessRegistry, hub: RecordingHub, scratch: ScratchArea) -> Supervisor:
    return Supervisor(
        registry=registry,
        events=hub,
        scratch=scratch,
        pipelines={
            Language.PYTHON: LocalPythonPipeline,
            Language.RUST: CopyCompilerPipeline,
            Language.JAVA: FakeJavaPipeline,
        },
    )


requires_rustc = pytest.mark.skipif(shutil.which("rustc") is None, reason="rustc not installed")
requires_javac = pytest.mark.skipif(
    shutil.which("javac") is None or shutil.which("java") is None, reason="JDK not installed"
)
