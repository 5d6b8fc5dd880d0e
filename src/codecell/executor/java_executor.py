"""
Pipeline for Java.

Java requires the file name of a public class to match the class name, and
``javac`` writes one ``.class`` file per type next to the source.  The
pipeline therefore derives the class name from the snippet, works inside a
dedicated per-session directory and removes that whole directory when the
run ends.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional

from ..errors import SetupError
from ..models import Language
from ..scratch import ScratchArea
from .base import CompileFailure, Pipeline

CLASS_MARKER = "public class "
DEFAULT_CLASS_NAME = "Main"


def extract_class_name(code: str) -> Optional[str]:
    """Return the name of the first ``public class`` declared in ``code``.

    Only lines that start with the marker once leading whitespace is removed
    count.  A marker followed by no identifier characters is skipped.
    """
    for line in code.splitlines():
        trimmed = line.lstrip()
        if not trimmed.startswith(CLASS_MARKER):
            continue
        rest = trimmed[len(CLASS_MARKER):]
        name = []
        for char in rest:
            if not (char.isalnum() or char == "_"):
                break
            name.append(char)
        if name:
            return "".join(name)
    return None


class JavaPipeline(Pipeline):
    """Compile with ``javac`` and launch with ``java`` inside a scratch directory."""

    language = Language.JAVA
    compiler = "javac"
    launcher = "java"
    required_commands = ("javac", "java")

    def __init__(self, code: str, session_id: str, scratch: ScratchArea) -> None:
        super().__init__(code, session_id, scratch)
        self.class_name = extract_class_name(code) or DEFAULT_CLASS_NAME
        self.work_dir: Optional[Path] = None

    async def prepare(self) -> List[Path]:
        self.work_dir = self.scratch.session_dir(self.session_id, self.language.value)
        # The directory is the single artifact; removing it removes the class files too.
        self.artifacts.append(self.work_dir)
        try:
            await asyncio.to_thread(self.work_dir.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise SetupError(f"Failed to create {self.work_dir}: {exc}") from exc
        source = self.work_dir / f"{self.class_name}.java"
        await self._write(source, self.code, track=False)
        return list(self.artifacts)

    def compile_command(self) -> List[str]:
        return [self.compiler, f"{self.class_name}.java"]

    async def compile(self) -> Optional[CompileFailure]:
        return await self._run_compiler(self.compile_command(), cwd=self.work_dir)

    def command(self) -> List[str]:
        return [self.launcher, self.class_name]

    def working_dir(self) -> Optional[Path]:
        return self.work_dir
