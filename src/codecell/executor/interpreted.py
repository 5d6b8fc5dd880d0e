"""
Pipelines for interpreted languages.

An interpreted pipeline writes the snippet to a single scratch file named
after the session key and invokes the interpreter on it, with the file
path as the last argument.  There is no compile step; the only artifact
is the file itself.

The interpreters are expected on ``PATH``.  Whether they are installed is
reported by :mod:`codecell.runtimes`, not checked here.
"""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar, List, Optional, Tuple

from ..models import Language
from ..scratch import ScratchArea
from .base import Pipeline


class InterpretedPipeline(Pipeline):
    """Run a script file through a fixed interpreter command."""

    extension: ClassVar[str]
    interpreter: ClassVar[str]
    extra_args: ClassVar[Tuple[str, ...]] = ()

    def __init__(self, code: str, session_id: str, scratch: ScratchArea) -> None:
        super().__init__(code, session_id, scratch)
        self.script_path: Optional[Path] = None

    async def prepare(self) -> List[Path]:
        self.script_path = self.scratch.source_file(self.session_id, self.extension)
        await self._write(self.script_path, self.code)
        return list(self.artifacts)

    def command(self) -> List[str]:
        if self.script_path is None:
            raise RuntimeError("prepare() must run before command()")
        return [self.interpreter, *self.extra_args, str(self.script_path)]


class PythonPipeline(InterpretedPipeline):
    language = Language.PYTHON
    extension = "py"
    interpreter = "python3"
    required_commands = ("python3",)


class NodePipeline(InterpretedPipeline):
    language = Language.NODE
    extension = "js"
    interpreter = "node"
    required_commands = ("node",)


class TypeScriptPipeline(InterpretedPipeline):
    """TypeScript runs through ``npx tsx`` so no separate build is needed."""

    language = Language.TYPESCRIPT
    extension = "ts"
    interpreter = "npx"
    extra_args = ("tsx",)
    required_commands = ("npx",)
