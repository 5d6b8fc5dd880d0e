"""
Pipeline for languages compiled to a single native binary.

The source is written next to an explicit output-binary path, both keyed
by the session.  If the compiler rejects the source, the pipeline removes
its artifacts and reports the compiler's diagnostics; the supervisor then
short-circuits without ever spawning a program.
"""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar, List, Optional

from ..models import Language
from ..scratch import ScratchArea
from .base import CompileFailure, Pipeline


class CompiledPipeline(Pipeline):
    """Compile ``source`` into ``binary`` and run the binary."""

    extension: ClassVar[str]
    compiler: ClassVar[str]

    def __init__(self, code: str, session_id: str, scratch: ScratchArea) -> None:
        super().__init__(code, session_id, scratch)
        self.source_path: Optional[Path] = None
        self.binary_path: Optional[Path] = None

    async def prepare(self) -> List[Path]:
        self.source_path = self.scratch.source_file(self.session_id, self.extension)
        self.binary_path = self.scratch.binary_file(self.session_id)
        await self._write(self.source_path, self.code)
        self.artifacts.append(self.binary_path)
        return list(self.artifacts)

    def compile_command(self) -> List[str]:
        return [self.compiler, str(self.source_path), "-o", str(self.binary_path)]

    async def compile(self) -> Optional[CompileFailure]:
        return await self._run_compiler(self.compile_command())

    def command(self) -> List[str]:
        if self.binary_path is None:
            raise RuntimeError("prepare() must run before command()")
        return [str(self.binary_path)]


class RustPipeline(CompiledPipeline):
    language = Language.RUST
    extension = "rs"
    compiler = "rustc"
    required_commands = ("rustc",)
