"""
Language pipelines for the execution supervisor.

This package exposes one pipeline per supported language.  When a request
arrives, the supervisor looks up the pipeline class for its language and
instantiates it for that single run.  Each pipeline is responsible for
writing the snippet to scratch files, compiling it when the language needs
it, spawning the program and removing its artifacts afterwards.
Additional languages can be added by implementing the ``Pipeline``
interface from ``base.py`` and registering the class in ``PIPELINES``.
"""

from typing import Dict, Type

from ..models import Language
from .base import CompileFailure, ExecutionResult, Pipeline, UNKNOWN_EXIT_CODE, resolve_exit
from .compiled import CompiledPipeline, RustPipeline
from .interpreted import InterpretedPipeline, NodePipeline, PythonPipeline, TypeScriptPipeline
from .java_executor import DEFAULT_CLASS_NAME, JavaPipeline, extract_class_name

PIPELINES: Dict[Language, Type[Pipeline]] = {
    Language.PYTHON: PythonPipeline,
    Language.NODE: NodePipeline,
    Language.TYPESCRIPT: TypeScriptPipeline,
    Language.RUST: RustPipeline,
    Language.JAVA: JavaPipeline,
}

__all__ = [
    "CompileFailure",
    "CompiledPipeline",
    "DEFAULT_CLASS_NAME",
    "ExecutionResult",
    "InterpretedPipeline",
    "JavaPipeline",
    "NodePipeline",
    "PIPELINES",
    "Pipeline",
    "PythonPipeline",
    "RustPipeline",
    "TypeScriptPipeline",
    "UNKNOWN_EXIT_CODE",
    "extract_class_name",
    "resolve_exit",
]
