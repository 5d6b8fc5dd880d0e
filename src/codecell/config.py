"""Configuration loader.

The execution service reads its configuration from environment variables so
that the same build can back a desktop shell, a local development server or a
container.  Reasonable defaults are provided so that local development works
out of the box.

Environment variables:

``CODECELL_API_KEY``
    The shared secret used to authenticate incoming requests.  Each client
    must include this value in the ``x-api-key`` header.  When empty,
    authentication is disabled.

``CODECELL_SCRATCH_DIR``
    Directory under which per-session scratch files and directories are
    created.  Defaults to the platform temporary directory.

``CODECELL_ALLOWED_LANGS``
    Comma-separated list of languages permitted for execution.  Defaults to
    ``python,node,typescript,rust,java``.

``CODECELL_STREAM_LIMIT``
    Buffer limit (in bytes) for reading a single output line from a running
    program.  Longer lines are delivered in chunks of this size.  Default is
    65536.

``CODECELL_LOG_LEVEL``
    Log level for the ``codecell`` logger.  Defaults to ``INFO``.

``PORT``
    The port on which the API server listens.  Defaults to 8080.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from typing import List

from .models import Language


DEFAULT_LANGS = ",".join(lang.value for lang in Language)
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


@dataclass
class Config:
    """Centralised configuration object."""

    api_key: str
    scratch_dir: str
    allowed_langs: List[str]
    stream_limit: int
    log_level: str
    port: int

    @classmethod
    def load(cls) -> "Config":
        # API key may be empty in local development but should be set when exposed.
        api_key = os.getenv("CODECELL_API_KEY", "")

        scratch_dir = os.getenv("CODECELL_SCRATCH_DIR") or tempfile.gettempdir()

        allowed_langs_env = os.getenv("CODECELL_ALLOWED_LANGS", DEFAULT_LANGS)
        allowed_langs = [lang.strip().lower() for lang in allowed_langs_env.split(",") if lang.strip()]
        known = {lang.value for lang in Language}
        unknown = [lang for lang in allowed_langs if lang not in known]
        if unknown:
            raise ValueError(
                f"Invalid CODECELL_ALLOWED_LANGS entries: {', '.join(unknown)}. "
                f"Supported: {', '.join(sorted(known))}."
            )

        def _int_var(name: str, default: int) -> int:
            val = os.getenv(name)
            if val is None:
                return default
            try:
                return int(val)
            except ValueError:
                raise ValueError(f"Invalid integer for {name}: {val}")

        stream_limit = _int_var("CODECELL_STREAM_LIMIT", 64 * 1024)
        if stream_limit <= 0:
            raise ValueError(f"CODECELL_STREAM_LIMIT must be positive, got {stream_limit}")
        log_level = os.getenv("CODECELL_LOG_LEVEL", "INFO").strip().upper()
        if log_level not in LOG_LEVELS:
            raise ValueError(
                f"Invalid CODECELL_LOG_LEVEL: {log_level}. Supported: {', '.join(LOG_LEVELS)}."
            )
        port = _int_var("PORT", 8080)

        return cls(
            api_key=api_key,
            scratch_dir=scratch_dir,
            allowed_langs=allowed_langs,
            stream_limit=stream_limit,
            log_level=log_level,
            port=port,
        )

    @classmethod
    def from_env(cls) -> "Config":
        """
        Alternate constructor used by the API to load configuration.

        This wrapper calls :meth:`load` to construct the configuration.
        It exists to provide a more intuitive name when consumed in
        application code.
        """
        return cls.load()
