"""Scratch space for transient execution artifacts.

Every run writes its source (and, for compiled languages, its binary or
class files) below a single scratch root.  Paths are derived from the session
key, so concurrent sessions never contend on the same file, and a session
only ever has one run in flight.

Deletion here is best-effort: a file that is already gone, or that cannot be
removed, is logged and otherwise ignored.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

PREFIX = "codecell"

_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")


def safe_key(session_id: str) -> str:
    """Return a filesystem-safe form of ``session_id``.

    Keys made only of ``[A-Za-z0-9_-]`` are used as-is.  Anything else is
    replaced with ``_`` and suffixed with a short digest of the raw key so
    that ``"a/b"`` and ``"a_b"`` still map to different paths.
    """
    cleaned = _UNSAFE.sub("_", session_id)
    if cleaned == session_id and session_id:
        return session_id
    digest = hashlib.sha1(session_id.encode("utf-8")).hexdigest()[:8]
    return f"{cleaned}_{digest}"


class ScratchArea:
    """Resolve and remove per-session scratch paths under ``base_dir``."""

    def __init__(self, base_dir: str | os.PathLike[str]) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def source_file(self, session_id: str, extension: str) -> Path:
        return self.base_dir / f"{PREFIX}_{safe_key(session_id)}.{extension}"

    def binary_file(self, session_id: str) -> Path:
        name = f"{PREFIX}_{safe_key(session_id)}_bin"
        if os.name == "nt":
            name += ".exe"
        return self.base_dir / name

    def session_dir(self, session_id: str, language: str) -> Path:
        return self.base_dir / f"{PREFIX}_{language}_{safe_key(session_id)}"

    @staticmethod
    def remove(path: Path) -> None:
        """Delete a file or directory tree, swallowing any failure."""
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.debug("Unable to remove scratch path %s: %s", path, exc)
