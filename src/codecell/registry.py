"""In-process registry of running programs.

Maps a session key to the OS process currently running for it, so that
entry points with unrelated call stacks (submit, stop, teardown) can reach
the same process.  Ephemeral: empty on process restart.

The registry is constructed explicitly and injected wherever it is needed.
Its lock guards the dictionary only and is never held across an ``await``,
so waiting on one session's process never blocks another session.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import threading
from typing import Dict, List, Optional

from .errors import SessionBusyError

logger = logging.getLogger(__name__)


def terminate(process: asyncio.subprocess.Process) -> None:
    """Forcefully kill ``process`` and, on POSIX, the rest of its process group."""
    try:
        if os.name == "posix":
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass
    except OSError as exc:
        # e.g. EPERM once the group id has been reused after the leader was reaped.
        logger.debug("Could not kill pid %s: %s", process.pid, exc)


class ProcessRegistry:
    """Thread-safe map of session key to live process handle."""

    def __init__(self) -> None:
        self._processes: Dict[str, asyncio.subprocess.Process] = {}
        self._lock = threading.Lock()

    # -- Mutation --------------------------------------------------------------

    def track(self, key: str, process: asyncio.subprocess.Process) -> None:
        """Register ``process`` for ``key``.

        Raises :class:`SessionBusyError` if the key already holds a process.
        """
        with self._lock:
            if key in self._processes:
                raise SessionBusyError(key)
            self._processes[key] = process
        logger.debug("Registry: track session %s (pid=%s)", key, process.pid)

    def untrack(self, key: str) -> Optional[asyncio.subprocess.Process]:
        """Remove and return the process for ``key``, if any."""
        with self._lock:
            process = self._processes.pop(key, None)
        if process is not None:
            logger.debug("Registry: untrack session %s", key)
        return process

    # -- Control ---------------------------------------------------------------

    async def kill(self, key: str) -> bool:
        """Untrack and kill the process for ``key``.

        Returns ``True`` if a process was found.  Calling it for a key with
        nothing running is harmless and returns ``False``.
        """
        process = self.untrack(key)
        if process is None:
            return False
        terminate(process)
        await process.wait()
        logger.info("Registry: killed session %s (pid=%s)", key, process.pid)
        return True

    async def kill_all(self) -> int:
        """Kill every tracked process.  Returns how many were killed."""
        results = await asyncio.gather(*(self.kill(key) for key in self.keys()))
        return sum(1 for killed in results if killed)

    # -- Query -----------------------------------------------------------------

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._processes)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._processes

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._processes)
