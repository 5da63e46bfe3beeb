"""Per-configuration run locks.

One deployment per configuration at a time: an in-process mutex guards
threads, a pid lock file guards separate processes. A lock file whose pid is
gone is treated as left over from a crash and reclaimed.
"""

from __future__ import annotations

import json
import os
import re
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Optional

import psutil

from ..utils.logging import get_logger

logger = get_logger(__name__)

_PROCESS_LOCKS: Dict[str, threading.Lock] = {}
_REGISTRY_GUARD = threading.Lock()


class DeploymentInProgress(RuntimeError):
    """Raised when another run already holds the configuration's lock."""


def _process_lock(key: str) -> threading.Lock:
    with _REGISTRY_GUARD:
        return _PROCESS_LOCKS.setdefault(key, threading.Lock())


class RunLock:
    def __init__(
        self,
        key: str,
        locks_dir: Path,
        *,
        pid_exists: Callable[[int], bool] = psutil.pid_exists,
    ) -> None:
        self.key = key
        self.path = Path(locks_dir) / f"{re.sub(r'[^A-Za-z0-9_.-]', '_', key)}.lock"
        self._pid_exists = pid_exists
        self._mutex = _process_lock(key)
        self._held = False

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.release()

    def acquire(self) -> None:
        if not self._mutex.acquire(blocking=False):
            raise DeploymentInProgress(f"A deployment for {self.key} is already running in this process")
        try:
            self._acquire_file()
        except BaseException:
            self._mutex.release()
            raise
        self._held = True

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove lock file %s: %s", self.path, exc)
        finally:
            self._mutex.release()

    def _acquire_file(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                holder = self._read_holder()
                if holder is None and self._is_fresh():
                    # Another process created the file and has not written its pid yet
                    raise DeploymentInProgress(f"A deployment for {self.key} is starting")
                # Our own pid can only be a leftover: the mutex is already ours
                if holder is not None and holder != os.getpid() and self._pid_exists(holder):
                    raise DeploymentInProgress(
                        f"A deployment for {self.key} is already running (pid {holder})"
                    )
                logger.warning("Removing stale deployment lock %s (pid %s)", self.path.name, holder)
                self.path.unlink(missing_ok=True)
                continue
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump({"pid": os.getpid(), "key": self.key}, handle)
            return
        raise DeploymentInProgress(f"Could not acquire deployment lock {self.path}")

    def _is_fresh(self, grace: float = 10.0) -> bool:
        try:
            return time.time() - self.path.stat().st_mtime < grace
        except OSError:
            return False

    def _read_holder(self) -> Optional[int]:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            return int(payload["pid"])
        except (OSError, ValueError, KeyError, TypeError):
            return None
