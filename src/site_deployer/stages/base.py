"""Structured results shared by every pipeline stage."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

from ..config import TransferConfig
from ..store.resolver import ResolvedConfig
from ..transfer import TransferCredentials, resolve_protocol

Clock = Callable[[], float]


@dataclass
class StageResult:
    """Outcome of one stage. Stages return these instead of raising."""

    success: bool
    error: Optional[str] = None
    duration: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BackupResult(StageResult):
    backup_path: Optional[str] = None


@dataclass
class BuildResult(StageResult):
    output: Optional[str] = None


@dataclass
class UploadResult(StageResult):
    files_uploaded: int = 0


@dataclass
class DatabaseExportResult(StageResult):
    dump_file: Optional[str] = None
    uploaded: bool = False


@dataclass
class HealthCheckResult(StageResult):
    status: Optional[int] = None
    response_time: Optional[int] = None      # milliseconds


class Stopwatch:
    """Elapsed-time helper bound to an injectable clock."""

    def __init__(self, clock: Clock = time.perf_counter) -> None:
        self._clock = clock
        self._start = clock()

    def elapsed(self) -> float:
        return self._clock() - self._start


def build_credentials(config: ResolvedConfig, transfer: TransferConfig) -> TransferCredentials:
    return TransferCredentials(
        host=config.server,
        username=config.username,
        password=config.password,
        port=config.port,
        protocol=resolve_protocol(config.server, config.protocol),
        timeout=transfer.timeout,
        passive=transfer.passive,
        verify_tls=transfer.verify_tls,
    )
