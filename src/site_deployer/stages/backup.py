"""Backup stage: record a rollback marker before touching the remote target."""

from __future__ import annotations

import time
from typing import Callable

from ..config import TransferConfig
from ..store.resolver import ResolvedConfig
from ..transfer import SessionFactory, TransferError, open_session
from ..utils.logging import get_logger
from .base import BackupResult, Clock, Stopwatch, build_credentials

logger = get_logger(__name__)


class BackupStage:
    """Checks the remote target is reachable and produces a rollback marker.

    The marker is an audit checkpoint only: nothing restores from it.
    """

    def __init__(
        self,
        transfer: TransferConfig,
        *,
        session_factory: SessionFactory = open_session,
        clock: Clock = time.perf_counter,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.transfer = transfer
        self.session_factory = session_factory
        self.clock = clock
        self.wall_clock = wall_clock

    def run(self, config: ResolvedConfig) -> BackupResult:
        watch = Stopwatch(self.clock)
        try:
            credentials = build_credentials(config, self.transfer)
            credentials.validate()
        except ValueError as exc:
            return BackupResult(success=False, error=str(exc), duration=0.0)

        session = self.session_factory(credentials)
        try:
            session.connect()
            session.cd(config.server_dir)
            try:
                session.cd(self.transfer.backups_dir)
                session.cd(config.server_dir)
            except TransferError:
                # Created on demand when the first dump is uploaded
                logger.info("   No %s/ directory on server yet", self.transfer.backups_dir)
        except TransferError as exc:
            return BackupResult(success=False, error=f"Backup failed: {exc}", duration=watch.elapsed())
        finally:
            session.close()

        backup_path = f"backup_{int(self.wall_clock() * 1000)}"
        return BackupResult(success=True, backup_path=backup_path, duration=watch.elapsed())
