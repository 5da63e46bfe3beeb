"""Upload stage: mirror the build output onto the file host."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Union

from ..config import TransferConfig
from ..store.resolver import ResolvedConfig
from ..transfer import (
    SessionFactory,
    TransferAuthError,
    TransferConnectionError,
    TransferError,
    count_files,
    open_session,
)
from ..utils.logging import get_logger
from .base import Clock, Stopwatch, UploadResult, build_credentials

logger = get_logger(__name__)


class UploadStage:
    def __init__(
        self,
        transfer: TransferConfig,
        project_dir: Union[str, Path],
        *,
        session_factory: SessionFactory = open_session,
        clock: Clock = time.perf_counter,
    ) -> None:
        self.transfer = transfer
        self.project_dir = Path(project_dir)
        self.session_factory = session_factory
        self.clock = clock

    def run(self, config: ResolvedConfig) -> UploadResult:
        watch = Stopwatch(self.clock)

        if not config.password:
            return UploadResult(
                success=False,
                error="FTP password not configured. Add FTP credentials to the deployment config.",
                duration=0.0,
            )

        local_dir = self.project_dir / config.local_dir
        if not local_dir.is_dir():
            return UploadResult(
                success=False,
                error=f"{config.local_dir} directory does not exist. Run the build first.",
                duration=0.0,
            )

        try:
            credentials = build_credentials(config, self.transfer)
        except ValueError as exc:
            return UploadResult(success=False, error=str(exc), duration=0.0)

        session = self.session_factory(credentials)
        try:
            session.connect()
            session.cd(config.server_dir)
            total = count_files(local_dir)
            logger.info("   Uploading %d files to %s:%s", total, config.server, config.server_dir)
            uploaded = session.upload_tree(local_dir)
        except TransferConnectionError as exc:
            logger.error("FTP deployment error: %s", exc)
            return UploadResult(
                success=False,
                error=f"Could not connect to {config.server}. Check FTP credentials and server status.",
                duration=watch.elapsed(),
            )
        except TransferAuthError as exc:
            logger.error("FTP deployment error: %s", exc)
            return UploadResult(
                success=False,
                error="FTP authentication failed. Check username and password.",
                duration=watch.elapsed(),
            )
        except (TransferError, OSError) as exc:
            logger.error("FTP deployment error: %s", exc)
            return UploadResult(
                success=False,
                error=str(exc) or "FTP deployment failed",
                duration=watch.elapsed(),
            )
        finally:
            session.close()

        if uploaded != total:
            logger.warning("   Counted %d files but uploaded %d", total, uploaded)
        return UploadResult(success=True, files_uploaded=total, duration=watch.elapsed())
