"""Database export stage: dump PostgreSQL, rewrite for MySQL, ship the file."""

from __future__ import annotations

import subprocess
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Union

from ..config import DatabaseConfig, TransferConfig
from ..store.resolver import ResolvedConfig
from ..transfer import SessionFactory, TransferError, open_session
from ..utils.logging import get_logger
from .base import Clock, DatabaseExportResult, StageResult, Stopwatch, build_credentials
from .build import Runner, decode_output
from .sql_rewrite import rewrite_postgres_to_mysql

logger = get_logger(__name__)


def dump_filename(moment: datetime) -> str:
    """db-backup-<ISO timestamp with ':' and '.' replaced by '-'>.sql"""
    moment = moment.astimezone(timezone.utc)
    stamp = f"{moment:%Y-%m-%dT%H-%M-%S}-{moment.microsecond // 1000:03d}Z"
    return f"db-backup-{stamp}.sql"


def import_instructions(config: ResolvedConfig, dump_name: Optional[str]) -> List[str]:
    """Manual import steps for the uploaded dump; the pipeline never imports it."""
    name = dump_name or "db-backup-*.sql"
    port = f" -P {config.db_port}" if config.db_port else ""
    return [
        "1. Log in to the hosting control panel",
        "2. Open the MySQL database administration",
        f"3. Select the database: {config.db_name}",
        '4. Choose "Import" / "Run SQL script"',
        f"5. Upload the file: backups/{name}",
        "6. Or from a login shell:",
        f"   mysql -h {config.db_host}{port} -u {config.db_username} -p {config.db_name} < {name}",
    ]


class DatabaseExportStage:
    """Optional stage. Its failures are reported, never raised."""

    def __init__(
        self,
        database: DatabaseConfig,
        transfer: TransferConfig,
        project_dir: Union[str, Path],
        *,
        runner: Runner = subprocess.run,
        session_factory: SessionFactory = open_session,
        clock: Clock = time.perf_counter,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.database = database
        self.transfer = transfer
        self.project_dir = Path(project_dir)
        self.runner = runner
        self.session_factory = session_factory
        self.clock = clock
        self.now = now

    def run(self, config: ResolvedConfig) -> DatabaseExportResult:
        result = self.export()
        if not result.success or not result.dump_file:
            return result

        dump_path = Path(result.dump_file)
        try:
            upload = self.upload(config, dump_path)
        finally:
            self._cleanup(dump_path)

        result.uploaded = upload.success
        if not upload.success:
            result.success = False
            result.error = upload.error
        return result

    def export(self) -> DatabaseExportResult:
        watch = Stopwatch(self.clock)
        source_url = self.database.source_url
        if not source_url:
            return DatabaseExportResult(success=False, error="DATABASE_URL is not set", duration=0.0)

        command = [
            self.database.dump_binary,
            source_url,
            "--format=plain",
            "--no-owner",
            "--no-privileges",
            "--no-comments",
            f"--encoding={self.database.dump_encoding}",
        ]
        try:
            process = self.runner(
                command,
                capture_output=True,
                timeout=self.database.dump_timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return DatabaseExportResult(
                success=False,
                error=f"pg_dump timed out after {self.database.dump_timeout}s",
                duration=watch.elapsed(),
            )
        except OSError as exc:
            return DatabaseExportResult(
                success=False, error=f"Could not run {self.database.dump_binary}: {exc}", duration=watch.elapsed()
            )

        encoding = self.database.dump_encoding
        stderr = decode_output(process.stderr, encoding).strip()
        if process.returncode != 0:
            return DatabaseExportResult(
                success=False,
                error=f"pg_dump failed (exit code {process.returncode}): {stderr}",
                duration=watch.elapsed(),
            )
        if stderr and "warning" not in stderr.lower():
            logger.warning("pg_dump stderr: %s", stderr)

        tmp_dir = self.project_dir / self.database.tmp_dir
        dump_path = tmp_dir / dump_filename(self.now())
        try:
            tmp_dir.mkdir(parents=True, exist_ok=True)
            sql = rewrite_postgres_to_mysql(decode_output(process.stdout, encoding))
            dump_path.write_text(sql, encoding=encoding, errors="replace")
        except (OSError, LookupError) as exc:
            return DatabaseExportResult(
                success=False, error=f"Could not write {dump_path.name}: {exc}", duration=watch.elapsed()
            )

        logger.info("   Wrote MySQL-compatible dump %s", dump_path.name)
        return DatabaseExportResult(success=True, dump_file=str(dump_path), duration=watch.elapsed())

    def upload(self, config: ResolvedConfig, dump_path: Path) -> StageResult:
        watch = Stopwatch(self.clock)
        try:
            credentials = build_credentials(config, self.transfer)
            credentials.validate()
        except ValueError as exc:
            return StageResult(success=False, error=f"Database upload failed: {exc}", duration=0.0)

        session = self.session_factory(credentials)
        try:
            session.connect()
            session.cd(config.server_dir)
            session.ensure_dir(self.transfer.backups_dir)
            session.cd(self.transfer.backups_dir)
            session.upload_file(dump_path, dump_path.name)
        except (TransferError, OSError) as exc:
            return StageResult(success=False, error=f"Database upload failed: {exc}", duration=watch.elapsed())
        finally:
            session.close()
        return StageResult(success=True, duration=watch.elapsed())

    @staticmethod
    def _cleanup(dump_path: Path) -> None:
        try:
            dump_path.unlink()
        except OSError as exc:
            logger.warning("Could not remove local dump %s: %s", dump_path.name, exc)
