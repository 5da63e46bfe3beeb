"""Deployment pipeline: backup -> build -> upload -> database -> health check."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Optional

from ..config import AppConfig
from ..paths import get_configs_file, get_history_dir, get_locks_dir
from ..security import DecryptionFailed, SecretCipher
from ..stages import (
    BackupStage,
    BuildStage,
    DatabaseExportResult,
    DatabaseExportStage,
    HealthCheckStage,
    UploadStage,
    import_instructions,
)
from ..stages.base import Clock
from ..store import (
    ConfigNotFound,
    ConfigResolver,
    ConfigStore,
    HistoryRecorder,
    HistoryStatus,
    HistoryStep,
    HistoryStore,
    ResolvedConfig,
)
from ..utils.logging import get_logger
from .locks import RunLock
from .models import DeploymentOutcome

logger = get_logger(__name__)


class DeploymentPipeline:
    """
    Deployment state machine.

    Stages run strictly in order and each transition is persisted before the
    next stage starts. Backup, build and upload failures end the run as
    ``failed``; a database export failure is recorded and skipped; a failed
    health check downgrades the final status to ``warning``.
    """

    def __init__(
        self,
        app_config: AppConfig,
        *,
        resolver: ConfigResolver,
        config_store: ConfigStore,
        history_store: HistoryStore,
        locks_dir: Path,
        backup_stage: Optional[BackupStage] = None,
        build_stage: Optional[BuildStage] = None,
        upload_stage: Optional[UploadStage] = None,
        database_stage: Optional[DatabaseExportStage] = None,
        health_stage: Optional[HealthCheckStage] = None,
        clock: Clock = time.perf_counter,
    ) -> None:
        self.app_config = app_config
        self.resolver = resolver
        self.config_store = config_store
        self.history_store = history_store
        self.locks_dir = Path(locks_dir)

        project_dir = Path(app_config.project_dir)
        self.backup_stage = backup_stage or BackupStage(app_config.transfer, clock=clock)
        self.build_stage = build_stage or BuildStage(app_config.build, project_dir, clock=clock)
        self.upload_stage = upload_stage or UploadStage(app_config.transfer, project_dir, clock=clock)
        self.database_stage = database_stage or DatabaseExportStage(
            app_config.database, app_config.transfer, project_dir, clock=clock
        )
        self.health_stage = health_stage or HealthCheckStage(app_config.health, clock=clock)

    @classmethod
    def from_config(cls, app_config: AppConfig, cipher: SecretCipher) -> "DeploymentPipeline":
        data_dir = app_config.storage.data_dir
        config_store = ConfigStore(get_configs_file(data_dir))
        return cls(
            app_config,
            resolver=ConfigResolver(config_store, cipher),
            config_store=config_store,
            history_store=HistoryStore(get_history_dir(data_dir)),
            locks_dir=get_locks_dir(data_dir),
        )

    def run(self, config_name: Optional[str] = None, actor: Optional[str] = None) -> DeploymentOutcome:
        """Run one deployment. Raises DeploymentInProgress if the config is busy."""
        name = config_name or self.app_config.config_name
        try:
            config = self.resolver.resolve(name)
        except Exception as exc:
            return self._fail_unresolved(name, actor, exc)

        with RunLock(config.config_id or f"env-{name}", self.locks_dir):
            recorder = HistoryRecorder.start(
                self.history_store, config_id=config.config_id, created_by=actor
            )
            try:
                return self._execute(config, recorder)
            except Exception as exc:
                logger.exception("Deployment error")
                error = str(exc) or "Unknown error during deployment"
                try:
                    if not recorder.is_completed:
                        recorder.complete(HistoryStatus.FAILED, error=error)
                except Exception as update_exc:
                    logger.error("Could not record failure for run %s: %s", recorder.record.id, update_exc)
                self._update_sync_status(config.config_id, HistoryStatus.FAILED.value, error)
                return DeploymentOutcome(
                    success=False, history=recorder.record, error=error, step=recorder.record.step.value
                )

    def _execute(self, config: ResolvedConfig, recorder: HistoryRecorder) -> DeploymentOutcome:
        logger.info("")
        logger.info("=" * 60)
        logger.info("🚀 DEPLOYMENT %s", recorder.id)
        logger.info("=" * 60)
        logger.info("Target: %s%s -> %s", config.server or "?", config.server_dir, config.server_url or "?")

        # Step 1: rollback marker
        logger.info("🗄️  Step 1: Creating rollback marker...")
        backup = self.backup_stage.run(config)
        if not backup.success:
            return self._fail(recorder, config, HistoryStep.BACKUP, backup.error or "Backup failed")
        recorder.merge_metadata(backupPath=backup.backup_path, canRollback=True)
        logger.info("   Rollback marker: %s", backup.backup_path)

        # Step 2: static build
        recorder.update(step=HistoryStep.BUILD)
        logger.info("📦 Step 2: Building static export...")
        build = self.build_stage.run(config.local_dir)
        if not build.success:
            return self._fail(
                recorder, config, HistoryStep.BUILD, build.error or "Build failed",
                build_duration=build.duration,
            )
        recorder.update(
            step=HistoryStep.FTP,
            status=HistoryStatus.UPLOADING,
            build_duration=build.duration,
            build_output=build.output,
        )

        # Step 3: upload
        logger.info("📤 Step 3: Uploading %s/ ...", config.local_dir)
        upload = self.upload_stage.run(config)
        if not upload.success:
            return self._fail(
                recorder, config, HistoryStep.FTP, upload.error or "FTP deployment failed",
                ftp_duration=upload.duration or 0,
            )
        recorder.update(ftp_duration=upload.duration, files_uploaded=upload.files_uploaded)
        logger.info("   ✅ %d files uploaded", upload.files_uploaded)

        # Step 4: optional database export
        instructions = None
        if config.has_database:
            recorder.update(step=HistoryStep.DATABASE, status=HistoryStatus.UPLOADING)
            logger.info("🗃️  Step 4: Exporting database...")
            instructions = self._sync_database(config, recorder)
        else:
            logger.info("   Step 4: No database configured, skipping export")

        # Step 5: health check
        recorder.update(step=HistoryStep.HEALTH_CHECK, status=HistoryStatus.UPLOADING)
        logger.info("🩺 Step 5: Checking %s ...", config.server_url)
        health = self.health_stage.run(config.server_url)
        final_status = HistoryStatus.SUCCESS if health.success else HistoryStatus.WARNING
        if not health.success:
            logger.warning("   ⚠️ Health check did not confirm availability: %s", health.error)

        recorder.complete(
            final_status,
            step=HistoryStep.COMPLETE,
            deployed_url=config.server_url or None,
            metadata={"healthCheck": health.to_dict()},
        )
        self._update_sync_status(
            config.config_id, final_status.value, None if health.success else f"Health check: {health.error}"
        )
        logger.info("🎉 Deployment finished with status %s", final_status.value)
        return DeploymentOutcome(
            success=True,
            history=recorder.record,
            step=HistoryStep.COMPLETE.value,
            health_check=health,
            db_import_instructions=instructions,
        )

    def _sync_database(self, config: ResolvedConfig, recorder: HistoryRecorder) -> Optional[list]:
        try:
            result = self.database_stage.run(config)
        except Exception as exc:
            # Never fails the run
            logger.exception("Database export error")
            result = DatabaseExportResult(success=False, error=str(exc) or type(exc).__name__)
        dump_name = Path(result.dump_file).name if result.dump_file else None

        changes: dict = {}
        metadata: dict = {}
        if dump_name:
            changes["db_sync_duration"] = result.duration
        if result.success:
            changes["db_sync_tables"] = ["all"]
            metadata["dbDumpFile"] = dump_name
        else:
            logger.warning("   ⚠️ Database export skipped: %s", result.error)
            metadata["dbSyncError"] = result.error or "Database export failed"
        recorder.update(metadata=metadata, **changes)
        return import_instructions(config, dump_name) if result.success else None

    def _fail(
        self,
        recorder: HistoryRecorder,
        config: ResolvedConfig,
        step: HistoryStep,
        error: str,
        **changes: Any,
    ) -> DeploymentOutcome:
        logger.error("❌ %s failed: %s", step.value, error)
        recorder.fail(step, error, **changes)
        self._update_sync_status(config.config_id, HistoryStatus.FAILED.value, error)
        return DeploymentOutcome(success=False, history=recorder.record, error=error, step=step.value)

    def _fail_unresolved(self, name: str, actor: Optional[str], exc: Exception) -> DeploymentOutcome:
        if isinstance(exc, DecryptionFailed):
            error = f"Configuration error: {exc}"
        else:
            error = f"Configuration error: {type(exc).__name__}: {exc}"
        logger.error("❌ %s", error)
        try:
            stored = self.config_store.get_by_name(name)
        except (OSError, ValueError, TypeError, AttributeError) as lookup_exc:
            logger.warning("Could not read stored configurations: %s", lookup_exc)
            stored = None
        config_id = stored.id if stored else None
        recorder = HistoryRecorder.start(self.history_store, config_id=config_id, created_by=actor)
        recorder.fail(HistoryStep.BACKUP, error)
        self._update_sync_status(config_id, HistoryStatus.FAILED.value, error)
        return DeploymentOutcome(success=False, history=recorder.record, error=error, step=HistoryStep.BACKUP.value)

    def _update_sync_status(self, config_id: Optional[str], status: str, error: Optional[str]) -> None:
        if not config_id:
            return
        try:
            self.config_store.update_sync_status(config_id, status, error)
        except (ConfigNotFound, OSError) as exc:
            logger.warning("Could not update config status: %s", exc)
