import tempfile
import unittest
from pathlib import Path

from site_deployer.config import AppConfig, TransferConfig
from site_deployer.orchestrator import DeploymentInProgress, DeploymentPipeline, RunLock
from site_deployer.security import SecretCipher
from site_deployer.stages import (
    BackupResult,
    BuildResult,
    DatabaseExportResult,
    HealthCheckResult,
    UploadResult,
    UploadStage,
)
from site_deployer.store import (
    ConfigResolver,
    ConfigStore,
    DeploymentConfig,
    HistoryStatus,
    HistoryStep,
    HistoryStore,
)
from site_deployer.transfer import TransferConnectionError


class StubStage:
    def __init__(self, result, on_run=None) -> None:
        self.result = result
        self.on_run = on_run
        self.calls: list = []

    def run(self, *args):
        self.calls.append(args)
        if self.on_run:
            self.on_run()
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class PipelineTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        root = self.root = Path(self._tmp.name)
        self.cipher = SecretCipher(bytes(range(32)))
        self.config_store = ConfigStore(root / "configs.json")
        self.history_store = HistoryStore(root / "history")
        self.locks_dir = root / "locks"
        self.app_config = AppConfig(project_dir=str(root))

        self.backup = StubStage(BackupResult(success=True, backup_path="backup_1700000000000", duration=0.1))
        self.build = StubStage(BuildResult(success=True, output="Build successful. Duration: 2.0s", duration=2.0))
        self.upload = StubStage(UploadResult(success=True, files_uploaded=3, duration=1.5))
        self.database = StubStage(
            DatabaseExportResult(
                success=True, dump_file=str(root / "tmp" / "db-backup-x.sql"), uploaded=True, duration=0.5
            )
        )
        self.health = StubStage(HealthCheckResult(success=True, status=200, response_time=42))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _save_config(self, *, with_database: bool = False, cipher=None) -> DeploymentConfig:
        cipher = cipher or self.cipher
        config = DeploymentConfig(
            name="Production",
            ftp_server="ftp.example.com",
            ftp_username="deploy",
            ftp_password=cipher.encrypt("secret"),
            server_url="https://example.com",
        )
        if with_database:
            config.db_host = "db.example.com"
            config.db_username = "app"
            config.db_password = cipher.encrypt("dbpass")
            config.db_name = "appdb"
        return self.config_store.save(config)

    def _pipeline(self) -> DeploymentPipeline:
        return DeploymentPipeline(
            self.app_config,
            resolver=ConfigResolver(self.config_store, self.cipher, environ={}),
            config_store=self.config_store,
            history_store=self.history_store,
            locks_dir=self.locks_dir,
            backup_stage=self.backup,
            build_stage=self.build,
            upload_stage=self.upload,
            database_stage=self.database,
            health_stage=self.health,
        )

    def _stored(self, outcome):
        return self.history_store.get(outcome.history.id)

    def test_successful_run(self) -> None:
        saved = self._save_config()
        outcome = self._pipeline().run(actor="alice")

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.status, "success")
        data = outcome.to_dict()
        self.assertEqual(data["step"], "complete")
        self.assertEqual(data["filesUploaded"], 3)
        self.assertEqual(data["buildDuration"], 2.0)
        self.assertEqual(data["ftpDuration"], 1.5)
        self.assertIsNone(data["dbSyncDuration"])
        self.assertTrue(data["canRollback"])
        self.assertEqual(data["backupPath"], "backup_1700000000000")
        self.assertEqual(data["url"], "https://example.com")

        record = self._stored(outcome)
        self.assertEqual(record.status, HistoryStatus.SUCCESS)
        self.assertEqual(record.step, HistoryStep.COMPLETE)
        self.assertEqual(record.created_by, "alice")
        self.assertEqual(record.config_id, saved.id)
        self.assertIsNotNone(record.completed_at)
        self.assertEqual(record.metadata["healthCheck"]["status"], 200)
        self.assertEqual(record.metadata["backupPath"], "backup_1700000000000")
        self.assertEqual(self.database.calls, [])

        stored_config = self.config_store.get_by_name("Production")
        self.assertEqual(stored_config.last_sync_status, "success")
        self.assertIsNone(stored_config.last_sync_error)

    def test_transitions_are_persisted_before_next_stage(self) -> None:
        self._save_config()
        seen = {}

        def observe_build() -> None:
            seen["build"] = self.history_store.list_recent(limit=1)[0]

        def observe_upload() -> None:
            seen["upload"] = self.history_store.list_recent(limit=1)[0]

        self.build.on_run = observe_build
        self.upload.on_run = observe_upload
        self._pipeline().run()

        self.assertEqual(seen["build"].step, HistoryStep.BUILD)
        self.assertEqual(seen["build"].status, HistoryStatus.PENDING)
        self.assertTrue(seen["build"].metadata["canRollback"])
        self.assertEqual(seen["upload"].step, HistoryStep.FTP)
        self.assertEqual(seen["upload"].status, HistoryStatus.UPLOADING)
        self.assertEqual(seen["upload"].build_duration, 2.0)

    def test_backup_failure_stops_run(self) -> None:
        self._save_config()
        self.backup.result = BackupResult(success=False, error="Backup failed: refused", duration=0.2)
        outcome = self._pipeline().run()

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.step, "backup")
        self.assertEqual(self.build.calls, [])
        self.assertEqual(self._stored(outcome).status, HistoryStatus.FAILED)

    def test_build_failure_skips_upload(self) -> None:
        self._save_config()
        self.build.result = BuildResult(success=False, error="Build failed (exit code 1): boom", duration=4.0)
        outcome = self._pipeline().run()

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.step, "build")
        self.assertEqual(outcome.error, "Build failed (exit code 1): boom")
        self.assertEqual(self.upload.calls, [])
        record = self._stored(outcome)
        self.assertEqual(record.step, HistoryStep.BUILD)
        self.assertEqual(record.status, HistoryStatus.FAILED)
        self.assertEqual(record.build_duration, 4.0)
        self.assertIsNotNone(record.completed_at)

        stored_config = self.config_store.get_by_name("Production")
        self.assertEqual(stored_config.last_sync_status, "failed")
        self.assertEqual(stored_config.last_sync_error, "Build failed (exit code 1): boom")

    def test_upload_failure_keeps_build_duration(self) -> None:
        self._save_config()
        self.upload.result = UploadResult(success=False, error="FTP authentication failed.", duration=0.7)
        outcome = self._pipeline().run()

        record = self._stored(outcome)
        self.assertEqual(record.step, HistoryStep.FTP)
        self.assertEqual(record.status, HistoryStatus.FAILED)
        self.assertEqual(record.build_duration, 2.0)
        self.assertEqual(record.ftp_duration, 0.7)
        self.assertEqual(self.health.calls, [])

    def test_failed_health_check_downgrades_to_warning(self) -> None:
        self._save_config()
        self.health.result = HealthCheckResult(success=False, error="Health check timeout", response_time=10000)
        outcome = self._pipeline().run()

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.status, "warning")
        record = self._stored(outcome)
        self.assertEqual(record.step, HistoryStep.COMPLETE)
        self.assertEqual(record.metadata["healthCheck"]["error"], "Health check timeout")

        stored_config = self.config_store.get_by_name("Production")
        self.assertEqual(stored_config.last_sync_status, "warning")
        self.assertEqual(stored_config.last_sync_error, "Health check: Health check timeout")

    def test_database_export_when_configured(self) -> None:
        self._save_config(with_database=True)
        outcome = self._pipeline().run()

        self.assertEqual(len(self.database.calls), 1)
        self.assertEqual(self.database.calls[0][0].db_password, "dbpass")
        record = self._stored(outcome)
        self.assertEqual(record.db_sync_duration, 0.5)
        self.assertEqual(record.db_sync_tables, ["all"])
        self.assertEqual(record.metadata["dbDumpFile"], "db-backup-x.sql")
        self.assertTrue(any("db-backup-x.sql" in line for line in outcome.db_import_instructions))
        self.assertEqual(outcome.to_dict()["dbDumpFile"], "db-backup-x.sql")

    def test_database_failure_is_not_fatal(self) -> None:
        self._save_config(with_database=True)
        self.database.result = DatabaseExportResult(success=False, error="DATABASE_URL is not set", duration=0.0)
        outcome = self._pipeline().run()

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.status, "success")
        self.assertIsNone(outcome.db_import_instructions)
        record = self._stored(outcome)
        self.assertEqual(record.metadata["dbSyncError"], "DATABASE_URL is not set")
        self.assertIsNone(record.db_sync_duration)
        self.assertEqual(len(self.health.calls), 1)

    def test_database_stage_exception_is_not_fatal(self) -> None:
        self._save_config(with_database=True)
        self.database.result = UnicodeDecodeError("utf-8", b"\xe9", 0, 1, "invalid continuation byte")
        outcome = self._pipeline().run()

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.status, "success")
        record = self._stored(outcome)
        self.assertEqual(record.status, HistoryStatus.SUCCESS)
        self.assertEqual(record.step, HistoryStep.COMPLETE)
        self.assertIn("invalid continuation byte", record.metadata["dbSyncError"])
        self.assertEqual(len(self.health.calls), 1)
        self.assertEqual(self.config_store.get_by_name("Production").last_sync_status, "success")

    def test_upload_failure_keeps_local_build_output(self) -> None:
        self._save_config()
        out = self.root / "out"
        out.mkdir()
        (out / "index.html").write_text("<h1>hi</h1>", encoding="utf-8")

        class UnreachableSession:
            def __init__(self, credentials) -> None:
                self.credentials = credentials

            def connect(self) -> None:
                raise TransferConnectionError("Connection refused")

            def close(self) -> None:
                pass

        self.upload = UploadStage(TransferConfig(), self.root, session_factory=UnreachableSession)
        outcome = self._pipeline().run()

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.step, "ftp")
        self.assertTrue(outcome.error.startswith("Could not connect to ftp.example.com"))
        self.assertEqual((out / "index.html").read_text(encoding="utf-8"), "<h1>hi</h1>")
        self.assertEqual(self.health.calls, [])

    def test_invalid_environment_port_records_failed_run(self) -> None:
        pipeline = self._pipeline()
        pipeline.resolver = ConfigResolver(
            self.config_store,
            self.cipher,
            environ={"FTP_SERVER": "ftp.env.com", "FTP_PASSWORD": "p", "FTP_PORT": "twenty-one"},
        )
        outcome = pipeline.run(actor="alice")

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.step, "backup")
        self.assertTrue(outcome.error.startswith("Configuration error: ValueError"))
        self.assertEqual(self.backup.calls, [])
        records = self.history_store.list_recent()
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].status, HistoryStatus.FAILED)
        self.assertEqual(records[0].created_by, "alice")
        self.assertIsNotNone(records[0].completed_at)

    def test_corrupted_config_store_records_failed_run(self) -> None:
        self.config_store.path.write_text("{not json", encoding="utf-8")
        outcome = self._pipeline().run()

        self.assertFalse(outcome.success)
        self.assertTrue(outcome.error.startswith("Configuration error: JSONDecodeError"))
        record = self._stored(outcome)
        self.assertEqual(record.status, HistoryStatus.FAILED)
        self.assertIsNone(record.config_id)

    def test_unexpected_exception_finalizes_run(self) -> None:
        self._save_config()
        self.build.result = RuntimeError("disk full")
        outcome = self._pipeline().run()

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error, "disk full")
        record = self._stored(outcome)
        self.assertEqual(record.status, HistoryStatus.FAILED)
        self.assertEqual(record.error, "disk full")
        self.assertIsNotNone(record.completed_at)
        self.assertEqual(self.config_store.get_by_name("Production").last_sync_status, "failed")
        # Lock released
        self.assertEqual(list(self.locks_dir.glob("*.lock")), [])

    def test_undecryptable_config_records_failed_run(self) -> None:
        self._save_config(cipher=SecretCipher(bytes(32)))
        outcome = self._pipeline().run()

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.step, "backup")
        self.assertTrue(outcome.error.startswith("Configuration error: "))
        self.assertEqual(self.backup.calls, [])
        record = self._stored(outcome)
        self.assertEqual(record.status, HistoryStatus.FAILED)
        self.assertIsNotNone(record.completed_at)

    def test_environment_fallback_runs_without_stored_config(self) -> None:
        pipeline = self._pipeline()
        pipeline.resolver = ConfigResolver(
            self.config_store,
            self.cipher,
            environ={"FTP_SERVER": "ftp.env.com", "FTP_USERNAME": "u", "FTP_PASSWORD": "p"},
        )
        outcome = pipeline.run()
        self.assertTrue(outcome.success)
        self.assertIsNone(self._stored(outcome).config_id)
        self.assertEqual(self.backup.calls[0][0].server, "ftp.env.com")

    def test_concurrent_run_is_rejected(self) -> None:
        saved = self._save_config()
        with RunLock(saved.id, self.locks_dir):
            with self.assertRaises(DeploymentInProgress):
                self._pipeline().run()
        self.assertEqual(self.history_store.list_recent(), [])


if __name__ == "__main__":
    unittest.main()
