import json
import tempfile
import unittest
from pathlib import Path

from site_deployer.store import (
    HistoryImmutableError,
    HistoryRecorder,
    HistoryStatus,
    HistoryStep,
    HistoryStore,
    InvalidTransition,
)


class HistoryRecorderTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = HistoryStore(Path(self._tmp.name))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_start_persists_pending_record(self) -> None:
        recorder = HistoryRecorder.start(self.store, config_id="cfg", created_by="alice")
        stored = self.store.get(recorder.id)
        self.assertEqual(stored.status, HistoryStatus.PENDING)
        self.assertEqual(stored.step, HistoryStep.BACKUP)
        self.assertEqual(stored.created_by, "alice")
        self.assertIsNotNone(stored.started_at)
        self.assertIsNone(stored.completed_at)

    def test_updates_are_written_through(self) -> None:
        recorder = HistoryRecorder.start(self.store)
        recorder.update(step=HistoryStep.FTP, status=HistoryStatus.UPLOADING, build_duration=1.5)
        stored = self.store.get(recorder.id)
        self.assertEqual(stored.step, HistoryStep.FTP)
        self.assertEqual(stored.status, HistoryStatus.UPLOADING)
        self.assertEqual(stored.build_duration, 1.5)

    def test_file_uses_camel_case_keys(self) -> None:
        recorder = HistoryRecorder.start(self.store, config_id="cfg")
        payload = json.loads((Path(self._tmp.name) / f"{recorder.id}.json").read_text(encoding="utf-8"))
        self.assertEqual(payload["configId"], "cfg")
        self.assertEqual(payload["status"], "pending")
        self.assertIn("startedAt", payload)

    def test_metadata_is_merged(self) -> None:
        recorder = HistoryRecorder.start(self.store)
        recorder.merge_metadata(backupPath="backup_1", canRollback=True)
        recorder.complete(HistoryStatus.SUCCESS, metadata={"healthCheck": {"success": True}})
        stored = self.store.get(recorder.id)
        self.assertEqual(stored.metadata["backupPath"], "backup_1")
        self.assertTrue(stored.metadata["canRollback"])
        self.assertIn("healthCheck", stored.metadata)

    def test_completed_record_is_immutable(self) -> None:
        recorder = HistoryRecorder.start(self.store)
        recorder.fail(HistoryStep.BUILD, "boom")
        stored = self.store.get(recorder.id)
        self.assertEqual(stored.status, HistoryStatus.FAILED)
        self.assertEqual(stored.step, HistoryStep.BUILD)
        self.assertEqual(stored.error, "boom")
        self.assertIsNotNone(stored.completed_at)
        with self.assertRaises(HistoryImmutableError):
            recorder.update(error="changed")

    def test_status_never_moves_backwards(self) -> None:
        recorder = HistoryRecorder.start(self.store)
        recorder.update(status=HistoryStatus.UPLOADING)
        with self.assertRaises(InvalidTransition):
            recorder.update(status=HistoryStatus.PENDING)

    def test_complete_requires_terminal_status(self) -> None:
        recorder = HistoryRecorder.start(self.store)
        with self.assertRaises(InvalidTransition):
            recorder.complete(HistoryStatus.UPLOADING)

    def test_unknown_field_rejected(self) -> None:
        recorder = HistoryRecorder.start(self.store)
        with self.assertRaises(TypeError):
            recorder.update(colour="blue")


class HistoryStoreTests(unittest.TestCase):
    def test_list_recent_orders_and_filters(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = HistoryStore(Path(tmp))
            first = HistoryRecorder.start(store, config_id="a").record
            second = HistoryRecorder.start(store, config_id="b").record
            first.started_at = "2024-01-01T00:00:00+00:00"
            second.started_at = "2024-02-01T00:00:00+00:00"
            store.save(first)
            store.save(second)
            (Path(tmp) / "broken.json").write_text("{not json", encoding="utf-8")

            self.assertEqual([r.id for r in store.list_recent()], [second.id, first.id])
            self.assertEqual([r.id for r in store.list_recent(config_id="a")], [first.id])
            self.assertEqual(len(store.list_recent(limit=1)), 1)
            self.assertIsNone(store.get("missing"))


if __name__ == "__main__":
    unittest.main()
