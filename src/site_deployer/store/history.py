"""Deployment history: one incrementally-updated record per pipeline run."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..utils.logging import get_logger
from .configs import utcnow_iso, write_json_atomic

logger = get_logger(__name__)


class HistoryStep(str, Enum):
    BACKUP = "backup"
    BUILD = "build"
    FTP = "ftp"
    DATABASE = "database"
    HEALTH_CHECK = "health_check"
    COMPLETE = "complete"


class HistoryStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    SUCCESS = "success"
    WARNING = "warning"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (HistoryStatus.SUCCESS, HistoryStatus.WARNING, HistoryStatus.FAILED)


_STATUS_RANK = {
    HistoryStatus.PENDING: 0,
    HistoryStatus.UPLOADING: 1,
    HistoryStatus.SUCCESS: 2,
    HistoryStatus.WARNING: 2,
    HistoryStatus.FAILED: 2,
}

# Python attribute -> persisted key read by dashboards
_FIELD_KEYS = {
    "id": "id",
    "config_id": "configId",
    "created_by": "createdById",
    "step": "step",
    "status": "status",
    "build_duration": "buildDuration",
    "build_output": "buildOutput",
    "ftp_duration": "ftpDuration",
    "db_sync_duration": "dbSyncDuration",
    "db_sync_tables": "dbSyncTables",
    "files_uploaded": "filesUploaded",
    "deployed_url": "deployedUrl",
    "metadata": "metadata",
    "error": "error",
    "started_at": "startedAt",
    "completed_at": "completedAt",
}


class HistoryImmutableError(RuntimeError):
    """Raised when a completed history record is modified."""


class InvalidTransition(RuntimeError):
    """Raised when a status update would move a run backwards."""


@dataclass
class DeploymentHistory:
    id: Optional[str] = None
    config_id: Optional[str] = None
    created_by: Optional[str] = None
    step: HistoryStep = HistoryStep.BACKUP
    status: HistoryStatus = HistoryStatus.PENDING
    build_duration: Optional[float] = None
    build_output: Optional[str] = None
    ftp_duration: Optional[float] = None
    db_sync_duration: Optional[float] = None
    db_sync_tables: Optional[List[str]] = None
    files_uploaded: Optional[int] = None
    deployed_url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for attr, key in _FIELD_KEYS.items():
            value = getattr(self, attr)
            if isinstance(value, Enum):
                value = value.value
            data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentHistory":
        kwargs = {attr: data.get(key) for attr, key in _FIELD_KEYS.items() if key in data}
        if kwargs.get("step"):
            kwargs["step"] = HistoryStep(kwargs["step"])
        if kwargs.get("status"):
            kwargs["status"] = HistoryStatus(kwargs["status"])
        kwargs["metadata"] = kwargs.get("metadata") or {}
        return cls(**kwargs)


class HistoryStore:
    """Stores each run as <id>.json inside a directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, history_id: str) -> Path:
        return self.directory / f"{history_id}.json"

    def create(self, record: DeploymentHistory) -> DeploymentHistory:
        record.id = record.id or uuid.uuid4().hex
        self.save(record)
        return record

    def save(self, record: DeploymentHistory) -> None:
        if not record.id:
            raise ValueError("History record has no id")
        write_json_atomic(self._path(record.id), record.to_dict())

    def get(self, history_id: str) -> Optional[DeploymentHistory]:
        path = self._path(history_id)
        if not path.exists():
            return None
        return DeploymentHistory.from_dict(json.loads(path.read_text(encoding="utf-8")))

    def list_recent(self, limit: Optional[int] = None, config_id: Optional[str] = None) -> List[DeploymentHistory]:
        records = []
        for path in self.directory.glob("*.json"):
            try:
                record = DeploymentHistory.from_dict(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError, TypeError, AttributeError) as exc:
                logger.warning("Skipping unreadable history file %s: %s", path.name, exc)
                continue
            if config_id and record.config_id != config_id:
                continue
            records.append(record)
        records.sort(key=lambda r: r.started_at or "", reverse=True)
        return records[:limit] if limit else records


class HistoryRecorder:
    """Write-through owner of one run's history record.

    Every call persists immediately, so an observer reading the store
    mid-run sees the last completed transition.
    """

    def __init__(self, store: HistoryStore, record: DeploymentHistory) -> None:
        self.store = store
        self.record = record

    @classmethod
    def start(
        cls,
        store: HistoryStore,
        *,
        config_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> "HistoryRecorder":
        record = DeploymentHistory(
            config_id=config_id,
            created_by=created_by,
            step=HistoryStep.BACKUP,
            status=HistoryStatus.PENDING,
            started_at=utcnow_iso(),
        )
        store.create(record)
        return cls(store, record)

    @property
    def id(self) -> str:
        assert self.record.id is not None
        return self.record.id

    @property
    def is_completed(self) -> bool:
        return self.record.completed_at is not None

    def update(self, **changes: Any) -> DeploymentHistory:
        if self.is_completed:
            raise HistoryImmutableError(f"History {self.record.id} is already completed")

        unknown = set(changes) - set(_FIELD_KEYS)
        if unknown:
            raise TypeError(f"Unknown history fields: {', '.join(sorted(unknown))}")

        if "status" in changes:
            self._check_status(HistoryStatus(changes["status"]))
            changes["status"] = HistoryStatus(changes["status"])
        if "step" in changes:
            changes["step"] = HistoryStep(changes["step"])
        if "metadata" in changes:
            changes["metadata"] = {**self.record.metadata, **(changes["metadata"] or {})}

        for attr, value in changes.items():
            setattr(self.record, attr, value)
        self.store.save(self.record)
        return self.record

    def merge_metadata(self, **values: Any) -> DeploymentHistory:
        return self.update(metadata=values)

    def complete(self, status: HistoryStatus, **changes: Any) -> DeploymentHistory:
        status = HistoryStatus(status)
        if not status.is_terminal:
            raise InvalidTransition(f"{status.value} is not a terminal status")
        return self.update(status=status, completed_at=utcnow_iso(), **changes)

    def fail(self, step: HistoryStep, error: str, **changes: Any) -> DeploymentHistory:
        return self.complete(HistoryStatus.FAILED, step=step, error=error, **changes)

    def _check_status(self, new: HistoryStatus) -> None:
        current = self.record.status
        if _STATUS_RANK[new] < _STATUS_RANK[current]:
            raise InvalidTransition(f"Cannot move status from {current.value} to {new.value}")
        if current.is_terminal and new != current:
            raise InvalidTransition(f"Run already finished with {current.value}")
