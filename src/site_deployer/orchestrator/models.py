"""Data models for the orchestrator module."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..stages.base import HealthCheckResult
from ..store.history import DeploymentHistory


@dataclass
class DeploymentOutcome:
    """What a caller gets back from one pipeline run."""

    success: bool
    history: DeploymentHistory
    error: Optional[str] = None
    step: Optional[str] = None
    health_check: Optional[HealthCheckResult] = None
    db_import_instructions: Optional[List[str]] = None

    @property
    def status(self) -> str:
        return self.history.status.value

    def to_dict(self) -> Dict[str, Any]:
        record = self.history
        return {
            "success": self.success,
            "deploymentId": record.id,
            "status": record.status.value,
            "step": self.step or record.step.value,
            "error": self.error,
            "url": record.deployed_url,
            "buildDuration": record.build_duration,
            "ftpDuration": record.ftp_duration,
            "filesUploaded": record.files_uploaded,
            "dbSyncDuration": record.db_sync_duration,
            "dbDumpFile": record.metadata.get("dbDumpFile"),
            "canRollback": bool(record.metadata.get("canRollback")),
            "backupPath": record.metadata.get("backupPath"),
            "healthCheck": self.health_check.to_dict() if self.health_check else None,
            "dbImportInstructions": self.db_import_instructions,
        }
