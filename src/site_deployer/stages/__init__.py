"""Pipeline stages. Each returns a StageResult instead of raising."""

from .backup import BackupStage
from .base import (
    BackupResult,
    BuildResult,
    DatabaseExportResult,
    HealthCheckResult,
    StageResult,
    UploadResult,
)
from .build import BuildStage
from .database import DatabaseExportStage, dump_filename, import_instructions
from .health import HealthCheckStage
from .sql_rewrite import REWRITE_RULES, rewrite_postgres_to_mysql
from .upload import UploadStage

__all__ = [
    "BackupResult",
    "BackupStage",
    "BuildResult",
    "BuildStage",
    "DatabaseExportResult",
    "DatabaseExportStage",
    "HealthCheckResult",
    "HealthCheckStage",
    "REWRITE_RULES",
    "StageResult",
    "UploadResult",
    "UploadStage",
    "dump_filename",
    "import_instructions",
    "rewrite_postgres_to_mysql",
]
