"""Persisted deployment configurations."""

from __future__ import annotations

import json
import os
import stat
import tempfile
import uuid
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

MASK = "••••••••"


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """Write `data` next to `path` and rename over it so readers never see a torn file.

    An existing file keeps its permission bits. If anything fails the
    original file is left untouched.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        if path.exists():
            os.chmod(tmp_name, stat.S_IMODE(path.stat().st_mode))
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_json_atomic(path: Path, payload: Any) -> None:
    write_bytes_atomic(path, json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8"))


class ConfigNotFound(LookupError):
    """Raised when a configuration id is unknown to the store."""


@dataclass
class DeploymentConfig:
    """A named deployment target. Password fields hold encrypted tokens."""

    name: str
    ftp_server: str = ""
    ftp_username: str = ""
    ftp_password: Optional[str] = None
    ftp_server_dir: str = "/www"
    protocol: Optional[str] = None           # "ftp" | "ftps" | "sftp"
    ftp_port: Optional[int] = None
    build_output_dir: str = "out"
    server_url: str = ""
    db_host: Optional[str] = None
    db_username: Optional[str] = None
    db_password: Optional[str] = None
    db_name: Optional[str] = None
    db_port: Optional[int] = None
    db_type: str = "mysql"
    id: Optional[str] = None
    last_sync_at: Optional[str] = None
    last_sync_status: Optional[str] = None
    last_sync_error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentConfig":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_public_dict(self) -> Dict[str, Any]:
        """Return a display copy with secrets masked."""
        data = self.to_dict()
        data["ftp_password"] = MASK if self.ftp_password else None
        data["db_password"] = MASK if self.db_password else None
        return data


class ConfigStore:
    """JSON file holding every named configuration."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _load(self) -> List[DeploymentConfig]:
        if not self.path.exists():
            return []
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        return [DeploymentConfig.from_dict(item) for item in payload.get("configs", [])]

    def _dump(self, configs: List[DeploymentConfig]) -> None:
        write_json_atomic(self.path, {"configs": [c.to_dict() for c in configs]})

    def list(self) -> List[DeploymentConfig]:
        return self._load()

    def get_by_name(self, name: str) -> Optional[DeploymentConfig]:
        for config in self._load():
            if config.name == name:
                return config
        return None

    def save(self, config: DeploymentConfig) -> DeploymentConfig:
        """Insert or replace the configuration with the same name."""
        configs = self._load()
        now = utcnow_iso()
        existing = next((c for c in configs if c.name == config.name), None)
        if existing:
            config.id = existing.id
            config.created_at = existing.created_at
            configs = [config if c.name == config.name else c for c in configs]
        else:
            config.id = config.id or uuid.uuid4().hex
            config.created_at = now
            configs.append(config)
        config.updated_at = now
        self._dump(configs)
        return config

    def update_sync_status(self, config_id: str, status: str, error: Optional[str] = None) -> None:
        configs = self._load()
        for config in configs:
            if config.id == config_id:
                config.last_sync_at = utcnow_iso()
                config.last_sync_status = status
                config.last_sync_error = error
                self._dump(configs)
                return
        raise ConfigNotFound(config_id)
