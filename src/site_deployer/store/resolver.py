"""Resolve the active deployment configuration into plaintext settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from ..security import DecryptionFailed, SecretCipher
from ..utils.logging import get_logger
from .configs import ConfigStore

logger = get_logger(__name__)


@dataclass
class ResolvedConfig:
    """Decrypted settings for a single run. Lives in memory only."""

    server: str
    username: str
    password: str
    server_dir: str
    local_dir: str
    server_url: str
    protocol: Optional[str] = None
    port: Optional[int] = None
    db_host: Optional[str] = None
    db_username: Optional[str] = None
    db_password: Optional[str] = None
    db_name: Optional[str] = None
    db_port: Optional[int] = None
    config_id: Optional[str] = None
    name: Optional[str] = None

    @property
    def has_database(self) -> bool:
        return bool(self.db_host and self.db_username and self.db_name)

    def __repr__(self) -> str:
        # Keep passwords out of logs and tracebacks
        return (
            f"ResolvedConfig(name={self.name!r}, server={self.server!r}, "
            f"username={self.username!r}, server_dir={self.server_dir!r}, "
            f"local_dir={self.local_dir!r}, server_url={self.server_url!r}, "
            f"has_database={self.has_database})"
        )


class ConfigResolver:
    """Loads a named configuration, falling back to environment variables."""

    def __init__(
        self,
        store: ConfigStore,
        cipher: SecretCipher,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.store = store
        self.cipher = cipher
        self.environ = os.environ if environ is None else environ

    def resolve(self, name: str = "Production") -> ResolvedConfig:
        config = self.store.get_by_name(name)
        if config is None:
            logger.info("No stored configuration named %r, using environment variables", name)
            return self._from_environment()

        ftp_password = self._decrypt("ftp_password", config.ftp_password) or ""
        db_password = self._decrypt("db_password", config.db_password)

        return ResolvedConfig(
            server=config.ftp_server,
            username=config.ftp_username,
            password=ftp_password,
            server_dir=config.ftp_server_dir,
            local_dir=config.build_output_dir,
            server_url=config.server_url,
            protocol=config.protocol,
            port=config.ftp_port,
            db_host=config.db_host,
            db_username=config.db_username,
            db_password=db_password,
            db_name=config.db_name,
            db_port=config.db_port,
            config_id=config.id,
            name=config.name,
        )

    def _decrypt(self, field_name: str, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        try:
            return self.cipher.decrypt(token)
        except DecryptionFailed as exc:
            raise DecryptionFailed(f"Could not decrypt {field_name}: {exc}") from exc

    def _from_environment(self) -> ResolvedConfig:
        env = self.environ
        port = env.get("FTP_PORT")
        return ResolvedConfig(
            server=env.get("FTP_SERVER", ""),
            username=env.get("FTP_USERNAME", ""),
            password=env.get("FTP_PASSWORD", ""),
            server_dir=env.get("FTP_SERVER_DIR", "/www"),
            local_dir=env.get("BUILD_OUTPUT_DIR", "out"),
            server_url=env.get("SERVER_URL", ""),
            protocol=env.get("FTP_PROTOCOL") or None,
            port=int(port) if port else None,
        )
