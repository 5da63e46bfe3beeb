"""Configuration loading utilities for site-deployer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from .paths import BASE_DIR

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = Path("config/site_deployer.json")

DEFAULT_CONFIG_NAME = "Production"


@dataclass
class BuildConfig:
    """Settings for the local static-export build."""

    command: str = "npm run build"
    timeout: int = 300                       # seconds, process is killed on expiry
    project_descriptor: str = "package.json"
    build_config_file: str = "next.config.js"
    env: Dict[str, str] = field(default_factory=lambda: {"NEXT_EXPORT": "true"})


@dataclass
class TransferConfig:
    """Settings for FTP/FTPS/SFTP sessions."""

    timeout: int = 30                        # socket deadline for every transfer call
    passive: bool = True
    verify_tls: bool = True
    backups_dir: str = "backups"


@dataclass
class HealthConfig:
    timeout: float = 10.0


@dataclass
class DatabaseConfig:
    """Settings for the optional PostgreSQL export."""

    source_url: Optional[str] = None         # falls back to DATABASE_URL
    dump_binary: str = "pg_dump"
    dump_timeout: int = 600
    dump_encoding: str = "utf-8"             # encoding of pg_dump output and the written dump
    tmp_dir: str = "tmp"


@dataclass
class StorageConfig:
    data_dir: str = str(BASE_DIR)


@dataclass
class AppConfig:
    """Top-level configuration."""

    config_name: str = DEFAULT_CONFIG_NAME
    project_dir: str = "."
    build: BuildConfig = field(default_factory=BuildConfig)
    transfer: TransferConfig = field(default_factory=TransferConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        # Keys starting with "_" are comments
        def section(name: str) -> Dict[str, Any]:
            data = payload.get(name, {}) or {}
            return {k: v for k, v in data.items() if not k.startswith("_")}

        build_payload = section("build")
        build_env = {**BuildConfig().env, **(build_payload.pop("env", None) or {})}

        return cls(
            config_name=payload.get("config_name", DEFAULT_CONFIG_NAME),
            project_dir=payload.get("project_dir", "."),
            build=BuildConfig(**{**BuildConfig().__dict__, **build_payload, "env": build_env}),
            transfer=TransferConfig(**{**TransferConfig().__dict__, **section("transfer")}),
            health=HealthConfig(**{**HealthConfig().__dict__, **section("health")}),
            database=DatabaseConfig(**{**DatabaseConfig().__dict__, **section("database")}),
            storage=StorageConfig(**{**StorageConfig().__dict__, **section("storage")}),
        )


def apply_env_overrides(config: AppConfig, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Apply environment variables on top of file settings (env wins)."""
    env = os.environ if environ is None else environ

    if env.get("SITE_DEPLOYER_DATA_DIR"):
        config.storage.data_dir = env["SITE_DEPLOYER_DATA_DIR"]
    if env.get("SITE_DEPLOYER_PROJECT_DIR"):
        config.project_dir = env["SITE_DEPLOYER_PROJECT_DIR"]
    if env.get("SITE_DEPLOYER_CONFIG_NAME"):
        config.config_name = env["SITE_DEPLOYER_CONFIG_NAME"]
    if env.get("SITE_DEPLOYER_BUILD_COMMAND"):
        config.build.command = env["SITE_DEPLOYER_BUILD_COMMAND"]
    if env.get("SITE_DEPLOYER_BUILD_TIMEOUT"):
        config.build.timeout = int(env["SITE_DEPLOYER_BUILD_TIMEOUT"])
    if env.get("SITE_DEPLOYER_TRANSFER_TIMEOUT"):
        config.transfer.timeout = int(env["SITE_DEPLOYER_TRANSFER_TIMEOUT"])
    if not config.database.source_url and env.get("DATABASE_URL"):
        config.database.source_url = env["DATABASE_URL"]
    return config


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    Unlike an explicit `path`, the default file is optional: without it the
    built-in defaults are used.

    Environment variables (higher priority than config file):
    - SITE_DEPLOYER_DATA_DIR: Directory holding configs, history and locks
    - SITE_DEPLOYER_PROJECT_DIR: Working tree that is built and uploaded
    - SITE_DEPLOYER_CONFIG_NAME: Deployment configuration to resolve
    - SITE_DEPLOYER_BUILD_COMMAND / SITE_DEPLOYER_BUILD_TIMEOUT
    - SITE_DEPLOYER_TRANSFER_TIMEOUT: Socket deadline for transfer sessions
    - DATABASE_URL: Source PostgreSQL connection string for the export stage
    """
    if path:
        candidate = Path(path)
        if not candidate.is_file():
            raise FileNotFoundError(f"Could not find configuration file: {candidate}")
    else:
        candidate = _DEFAULT_CONFIG_PATH

    if candidate.is_file():
        with candidate.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        config = AppConfig.from_dict(data)
    else:
        config = AppConfig()

    return apply_env_overrides(config, environ)
