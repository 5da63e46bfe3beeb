"""Unified path constants for site-deployer.

All local state is stored under the .site-deployer directory:
- .site-deployer/configs.json   # Named deployment configurations
- .site-deployer/history/       # One JSON record per pipeline run
- .site-deployer/locks/         # Per-configuration run locks
"""

from __future__ import annotations

from pathlib import Path
from typing import Union

BASE_DIR = Path(".site-deployer")

CONFIGS_FILE = "configs.json"
HISTORY_DIR = "history"
LOCKS_DIR = "locks"


def get_configs_file(base: Union[str, Path] = BASE_DIR) -> Path:
    """Return the configuration store path (the file is created on first save)."""
    base = Path(base)
    base.mkdir(parents=True, exist_ok=True)
    return base / CONFIGS_FILE


def get_history_dir(base: Union[str, Path] = BASE_DIR) -> Path:
    path = Path(base) / HISTORY_DIR
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_locks_dir(base: Union[str, Path] = BASE_DIR) -> Path:
    path = Path(base) / LOCKS_DIR
    path.mkdir(parents=True, exist_ok=True)
    return path
