"""File-transfer sessions (FTP, FTP over TLS, SFTP)."""

from __future__ import annotations

from typing import Callable

from .credentials import MissingCredentials, TransferCredentials, resolve_protocol
from .session import (
    FTPSession,
    TransferAuthError,
    TransferConnectionError,
    TransferError,
    TransferSession,
    count_files,
)
from .sftp import SFTPSession

SessionFactory = Callable[[TransferCredentials], TransferSession]


def open_session(credentials: TransferCredentials) -> TransferSession:
    """Return an unconnected session for the credential's protocol."""
    if credentials.protocol == "sftp":
        return SFTPSession(credentials)
    return FTPSession(credentials)


__all__ = [
    "FTPSession",
    "MissingCredentials",
    "SFTPSession",
    "SessionFactory",
    "TransferAuthError",
    "TransferConnectionError",
    "TransferCredentials",
    "TransferError",
    "TransferSession",
    "count_files",
    "open_session",
    "resolve_protocol",
]
