"""SFTP session built on Paramiko, for hosts that only expose SSH."""

from __future__ import annotations

import socket
from pathlib import Path
from typing import Callable, Optional, Union

import paramiko

from ..utils.logging import get_logger
from .credentials import TransferCredentials
from .session import TransferAuthError, TransferConnectionError, TransferError, TransferSession

logger = get_logger(__name__)


class SFTPSession(TransferSession):
    """TransferSession over paramiko.SSHClient.open_sftp()."""

    def __init__(
        self,
        credentials: TransferCredentials,
        *,
        client_factory: Callable[[], paramiko.SSHClient] | None = None,
    ) -> None:
        super().__init__(credentials)
        self._client_factory = client_factory or paramiko.SSHClient
        self._client: Optional[paramiko.SSHClient] = None
        self._sftp: Optional[paramiko.SFTPClient] = None

    def connect(self) -> None:
        if self._sftp:
            return
        creds = self.credentials
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=creds.host,
                port=creds.effective_port,
                username=creds.username,
                password=creds.password,
                timeout=creds.timeout,
                look_for_keys=False,
                allow_agent=False,
            )
            sftp = client.open_sftp()
        except paramiko.AuthenticationException as exc:
            client.close()
            raise TransferAuthError(str(exc)) from exc
        except (paramiko.SSHException, socket.timeout, OSError) as exc:
            client.close()
            raise TransferConnectionError(f"{creds.host}: {exc}") from exc
        # Bound every blocking channel read
        sftp.get_channel().settimeout(float(creds.timeout))
        self._client = client
        self._sftp = sftp
        logger.debug("Opened SFTP session to %s:%s", creds.host, creds.effective_port)

    def close(self) -> None:
        if self._sftp:
            self._sftp.close()
            self._sftp = None
        if self._client:
            self._client.close()
            self._client = None

    def _require_sftp(self) -> paramiko.SFTPClient:
        if not self._sftp:
            self.connect()
        assert self._sftp is not None
        return self._sftp

    def cd(self, path: str) -> None:
        try:
            self._require_sftp().chdir(path)
        except (IOError, paramiko.SSHException) as exc:
            raise TransferError(f"Cannot change directory to {path}: {exc}") from exc

    def ensure_dir(self, name: str) -> None:
        sftp = self._require_sftp()
        try:
            sftp.stat(name)
            return
        except IOError:
            pass
        try:
            sftp.mkdir(name)
        except (IOError, paramiko.SSHException) as exc:
            raise TransferError(f"Cannot create directory {name}: {exc}") from exc

    def upload_file(self, local_path: Union[str, Path], remote_name: str) -> None:
        try:
            self._require_sftp().put(str(local_path), remote_name)
        except (IOError, paramiko.SSHException) as exc:
            raise TransferError(f"Upload of {Path(local_path).name} failed: {exc}") from exc
