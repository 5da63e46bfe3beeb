"""FTP / FTP-over-TLS session management built on ftplib."""

from __future__ import annotations

import ftplib
import posixpath
import socket
import ssl
from pathlib import Path
from typing import Callable, Optional, Union

from ..utils.logging import get_logger
from .credentials import TransferCredentials

logger = get_logger(__name__)


class TransferError(RuntimeError):
    """Raised when a transfer operation fails."""


class TransferConnectionError(TransferError):
    """Raised when the host cannot be reached (refused, timeout, DNS)."""


class TransferAuthError(TransferError):
    """Raised when the server rejects the credentials."""


def count_files(directory: Union[str, Path]) -> int:
    """Count regular files below `directory`, recursively."""
    total = 0
    for entry in Path(directory).iterdir():
        if entry.is_dir():
            total += count_files(entry)
        else:
            total += 1
    return total


class TransferSession:
    """Common interface for FTP, FTPS and SFTP sessions.

    Subclasses implement the primitives (connect, cd, ensure_dir,
    upload_file, close); recursive directory upload is shared.
    """

    def __init__(self, credentials: TransferCredentials) -> None:
        self.credentials = credentials

    def __enter__(self) -> "TransferSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    def connect(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def cd(self, path: str) -> None:
        raise NotImplementedError

    def ensure_dir(self, name: str) -> None:
        raise NotImplementedError

    def upload_file(self, local_path: Union[str, Path], remote_name: str) -> None:
        raise NotImplementedError

    def upload_tree(self, local_dir: Union[str, Path]) -> int:
        """Mirror `local_dir` into the current remote directory.

        Returns the number of files transferred.
        """
        uploaded = 0
        for entry in sorted(Path(local_dir).iterdir()):
            if entry.is_dir():
                self.ensure_dir(entry.name)
                self.cd(entry.name)
                try:
                    uploaded += self.upload_tree(entry)
                finally:
                    self.cd("..")
            else:
                self.upload_file(entry, entry.name)
                uploaded += 1
        return uploaded


class FTPSession(TransferSession):
    """High-level wrapper around ftplib.FTP / ftplib.FTP_TLS."""

    def __init__(
        self,
        credentials: TransferCredentials,
        *,
        client_factory: Optional[Callable[..., ftplib.FTP]] = None,
    ) -> None:
        super().__init__(credentials)
        self._client_factory = client_factory
        self._client: Optional[ftplib.FTP] = None

    @property
    def secure(self) -> bool:
        return self.credentials.protocol == "ftps"

    def _make_client(self) -> ftplib.FTP:
        if self._client_factory:
            return self._client_factory()
        if self.secure:
            context = ssl.create_default_context()
            if not self.credentials.verify_tls:
                context.check_hostname = False
                context.verify_mode = ssl.CERT_NONE
            return ftplib.FTP_TLS(context=context, timeout=self.credentials.timeout)
        return ftplib.FTP(timeout=self.credentials.timeout)

    def connect(self) -> None:
        if self._client:
            return
        creds = self.credentials
        client = self._make_client()
        try:
            client.connect(creds.host, creds.effective_port, timeout=creds.timeout)
        except (socket.timeout, socket.gaierror, ConnectionError, OSError) as exc:
            self._safe_close(client)
            raise TransferConnectionError(f"{creds.host}: {exc}") from exc
        try:
            client.login(creds.username, creds.password or "")
            if self.secure:
                client.prot_p()  # type: ignore[attr-defined]
            client.set_pasv(creds.passive)
        except ftplib.error_perm as exc:
            self._safe_close(client)
            raise TransferAuthError(str(exc)) from exc
        except (socket.timeout, ConnectionError, OSError, ftplib.Error) as exc:
            self._safe_close(client)
            raise TransferConnectionError(f"{creds.host}: {exc}") from exc
        logger.debug("Connected to %s:%s over %s", creds.host, creds.effective_port, creds.protocol)
        self._client = client

    def close(self) -> None:
        if self._client:
            client, self._client = self._client, None
            try:
                client.quit()
            except (ftplib.Error, OSError, EOFError):
                self._safe_close(client)

    @staticmethod
    def _safe_close(client: ftplib.FTP) -> None:
        try:
            client.close()
        except OSError:
            pass

    def _require_client(self) -> ftplib.FTP:
        if not self._client:
            self.connect()
        assert self._client is not None
        return self._client

    def cd(self, path: str) -> None:
        try:
            self._require_client().cwd(path)
        except (ftplib.Error, OSError) as exc:
            raise TransferError(f"Cannot change directory to {path}: {exc}") from exc

    def ensure_dir(self, name: str) -> None:
        try:
            self._require_client().mkd(name)
        except ftplib.error_perm:
            # 550/521: already exists
            pass
        except (ftplib.Error, OSError) as exc:
            raise TransferError(f"Cannot create directory {name}: {exc}") from exc

    def upload_file(self, local_path: Union[str, Path], remote_name: str) -> None:
        client = self._require_client()
        try:
            with open(local_path, "rb") as handle:
                client.storbinary(f"STOR {remote_name}", handle)
        except (ftplib.Error, OSError) as exc:
            raise TransferError(f"Upload of {posixpath.basename(remote_name)} failed: {exc}") from exc
