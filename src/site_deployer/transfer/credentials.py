"""File-transfer credential helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

PROTOCOLS = ("ftp", "ftps", "sftp")

_DEFAULT_PORTS = {"ftp": 21, "ftps": 21, "sftp": 22}


class MissingCredentials(ValueError):
    """Raised when host, username or password are absent."""


def resolve_protocol(host: Optional[str], protocol: Optional[str] = None) -> str:
    """Pick the transfer protocol.

    An explicit flag wins. Otherwise a host name hinting at a secure
    service ("ftps." or "sftp.") selects FTP over TLS.
    """
    if protocol:
        protocol = protocol.lower()
        if protocol not in PROTOCOLS:
            raise ValueError(f"Unsupported transfer protocol: {protocol}")
        return protocol
    host = (host or "").lower()
    if "ftps" in host or "sftp" in host:
        return "ftps"
    return "ftp"


@dataclass
class TransferCredentials:
    """Normalized credential payload for one transfer session."""

    host: str
    username: str
    password: Optional[str] = None
    port: Optional[int] = None
    protocol: str = "ftp"
    timeout: int = 30
    passive: bool = True
    verify_tls: bool = True

    @property
    def effective_port(self) -> int:
        return self.port or _DEFAULT_PORTS[self.protocol]

    def validate(self) -> None:
        if not self.host or not self.username or not self.password:
            raise MissingCredentials("FTP credentials not configured")
        if self.protocol not in PROTOCOLS:
            raise ValueError(f"Unsupported transfer protocol: {self.protocol}")
