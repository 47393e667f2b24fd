"""Lightweight SSH/SFTP client wrapper for the paired device."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterator, Optional

import logging
import paramiko


logger = logging.getLogger(__name__)


@dataclass
class Host:
    """Connection details for the paired device (password-based auth only)."""

    name: str
    host: str
    user: str
    password: Optional[str] = None
    port: int = 22


class SSHClient:
    """Simple wrapper around ``paramiko`` for file drops on the peer."""

    def __init__(self, host: Host, timeout: float = 10.0) -> None:
        self.host = host
        self.timeout = timeout
        self._client: paramiko.SSHClient = paramiko.SSHClient()
        self._client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    # ------------------------------------------------------------------ internals
    def _ensure_client(self) -> paramiko.SSHClient:
        transport = self._client.get_transport()
        if not (transport and transport.is_active()):
            self.connect()
        return self._client

    # ------------------------------------------------------------------ connection
    @property
    def is_connected(self) -> bool:
        transport = self._client.get_transport()
        return bool(transport and transport.is_active())

    def connect(self) -> None:
        if self.is_connected:
            return

        logger.info(
            "Connecting to %s@%s:%s", self.host.user, self.host.host, self.host.port
        )

        self._client.connect(
            hostname=self.host.host,
            username=self.host.user,
            port=self.host.port,
            password=self.host.password,
            look_for_keys=False,
            allow_agent=False,
            timeout=self.timeout,
        )

    def close(self) -> None:
        try:
            self._client.close()
        except Exception:
            logger.debug("Ignoring error while closing SSH client", exc_info=True)

    # ------------------------------------------------------------------ sftp
    @contextmanager
    def sftp(self) -> Iterator[paramiko.SFTPClient]:
        """Context manager that yields an SFTP client."""

        client = self._ensure_client()
        sftp = client.open_sftp()
        try:
            yield sftp
        finally:
            try:
                sftp.close()
            except Exception:
                logger.debug("Ignoring error while closing SFTP session", exc_info=True)

    def makedirs(self, remote_dir: str) -> None:
        """Create *remote_dir* and any missing parents."""

        with self.sftp() as sftp:
            current = PurePosixPath("/") if remote_dir.startswith("/") else PurePosixPath()
            for part in PurePosixPath(remote_dir).parts:
                if part == "/":
                    continue
                current = current / part
                try:
                    sftp.stat(str(current))
                except IOError:
                    sftp.mkdir(str(current))
