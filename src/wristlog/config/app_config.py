"""Default application paths and peer configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml


DEFAULT_DATA_DIR = Path("~/.wristlog")
DEFAULT_PEER_INBOX = "~/wristlog/inbox"


@dataclass
class AppPaths:
    """
    Commonly used paths for the recorder process.

    ``WRISTLOG_DATA_ROOT`` and ``WRISTLOG_LOG_DIR`` override the default
    ``~/.wristlog`` and ``~/.wristlog/logs`` folders so tests and alternate
    installs can store files elsewhere.
    """

    data_root: Optional[Path] = None
    sessions: Path = field(init=False)
    logs: Path = field(init=False)
    settings_file: Path = field(init=False)
    config_file: Path = field(init=False)
    peer_file: Path = field(init=False)

    def __post_init__(self) -> None:
        if self.data_root is None:
            env_data_root = os.environ.get("WRISTLOG_DATA_ROOT")
            if env_data_root:
                self.data_root = Path(env_data_root).expanduser()
            else:
                self.data_root = DEFAULT_DATA_DIR.expanduser()
        else:
            self.data_root = Path(self.data_root).expanduser()

        env_logs_dir = os.environ.get("WRISTLOG_LOG_DIR")
        if env_logs_dir:
            self.logs = Path(env_logs_dir).expanduser()
        else:
            self.logs = self.data_root / "logs"

        self.sessions = self.data_root / "sessions"
        self.settings_file = self.data_root / "settings.yaml"
        self.config_file = self.data_root / "wristlog.yaml"
        self.peer_file = self.data_root / "peer.yaml"

    def ensure(self) -> None:
        """Create directories if they do not yet exist."""
        for path in (self.data_root, self.sessions, self.logs):
            path.mkdir(parents=True, exist_ok=True)


@dataclass
class PeerConfig:
    """
    Normalized peer configuration derived from ``peer.yaml``.

    Either ``host`` (SFTP to the paired device) or ``inbox_path`` (a local or
    mounted directory) selects the transport.
    """

    name: str = "peer"
    host: Optional[str] = None
    user: str = "wristlog"
    port: int = 22
    password: Optional[str] = None
    inbox_dir: str = DEFAULT_PEER_INBOX
    inbox_path: Optional[Path] = None

    @property
    def uses_sftp(self) -> bool:
        return bool(self.host)


def peer_config_from_mapping(data: Mapping[str, Any] | None) -> PeerConfig | None:
    """Convert a ``peer`` mapping into :class:`PeerConfig` (``None`` if empty)."""
    if not data:
        return None
    block = data.get("peer", data)
    if not isinstance(block, Mapping):
        raise ValueError(f"Expected mapping for peer settings, got {type(block).__name__}")

    inbox_path = block.get("inbox_path")
    host = block.get("host")
    if not host and not inbox_path:
        return None

    return PeerConfig(
        name=str(block.get("name", host or "peer")),
        host=str(host) if host else None,
        user=str(block.get("user", "wristlog")),
        port=int(block.get("port", 22)),
        password=block.get("password"),
        inbox_dir=str(block.get("inbox_dir", DEFAULT_PEER_INBOX)),
        inbox_path=Path(str(inbox_path)).expanduser() if inbox_path else None,
    )


def load_peer_config(path: Path) -> PeerConfig | None:
    """Load ``peer.yaml``; a missing file means no peer is paired."""
    path = Path(path)
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as fh:
        raw: Dict[str, Any] = yaml.safe_load(fh) or {}
    if not isinstance(raw, Mapping):
        raise ValueError(f"Expected mapping in {path}, got {type(raw).__name__}")
    return peer_config_from_mapping(raw)


def normalize_remote_path(path: str | Path, user: str | None = None) -> str:
    """
    Normalize a path on the peer so it is POSIX-style.

    Rules:
    - "~" or "~/..." is expanded to /home/<user>[/...], if *user* is given.
    - Windows-style backslashes are converted to forward slashes.
    - A bare relative path like "inbox" becomes /home/<user>/inbox if *user*
      is available; otherwise it is left as-is.
    """
    s = str(path).strip()
    if not s:
        return s

    if user:
        if s == "~":
            return f"/home/{user}"
        if s.startswith("~/"):
            tail = s[2:]
            return f"/home/{user}/{tail}" if tail else f"/home/{user}"

    s = s.replace("\\", "/")

    if not s.startswith("/") and user:
        s = f"/home/{user}/{s}"

    return s
