"""Best-effort file transfer and state broadcast to the paired device.

Two independent, fire-and-forget channels:

- **File transfer**: :meth:`PeerLink.transfer_file` only *queues* a file; a
  single worker thread delivers it and later reports ``(path, error)`` to the
  transfer listener. ``error`` is ``None`` on confirmed delivery.
- **State broadcast**: :meth:`PeerLink.broadcast_state` overwrites a small
  JSON snapshot on the peer. Last write wins; a peer that is unreachable
  simply misses intermediate snapshots.
"""

from __future__ import annotations

import json
import logging
import os
import queue
import shutil
import threading
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import paramiko

from ..config.app_config import PeerConfig, normalize_remote_path
from ..core.models import TransferRecord, TransferStatus
from ..dataio.file_paths import META_SUFFIX
from ..errors import TransferDeliveryFailure, TransferNotReady
from .ssh_client import Host, SSHClient

logger = logging.getLogger(__name__)

STATE_FILENAME = "state.json"

# Envelope keys understood by the companion app.
KEY_IS_COLLECTING = "isCollecting"
KEY_TRANSFERRING_FILE = "transferringFile"
KEY_TIMESTAMP = "timestamp"

TransferListener = Callable[[Path, Optional[str]], None]


@dataclass
class _Transfer:
    path: Path
    metadata: Dict[str, Any]


class PeerLink:
    """
    Base class for peer transports.

    Subclasses implement :meth:`_open`, :meth:`_deliver` and
    :meth:`_publish_state`; queueing, bookkeeping and error capture live
    here.
    """

    def __init__(self, listener: Optional[TransferListener] = None) -> None:
        self._listener = listener
        self._activated = False
        self._queue: "queue.Queue[_Transfer | None]" = queue.Queue()
        self._records: Dict[str, TransferRecord] = {}
        self._records_lock = threading.Lock()
        self._idle = threading.Condition()
        self._pending = 0
        self._worker: Optional[threading.Thread] = None

    # ------------------------------------------------------------------ lifecycle
    @property
    def is_activated(self) -> bool:
        return self._activated

    def set_transfer_listener(self, listener: Optional[TransferListener]) -> None:
        self._listener = listener

    def activate(self) -> bool:
        """Open the link; returns False (and logs) if the peer is unreachable."""
        if self._activated:
            return True
        try:
            self._open()
        except TransferNotReady as exc:
            logger.warning("Peer link activation failed: %s", exc)
            return False
        self._activated = True
        self._ensure_worker()
        logger.info("Peer link activated (%s)", self.describe())
        return True

    def close(self) -> None:
        """Stop the worker after queued transfers drain, then close the link."""
        worker = self._worker
        if worker is not None:
            self._queue.put(None)
            worker.join(timeout=5.0)
            self._worker = None
        self._activated = False
        try:
            self._close()
        except Exception:
            logger.exception("Failed to close peer link")

    def describe(self) -> str:
        return type(self).__name__

    # ------------------------------------------------------------------ transfers
    def transfer_file(
        self, path: Path, metadata: Optional[Mapping[str, Any]] = None
    ) -> Tuple[bool, str]:
        """
        Queue ``path`` for delivery.

        The boolean only says whether the file was queued; delivery is
        reported later through the transfer listener.
        """
        path = Path(path)
        if not self._activated:
            return False, "Peer link not activated"
        if not path.is_file():
            return False, f"File not found: {path.name}"

        with self._records_lock:
            self._records[path.name] = TransferRecord(path.name, TransferStatus.QUEUED)
        with self._idle:
            self._pending += 1
        self._queue.put(_Transfer(path, dict(metadata or {})))
        logger.info("Queued %s for transfer", path.name)
        return True, "File queued for transfer"

    def transfer_records(self) -> List[TransferRecord]:
        with self._records_lock:
            return [TransferRecord(r.filename, r.status, r.error) for r in self._records.values()]

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every queued transfer has been attempted."""
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout)

    def _ensure_worker(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._worker = threading.Thread(
            target=self._run, name="WristLogPeerTransfer", daemon=True
        )
        self._worker.start()

    def _set_status(self, name: str, status: TransferStatus, error: Optional[str] = None) -> None:
        with self._records_lock:
            record = self._records.setdefault(name, TransferRecord(name))
            record.status = status
            record.error = error

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                break
            name = item.path.name
            self._set_status(name, TransferStatus.TRANSFERRING)
            error: Optional[str] = None
            try:
                self._deliver(item.path, item.metadata)
            except Exception as exc:
                error = str(exc) or type(exc).__name__
                logger.warning("Transfer of %s failed: %s", name, error)
                self._set_status(name, TransferStatus.FAILED, error)
            else:
                logger.info("Transfer of %s delivered", name)
                self._set_status(name, TransferStatus.DELIVERED)

            listener = self._listener
            if listener is not None:
                try:
                    listener(item.path, error)
                except Exception:
                    logger.exception("Transfer listener failed for %s", name)
            with self._idle:
                self._pending -= 1
                self._idle.notify_all()

    # ------------------------------------------------------------------ state
    def broadcast_state(self, fields: Mapping[str, Any]) -> bool:
        """Publish a state snapshot; returns False if it was dropped."""
        if not self._activated:
            logger.debug("Peer link inactive; dropping state snapshot %r", dict(fields))
            return False
        payload = dict(fields)
        payload.setdefault(KEY_TIMESTAMP, time.time())
        try:
            self._publish_state(payload)
        except Exception as exc:
            logger.warning("State broadcast failed: %s", exc)
            return False
        return True

    # ------------------------------------------------------------------ hooks
    def _open(self) -> None:  # pragma: no cover - overridden
        raise NotImplementedError

    def _close(self) -> None:
        pass

    def _deliver(self, path: Path, metadata: Dict[str, Any]) -> None:  # pragma: no cover - overridden
        raise NotImplementedError

    def _publish_state(self, payload: Dict[str, Any]) -> None:  # pragma: no cover - overridden
        raise NotImplementedError


def _write_json_atomic(path: Path, payload: Mapping[str, Any]) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(json.dumps(dict(payload), sort_keys=True), encoding="utf-8")
    os.replace(tmp_path, path)


class DirectoryPeerLink(PeerLink):
    """Peer link that drops files into a local or mounted inbox directory."""

    def __init__(self, inbox: Path, listener: Optional[TransferListener] = None) -> None:
        super().__init__(listener)
        self.inbox = Path(inbox).expanduser()

    def describe(self) -> str:
        return f"inbox {self.inbox}"

    def _open(self) -> None:
        try:
            self.inbox.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise TransferNotReady(f"Inbox {self.inbox} unavailable: {exc}") from exc

    def _deliver(self, path: Path, metadata: Dict[str, Any]) -> None:
        target = self.inbox / path.name
        partial = target.with_name(target.name + ".partial")
        try:
            shutil.copyfile(path, partial)
            os.replace(partial, target)
            if metadata:
                _write_json_atomic(self.inbox / (path.name + META_SUFFIX), metadata)
        except OSError as exc:
            raise TransferDeliveryFailure(f"Copy to {self.inbox} failed: {exc}") from exc

    def _publish_state(self, payload: Dict[str, Any]) -> None:
        _write_json_atomic(self.inbox / STATE_FILENAME, payload)


class SftpPeerLink(PeerLink):
    """Peer link that uploads files to the paired device over SFTP."""

    def __init__(
        self,
        host: Host,
        inbox_dir: str,
        listener: Optional[TransferListener] = None,
    ) -> None:
        super().__init__(listener)
        self.client = SSHClient(host)
        self.inbox_dir = PurePosixPath(normalize_remote_path(inbox_dir, host.user))

    def describe(self) -> str:
        return f"sftp {self.client.host.user}@{self.client.host.host}:{self.inbox_dir}"

    def _open(self) -> None:
        try:
            self.client.connect()
            self.client.makedirs(str(self.inbox_dir))
        except (OSError, paramiko.SSHException) as exc:
            raise TransferNotReady(f"Cannot reach {self.client.host.host}: {exc}") from exc

    def _close(self) -> None:
        self.client.close()

    def _deliver(self, path: Path, metadata: Dict[str, Any]) -> None:
        target = self.inbox_dir / path.name
        partial = f"{target}.partial"
        try:
            with self.client.sftp() as sftp:
                sftp.put(str(path), partial)
                sftp.posix_rename(partial, str(target))
                if metadata:
                    self._put_json(sftp, self.inbox_dir / (path.name + META_SUFFIX), metadata)
        except (OSError, paramiko.SSHException) as exc:
            raise TransferDeliveryFailure(f"Upload of {path.name} failed: {exc}") from exc

    def _publish_state(self, payload: Dict[str, Any]) -> None:
        with self.client.sftp() as sftp:
            self._put_json(sftp, self.inbox_dir / STATE_FILENAME, payload)

    @staticmethod
    def _put_json(sftp, remote_path: PurePosixPath, payload: Mapping[str, Any]) -> None:
        tmp = f"{remote_path}.tmp"
        with sftp.open(tmp, "w") as fh:
            fh.write(json.dumps(dict(payload), sort_keys=True))
        sftp.posix_rename(tmp, str(remote_path))


def build_peer_link(cfg: PeerConfig | None) -> PeerLink | None:
    """Create the transport described by ``peer.yaml`` (``None`` if unpaired)."""
    if cfg is None:
        return None
    if cfg.uses_sftp:
        host = Host(
            name=cfg.name,
            host=str(cfg.host),
            user=cfg.user,
            password=cfg.password,
            port=cfg.port,
        )
        return SftpPeerLink(host, cfg.inbox_dir)
    if cfg.inbox_path is not None:
        return DirectoryPeerLink(cfg.inbox_path)
    return None


# ---------------------------------------------------------------------------
# Peer-side helpers
# ---------------------------------------------------------------------------

@dataclass
class PeerState:
    """
    Locally cached view of the wrist device, built from state envelopes.

    Unknown keys are ignored and missing keys keep the previous value.
    """

    is_collecting: bool = False
    transferring_file: Optional[str] = None
    timestamp: Optional[float] = None

    def apply(self, envelope: Mapping[str, Any]) -> PeerState:
        if KEY_IS_COLLECTING in envelope:
            self.is_collecting = bool(envelope[KEY_IS_COLLECTING])
        if KEY_TRANSFERRING_FILE in envelope:
            value = envelope[KEY_TRANSFERRING_FILE]
            self.transferring_file = str(value) if value else None
        if KEY_TIMESTAMP in envelope:
            try:
                self.timestamp = float(envelope[KEY_TIMESTAMP])
            except (TypeError, ValueError):
                logger.debug("Ignoring bad timestamp %r", envelope[KEY_TIMESTAMP])
        return self

    def placeholder(self) -> Optional[TransferRecord]:
        """Row to show while a file is announced but has not arrived yet."""
        if not self.transferring_file:
            return None
        return TransferRecord(self.transferring_file, TransferStatus.TRANSFERRING)


def read_state_snapshot(path: Path) -> Dict[str, Any]:
    """Read a state snapshot written by :meth:`PeerLink.broadcast_state`."""
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Unreadable state snapshot %s (%s)", path, exc)
        return {}
    return raw if isinstance(raw, dict) else {}
