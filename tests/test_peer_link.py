from __future__ import annotations

import contextlib
import json
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import paramiko
import pytest

from wristlog.config.app_config import PeerConfig
from wristlog.core.models import TransferStatus
from wristlog.remote.peer_link import (
    KEY_IS_COLLECTING,
    KEY_TIMESTAMP,
    KEY_TRANSFERRING_FILE,
    STATE_FILENAME,
    DirectoryPeerLink,
    PeerLink,
    PeerState,
    SftpPeerLink,
    build_peer_link,
    read_state_snapshot,
)
from wristlog.remote.ssh_client import Host, SSHClient


class _Collector:
    def __init__(self) -> None:
        self.calls: List[Tuple[Path, Optional[str]]] = []
        self.done = threading.Event()

    def __call__(self, path: Path, error: Optional[str]) -> None:
        self.calls.append((path, error))
        self.done.set()


class _BrokenLink(PeerLink):
    def _open(self) -> None:
        pass

    def _deliver(self, path, metadata) -> None:
        raise OSError("peer went away")

    def _publish_state(self, payload) -> None:
        raise OSError("peer went away")


def test_directory_link_delivers_file_and_metadata(tmp_path: Path) -> None:
    source = tmp_path / "accel_data_2025-11-05_14-30-00_part001.csv"
    source.write_text("Timestamp,X,Y,Z,Source\n", encoding="utf-8")
    inbox = tmp_path / "inbox"
    collector = _Collector()
    link = DirectoryPeerLink(inbox, listener=collector)
    assert link.activate()
    try:
        ok, info = link.transfer_file(source, {"sequence": 1})
        assert ok
        assert info == "File queued for transfer"
        assert link.wait_idle(timeout=5.0)
    finally:
        link.close()

    assert (inbox / source.name).read_text(encoding="utf-8") == source.read_text(encoding="utf-8")
    meta = json.loads((inbox / (source.name + ".meta.json")).read_text(encoding="utf-8"))
    assert meta == {"sequence": 1}
    assert not (inbox / (source.name + ".partial")).exists()
    assert collector.calls == [(source, None)]
    records = link.transfer_records()
    assert [(r.filename, r.status) for r in records] == [(source.name, TransferStatus.DELIVERED)]


def test_transfer_rejected_when_not_activated(tmp_path: Path) -> None:
    source = tmp_path / "a.csv"
    source.write_text("x", encoding="utf-8")
    link = DirectoryPeerLink(tmp_path / "inbox")

    assert link.transfer_file(source) == (False, "Peer link not activated")
    assert link.broadcast_state({KEY_IS_COLLECTING: True}) is False


def test_transfer_rejected_for_missing_file(tmp_path: Path) -> None:
    link = DirectoryPeerLink(tmp_path / "inbox")
    link.activate()
    try:
        ok, info = link.transfer_file(tmp_path / "missing.csv")
    finally:
        link.close()

    assert not ok
    assert "missing.csv" in info


def test_failed_delivery_reports_error(tmp_path: Path) -> None:
    source = tmp_path / "a.csv"
    source.write_text("x", encoding="utf-8")
    collector = _Collector()
    link = _BrokenLink(listener=collector)
    link.activate()
    try:
        assert link.transfer_file(source)[0]
        assert collector.done.wait(5.0)
        assert link.broadcast_state({KEY_IS_COLLECTING: True}) is False
    finally:
        link.close()

    assert collector.calls == [(source, "peer went away")]
    assert link.transfer_records()[0].status is TransferStatus.FAILED


def test_state_broadcast_overwrites_snapshot(tmp_path: Path) -> None:
    inbox = tmp_path / "inbox"
    link = DirectoryPeerLink(inbox)
    link.activate()
    try:
        assert link.broadcast_state({KEY_IS_COLLECTING: True, KEY_TRANSFERRING_FILE: ""})
        assert link.broadcast_state({KEY_IS_COLLECTING: False, KEY_TRANSFERRING_FILE: "b.csv"})
    finally:
        link.close()

    snapshot = read_state_snapshot(inbox / STATE_FILENAME)
    assert snapshot[KEY_IS_COLLECTING] is False
    assert snapshot[KEY_TRANSFERRING_FILE] == "b.csv"
    assert isinstance(snapshot[KEY_TIMESTAMP], float)


def test_read_state_snapshot_tolerates_bad_files(tmp_path: Path) -> None:
    assert read_state_snapshot(tmp_path / "missing.json") == {}
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    assert read_state_snapshot(bad) == {}


def test_peer_state_ignores_unknown_and_keeps_missing_keys() -> None:
    state = PeerState()
    state.apply({KEY_IS_COLLECTING: True, KEY_TRANSFERRING_FILE: "a.csv", "battery": 80})

    assert state.is_collecting is True
    assert state.transferring_file == "a.csv"
    assert state.placeholder().status is TransferStatus.TRANSFERRING

    state.apply({KEY_TIMESTAMP: 12.5})
    assert state.is_collecting is True
    assert state.timestamp == 12.5

    state.apply({KEY_TRANSFERRING_FILE: ""})
    assert state.transferring_file is None
    assert state.placeholder() is None


def test_build_peer_link(tmp_path: Path) -> None:
    assert build_peer_link(None) is None
    assert isinstance(build_peer_link(PeerConfig(inbox_path=tmp_path)), DirectoryPeerLink)
    assert isinstance(build_peer_link(PeerConfig(host="10.0.0.5", user="pi")), SftpPeerLink)


def test_activation_fails_when_inbox_cannot_be_created(tmp_path: Path) -> None:
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("", encoding="utf-8")
    link = DirectoryPeerLink(blocker / "inbox")

    assert link.activate() is False
    assert link.is_activated is False


class _FakeRemoteFile:
    def __init__(self, files: Dict[str, bytes], path: str) -> None:
        self._files = files
        self._path = path
        self._chunks: List[str] = []

    def write(self, data: str) -> None:
        self._chunks.append(data)

    def __enter__(self) -> "_FakeRemoteFile":
        return self

    def __exit__(self, *exc_info) -> None:
        self._files[self._path] = "".join(self._chunks).encode("utf-8")


class _FakeSftp:
    def __init__(self, existing: Tuple[str, ...] = ()) -> None:
        self.files: Dict[str, bytes] = {}
        self.dirs = set(existing)
        self.calls: List[Tuple[str, ...]] = []
        self.put_error: Optional[Exception] = None

    def put(self, local: str, remote: str) -> None:
        self.calls.append(("put", remote))
        if self.put_error is not None:
            raise self.put_error
        self.files[remote] = Path(local).read_bytes()

    def open(self, remote: str, mode: str = "r") -> _FakeRemoteFile:
        assert mode == "w"
        self.calls.append(("open", remote))
        return _FakeRemoteFile(self.files, remote)

    def posix_rename(self, old: str, new: str) -> None:
        self.calls.append(("rename", old, new))
        self.files[new] = self.files.pop(old)

    def stat(self, remote: str) -> None:
        if remote not in self.dirs:
            raise IOError(2, "No such file", remote)

    def mkdir(self, remote: str) -> None:
        self.calls.append(("mkdir", remote))
        self.dirs.add(remote)


class _FakeSshClient:
    def __init__(self, host: Host, sftp: _FakeSftp, connect_error: Optional[Exception] = None) -> None:
        self.host = host
        self.session = sftp
        self.connect_error = connect_error
        self.made: List[str] = []
        self.closed = False

    def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error

    def makedirs(self, remote_dir: str) -> None:
        self.made.append(remote_dir)

    def close(self) -> None:
        self.closed = True

    @contextlib.contextmanager
    def sftp(self):
        yield self.session


def _sftp_link(collector=None, **client_kwargs) -> Tuple[SftpPeerLink, _FakeSshClient]:
    host = Host("peer", "10.0.0.5", "pi")
    link = SftpPeerLink(host, "~/inbox", listener=collector)
    fake = _FakeSshClient(host, _FakeSftp(), **client_kwargs)
    link.client = fake
    return link, fake


def test_sftp_link_uploads_via_partial_and_writes_sidecar(tmp_path: Path) -> None:
    source = tmp_path / "accel_data_2025-11-05_14-30-00_part001.csv"
    source.write_text("Timestamp,X,Y,Z,Source\n", encoding="utf-8")
    collector = _Collector()
    link, fake = _sftp_link(collector)

    assert link.activate()
    assert fake.made == ["/home/pi/inbox"]
    try:
        assert link.transfer_file(source, {"sequence": 1})[0]
        assert link.wait_idle(timeout=5.0)
    finally:
        link.close()

    target = f"/home/pi/inbox/{source.name}"
    assert fake.session.calls[:2] == [
        ("put", f"{target}.partial"),
        ("rename", f"{target}.partial", target),
    ]
    assert fake.session.files[target] == source.read_bytes()
    assert json.loads(fake.session.files[f"{target}.meta.json"]) == {"sequence": 1}
    assert not any(name.endswith((".partial", ".tmp")) for name in fake.session.files)
    assert collector.calls == [(source, None)]
    assert fake.closed


def test_sftp_state_broadcast_is_renamed_into_place() -> None:
    link, fake = _sftp_link()
    link.activate()
    try:
        assert link.broadcast_state({KEY_IS_COLLECTING: True, KEY_TRANSFERRING_FILE: ""})
    finally:
        link.close()

    state_path = f"/home/pi/inbox/{STATE_FILENAME}"
    assert fake.session.calls == [
        ("open", f"{state_path}.tmp"),
        ("rename", f"{state_path}.tmp", state_path),
    ]
    assert json.loads(fake.session.files[state_path])[KEY_IS_COLLECTING] is True


@pytest.mark.parametrize(
    "error",
    [paramiko.SSHException("channel closed"), OSError("connection reset")],
)
def test_sftp_upload_failure_reaches_listener(tmp_path: Path, error: Exception) -> None:
    source = tmp_path / "a.csv"
    source.write_text("x", encoding="utf-8")
    collector = _Collector()
    link, fake = _sftp_link(collector)
    fake.session.put_error = error
    link.activate()
    try:
        assert link.transfer_file(source)[0]
        assert collector.done.wait(5.0)
    finally:
        link.close()

    [(path, message)] = collector.calls
    assert path == source
    assert message.startswith("Upload of a.csv failed")
    assert str(error) in message
    assert link.transfer_records()[0].status is TransferStatus.FAILED


@pytest.mark.parametrize(
    "error",
    [OSError("no route to host"), paramiko.AuthenticationException("bad password")],
)
def test_sftp_activation_fails_when_peer_unreachable(error: Exception) -> None:
    link, _ = _sftp_link(connect_error=error)

    assert link.activate() is False
    assert link.is_activated is False


def test_ssh_client_makedirs_creates_missing_parents(monkeypatch: pytest.MonkeyPatch) -> None:
    client = SSHClient(Host("peer", "10.0.0.5", "pi"))
    fake = _FakeSftp(existing=("/home", "/home/pi"))
    monkeypatch.setattr(client, "sftp", lambda: contextlib.nullcontext(fake))

    client.makedirs("/home/pi/wristlog/inbox")

    assert fake.calls == [("mkdir", "/home/pi/wristlog"), ("mkdir", "/home/pi/wristlog/inbox")]
