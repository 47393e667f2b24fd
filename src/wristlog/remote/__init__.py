"""Peer transport: SFTP/inbox file transfer and state broadcast."""

from .peer_link import (
    DirectoryPeerLink,
    PeerLink,
    PeerState,
    SftpPeerLink,
    build_peer_link,
    read_state_snapshot,
)

__all__ = [
    "DirectoryPeerLink",
    "PeerLink",
    "PeerState",
    "SftpPeerLink",
    "build_peer_link",
    "read_state_snapshot",
]
