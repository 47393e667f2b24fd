"""Configuration objects and helpers for WristLog.

This package knows how to load the YAML descriptors that tune a recording
process:
- ``wristlog.yaml`` with session/downsampling/lease settings
- ``peer.yaml`` describing the paired device that receives session files
The resulting typed dataclasses are imported everywhere else so the
coordinator, CLI, and transport agree on defaults.
"""

from .app_config import AppPaths, PeerConfig, load_peer_config
from .runtime import WristLogConfig, config_from_mapping, load_config

__all__ = [
    "AppPaths",
    "PeerConfig",
    "WristLogConfig",
    "config_from_mapping",
    "load_config",
    "load_peer_config",
]
