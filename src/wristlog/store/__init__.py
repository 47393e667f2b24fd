"""Durable settings persistence."""

from .settings_store import (
    KEY_SESSION_FILE_SEQUENCE,
    KEY_SHOULD_CONTINUE_COLLECTING,
    SettingsStore,
)

__all__ = [
    "KEY_SESSION_FILE_SEQUENCE",
    "KEY_SHOULD_CONTINUE_COLLECTING",
    "SettingsStore",
]
