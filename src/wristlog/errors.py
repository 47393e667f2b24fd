"""Exception types raised at WristLog adapter boundaries."""

from __future__ import annotations


class WristLogError(Exception):
    """Base class for WristLog failures."""


class HardwareUnavailable(WristLogError):
    """The continuous accelerometer recorder is not supported on this device."""


class FileWriteFailure(WristLogError):
    """Materializing a session CSV failed."""


class TransferNotReady(WristLogError):
    """The peer link is not activated or the peer is unreachable."""


class TransferDeliveryFailure(WristLogError):
    """A queued file transfer did not reach the peer."""


class SettingsWriteFailure(WristLogError):
    """Persisting a setting to disk failed; the in-memory value still applies."""
