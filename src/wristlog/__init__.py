"""WristLog: continuous accelerometer recording sessions with peer file transfer."""

__version__ = "0.1.0"
