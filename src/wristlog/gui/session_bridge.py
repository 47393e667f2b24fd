from __future__ import annotations

import logging
from typing import Optional

from PySide6.QtCore import QObject, Signal

from ..core.session import SessionCoordinator, SessionEvent, SessionEventKind

logger = logging.getLogger(__name__)


class SessionBridge(QObject):
    """Non-visual adapter that re-emits coordinator notifications as Qt signals.

    Notifications arrive on the coordinator's dispatcher thread; Qt queues
    them onto the receiver's thread, so widgets may connect directly.
    """

    state_changed = Signal(str, str)  # (phase, message)
    elapsed_changed = Signal(float)
    transfer_updated = Signal(str, str, str)  # (filename, status, error)
    error_reported = Signal(str)

    def __init__(
        self,
        coordinator: SessionCoordinator,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._coordinator = coordinator
        coordinator.add_listener(self._on_session_event)

    def detach(self) -> None:
        self._coordinator.remove_listener(self._on_session_event)

    def _on_session_event(self, event: SessionEvent) -> None:
        if event.kind is SessionEventKind.STATE:
            self.state_changed.emit(event.state.phase.value, event.state.message or "")
            if event.state.message:
                self.error_reported.emit(event.state.message)
        elif event.kind is SessionEventKind.TICK:
            self.elapsed_changed.emit(float(event.elapsed_s))
        elif event.kind is SessionEventKind.TRANSFER and event.transfer is not None:
            record = event.transfer
            self.transfer_updated.emit(record.filename, record.status.value, record.error or "")
        elif event.kind is SessionEventKind.NOTICE and event.message:
            logger.debug("Forwarding notice: %s", event.message)
            self.error_reported.emit(event.message)
