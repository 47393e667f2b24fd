"""Coordinator for continuous recording sessions.

:class:`SessionCoordinator` owns every piece of mutable session state: the
lifecycle phase, the live reading buffer, the reserved session file, and the
in-flight transfer. A single dispatcher thread applies all transitions.
Public methods, timer ticks, lease notifications and transfer completions
are posted to its inbox as messages; nothing else mutates session state.
Calls made from the dispatcher thread itself (e.g. from a listener) run
inline instead of being queued.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import numpy as np

from ..config.runtime import WristLogConfig
from ..dataio import csv_writer
from ..dataio.file_paths import (
    list_session_files,
    meta_path_for,
    session_filename,
    unique_export_path,
)
from ..errors import FileWriteFailure, HardwareUnavailable, SettingsWriteFailure
from ..remote.peer_link import (
    KEY_IS_COLLECTING,
    KEY_TIMESTAMP,
    KEY_TRANSFERRING_FILE,
    PeerLink,
)
from ..runtime.lease import ExecutionLease, LeaseEvent, LeaseInvalidated, LeaseWillExpire
from ..runtime.ticker import DurationTicker
from ..sensors.recorder import SampleRecorder
from ..store.settings_store import SettingsStore
from .downsample import materialize
from .models import (
    Reading,
    SessionFile,
    SessionPhase,
    SessionState,
    TransferRecord,
    TransferStatus,
)
from .reading_buffer import ReadingBuffer

logger = logging.getLogger(__name__)

RECORDER_UNAVAILABLE = "Accelerometer recorder not available"


class SessionEventKind(str, Enum):
    STATE = "state"
    TICK = "tick"
    TRANSFER = "transfer"
    NOTICE = "notice"


@dataclass(frozen=True)
class SessionEvent:
    """Notification delivered to coordinator listeners."""

    kind: SessionEventKind
    state: SessionState
    elapsed_s: float = 0.0
    transfer: Optional[TransferRecord] = None
    message: Optional[str] = None


SessionListener = Callable[[SessionEvent], None]


@dataclass
class _Message:
    handler: Callable[..., Any]
    args: Tuple[Any, ...]
    future: Future


@dataclass
class _ActiveSession:
    sequence: int
    start_time: float
    started_at: datetime
    filename: str


def _wall_time(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc).astimezone()


def status_of(state: SessionState) -> str:
    """Status string used in peer command replies."""
    return "collecting" if state.is_active else "idle"


class SessionCoordinator:
    """
    Recording session state machine.

    Lifecycle: ``idle -> starting -> running <-> backgrounded -> stopping ->
    idle``, plus ``error`` when the recorder is unavailable. The persisted
    collection intent makes sessions sticky across process restarts and
    lease expiry.
    """

    _instances = itertools.count(1)

    def __init__(
        self,
        recorder: SampleRecorder,
        lease: ExecutionLease,
        store: SettingsStore,
        sessions_dir: Path,
        *,
        transport: Optional[PeerLink] = None,
        config: Optional[WristLogConfig] = None,
        clock: Callable[[], float] = time.time,
        buffer_capacity: Optional[int] = None,
    ) -> None:
        self.config = (config or WristLogConfig()).sanitized()
        self.sessions_dir = Path(sessions_dir)
        self._recorder = recorder
        self._lease = lease
        self._store = store
        self._transport = transport
        self._clock = clock

        self._state = SessionState.idle()
        self._state_changed = threading.Condition()
        self._backgrounded = False
        self._active: Optional[_ActiveSession] = None
        self._elapsed_s = 0.0
        self._buffer = ReadingBuffer(buffer_capacity) if buffer_capacity else ReadingBuffer()
        self._buffer_started_at: Optional[float] = None
        self._in_flight: Optional[str] = None
        self._listeners: List[SessionListener] = []

        self._inbox: "queue.Queue[_Message | None]" = queue.Queue()
        self._dispatcher: Optional[threading.Thread] = None
        self._dispatcher_lock = threading.Lock()
        self._closed = False
        self._name = f"WristLogSession-{next(self._instances)}"
        self._ticker: Optional[DurationTicker] = None
        self._resume_timer: Optional[threading.Timer] = None

        self._lease.set_listener(self._on_lease_event)
        if self._transport is not None:
            self._transport.set_transfer_listener(self._on_transfer_finished)

    # ------------------------------------------------------------------ observation
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_collecting(self) -> bool:
        return self._state.is_active

    @property
    def elapsed_s(self) -> float:
        return self._elapsed_s

    @property
    def collection_intent(self) -> bool:
        return self._store.collection_intent

    @property
    def session_file_sequence(self) -> int:
        return self._store.session_file_sequence

    @property
    def current_session_filename(self) -> Optional[str]:
        active = self._active
        return active.filename if active else None

    @property
    def transferring_file(self) -> Optional[str]:
        return self._in_flight

    def readings(self) -> List[Reading]:
        """Snapshot of the live reading buffer."""
        return self._buffer.snapshot()

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every message posted before this call has been handled."""
        if self._on_dispatcher():
            return
        self._post(lambda: None).result(timeout)

    def wait_for_phase(self, phase: SessionPhase, timeout: Optional[float] = None) -> bool:
        """Block until the session reaches ``phase`` (True) or times out."""
        with self._state_changed:
            return self._state_changed.wait_for(lambda: self._state.phase is phase, timeout)

    # ------------------------------------------------------------------ lifecycle
    def launch(self) -> None:
        """
        Start the dispatcher and, if the user left collection on, schedule a
        deferred :meth:`start` so the rest of process init can settle.
        """
        self._ensure_dispatcher()
        if self._transport is not None and not self._transport.activate():
            logger.warning("Peer link unavailable; session files will stay local")
        if self._store.collection_intent:
            delay = self.config.auto_resume_delay_s
            logger.info("Collection intent is set; resuming in %.1f s", delay)
            timer = threading.Timer(delay, self._post, args=(self._do_start,))
            timer.daemon = True
            self._resume_timer = timer
            timer.start()

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        """
        Tear down timers and the dispatcher.

        The persisted intent is left untouched so the next launch resumes,
        and the continuous recorder keeps running.
        """
        if self._closed:
            return
        if self._resume_timer is not None:
            self._resume_timer.cancel()
            self._resume_timer = None
        dispatcher = self._dispatcher
        if dispatcher is not None and dispatcher.is_alive():
            self._post(self._release_runtime).result(timeout)
            # Queued transfers drain here; their completions are posted ahead
            # of the stop sentinel so delivered files are still cleaned up.
            self._close_transport()
            self._inbox.put(None)
            dispatcher.join(timeout)
        else:
            self._release_runtime()
            self._close_transport()
        self._closed = True

    def _close_transport(self) -> None:
        if self._transport is not None:
            self._transport.close()

    def _release_runtime(self) -> None:
        self._stop_ticker()
        self._lease.set_listener(None)
        if self._lease.is_active:
            self._lease.invalidate()

    # ------------------------------------------------------------------ public operations
    def start(self) -> SessionState:
        return self._call(self._do_start)

    def stop(self) -> Optional[SessionFile]:
        return self._call(self._do_stop)

    def attempt_recovery(self) -> SessionState:
        return self._call(self._do_attempt_recovery)

    def clear_data(self) -> bool:
        return self._call(self._do_clear_data)

    def reset_part_counter(self) -> None:
        self._call(self._do_reset_part_counter)

    def app_did_enter_background(self) -> None:
        self._call(self._do_enter_background)

    def app_will_enter_foreground(self) -> None:
        self._call(self._do_enter_foreground)

    def save_and_transfer(self) -> Tuple[bool, str]:
        return self._call(self._do_save_and_transfer)

    def record_realtime(self, reading: Reading) -> None:
        """Append a live reading; safe to call from a sensor callback thread."""
        self._post(self._do_record_realtime, reading)

    def handle_peer_command(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        """Answer a remote-control request from the paired device."""
        command = message.get("command")
        if command == "start":
            state = self.start()
            reply: Dict[str, Any] = {"status": status_of(state)}
            if state.phase is SessionPhase.ERROR:
                reply["message"] = state.message
            else:
                reply["message"] = "Collection started"
            return reply
        if command == "stop":
            session_file = self.stop()
            reply = {"status": status_of(self._state), "message": "Collection stopped"}
            if session_file is not None:
                reply["message"] = f"Collection stopped; saved {session_file.filename}"
            return reply
        if command == "requestStatus":
            return {"status": status_of(self._state)}
        return {"error": f"Unknown command: {command!r}"}

    # ------------------------------------------------------------------ dispatcher
    def _ensure_dispatcher(self) -> None:
        with self._dispatcher_lock:
            if self._closed:
                raise RuntimeError("SessionCoordinator has been shut down")
            if self._dispatcher is not None and self._dispatcher.is_alive():
                return
            self._dispatcher = threading.Thread(
                target=self._dispatch_loop, name=self._name, daemon=True
            )
            self._dispatcher.start()

    def _on_dispatcher(self) -> bool:
        return threading.current_thread() is self._dispatcher

    def _post(self, handler: Callable[..., Any], *args: Any) -> Future:
        future: Future = Future()
        if self._closed:
            future.set_exception(RuntimeError("SessionCoordinator has been shut down"))
            return future
        self._ensure_dispatcher()
        self._inbox.put(_Message(handler, args, future))
        return future

    def _call(self, handler: Callable[..., Any], *args: Any) -> Any:
        if self._on_dispatcher():
            return handler(*args)
        return self._post(handler, *args).result()

    def _dispatch_loop(self) -> None:
        while True:
            message = self._inbox.get()
            if message is None:
                break
            if not message.future.set_running_or_notify_cancel():
                continue
            try:
                result = message.handler(*message.args)
            except Exception as exc:
                logger.exception("Session handler %s failed", message.handler.__name__)
                message.future.set_exception(exc)
            else:
                message.future.set_result(result)

    # ------------------------------------------------------------------ notifications
    def _set_state(self, state: SessionState) -> None:
        previous = self._state
        with self._state_changed:
            self._state = state
            self._state_changed.notify_all()
        if state != previous:
            logger.info("Session state %s -> %s", previous, state)
            self._notify(SessionEvent(SessionEventKind.STATE, state, self._elapsed_s))
        if state.is_recording != previous.is_recording:
            self._broadcast()

    def _notify(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Session listener failed for %s event", event.kind.value)

    def _notice(self, message: str) -> None:
        self._notify(SessionEvent(SessionEventKind.NOTICE, self._state, self._elapsed_s, message=message))

    def _broadcast(self) -> None:
        if self._transport is None:
            return
        self._transport.broadcast_state(
            {
                KEY_IS_COLLECTING: self._state.is_recording,
                KEY_TRANSFERRING_FILE: self._in_flight or "",
                KEY_TIMESTAMP: self._clock(),
            }
        )

    def _persist(self, setting: str, value: Any) -> None:
        try:
            setattr(self._store, setting, value)
        except SettingsWriteFailure as exc:
            logger.error("Setting %s=%r kept in memory only: %s", setting, value, exc)
            self._notice(f"Could not save settings: {exc}")

    # ------------------------------------------------------------------ ticker
    def _start_ticker(self) -> None:
        self._stop_ticker()
        ticker = DurationTicker(self.config.tick_interval_s, lambda: self._post(self._do_tick))
        self._ticker = ticker
        ticker.start()

    def _stop_ticker(self) -> None:
        ticker = self._ticker
        self._ticker = None
        if ticker is not None:
            ticker.stop()

    def _do_tick(self) -> None:
        active = self._active
        if active is None or not self._state.is_recording:
            return
        self._elapsed_s = max(0.0, self._clock() - active.start_time)
        self._notify(SessionEvent(SessionEventKind.TICK, self._state, self._elapsed_s))

    # ------------------------------------------------------------------ start / stop
    def _recording_state(self) -> SessionState:
        return SessionState.backgrounded() if self._backgrounded else SessionState.running()

    def _do_start(self) -> SessionState:
        if self._state.is_active:
            logger.info("start() ignored: already collecting (%s)", self._state)
            return self._state

        # Persist intent before touching hardware so a crash right after
        # start still resumes on relaunch.
        self._persist("collection_intent", True)

        if not self._recorder.is_available():
            logger.error("Cannot start: %s", RECORDER_UNAVAILABLE)
            self._set_state(SessionState.error(RECORDER_UNAVAILABLE))
            return self._state

        self._set_state(SessionState.starting())
        try:
            self._lease.start()
            self._recorder.begin_continuous_recording(self.config.max_recording_duration_s)
        except HardwareUnavailable as exc:
            logger.error("Cannot start recorder: %s", exc)
            self._invalidate_lease()
            self._set_state(SessionState.error(str(exc) or RECORDER_UNAVAILABLE))
            return self._state

        self._buffer.clear()
        self._buffer_started_at = None
        sequence = self._store.session_file_sequence + 1
        self._persist("session_file_sequence", sequence)
        now = self._clock()
        started_at = _wall_time(now)
        self._active = _ActiveSession(
            sequence=sequence,
            start_time=now,
            started_at=started_at,
            filename=session_filename(started_at, sequence),
        )
        self._elapsed_s = 0.0
        self._start_ticker()
        logger.info(
            "Session part %d started (%s), storing at %.1f Hz",
            sequence,
            self._active.filename,
            self.config.stored_rate_hz,
        )
        self._set_state(self._recording_state())
        return self._state

    def _do_stop(self) -> Optional[SessionFile]:
        active = self._active
        if active is None or not self._state.is_recording:
            logger.info("stop() ignored: not collecting (%s)", self._state)
            return None

        self._persist("collection_intent", False)
        self._set_state(SessionState.stopping())
        end_time = self._clock()
        session_file: Optional[SessionFile] = None
        try:
            session_file = self._materialize(active, end_time)
        except FileWriteFailure as exc:
            logger.error("Session part %d not saved: %s", active.sequence, exc)
            self._notice(f"Could not save session: {exc}")
        except HardwareUnavailable as exc:
            logger.error("Could not retrieve recorder data: %s", exc)
            self._notice(f"Could not retrieve recorder data: {exc}")
        finally:
            self._stop_ticker()
            self._invalidate_lease()
            self._elapsed_s = max(0.0, end_time - active.start_time)
            self._active = None
            self._set_state(SessionState.idle())

        if session_file is not None:
            self._send(session_file)
        return session_file

    def _materialize(self, active: _ActiveSession, end_time: float) -> Optional[SessionFile]:
        raw = self._recorder.fetch_samples(active.start_time, end_time)
        batches = materialize(
            raw,
            factor=self.config.downsample_factor,
            max_abs_g=self.config.max_abs_g,
            batch_size=self.config.csv_batch_size,
        )
        first = next(batches, None)
        if first is None:
            logger.info("No recorder data for session part %d; nothing saved", active.sequence)
            return None

        path = self.sessions_dir / active.filename
        rows = csv_writer.write_readings(path, itertools.chain([first], batches))
        logger.info("Saved %d readings to %s", rows, path)
        return SessionFile(
            path=path,
            sequence=active.sequence,
            row_count=rows,
            started_at=active.started_at,
            ended_at=_wall_time(end_time),
        )

    def _invalidate_lease(self) -> None:
        if self._lease.is_active:
            self._lease.invalidate()

    # ------------------------------------------------------------------ recovery
    def _do_attempt_recovery(self) -> SessionState:
        if not self._store.collection_intent:
            return self._state
        if self._state.phase is SessionPhase.ERROR:
            logger.info("Recovery skipped: session is in error (%s)", self._state.message)
            return self._state
        if self._active is None:
            # Fresh process whose deferred start has not fired yet.
            return self._do_start()
        if not self._lease.is_active:
            logger.info("Re-acquiring execution lease for session part %d", self._active.sequence)
            self._lease.start()
        if self._state.is_recording:
            self._set_state(self._recording_state())
        return self._state

    def _on_lease_event(self, event: LeaseEvent) -> None:
        # Called from lease timer threads; hop onto the dispatcher.
        self._post(self._do_lease_event, event)

    def _do_lease_event(self, event: LeaseEvent) -> None:
        if isinstance(event, LeaseWillExpire):
            if self._store.collection_intent:
                logger.info("Execution lease expiring; renewing")
                self._lease.invalidate()
                self._lease.start()
        elif isinstance(event, LeaseInvalidated):
            if event.error:
                logger.warning("Execution lease invalidated: %s", event.error)
            self._do_attempt_recovery()

    # ------------------------------------------------------------------ app lifecycle
    def _do_enter_background(self) -> None:
        self._backgrounded = True
        if self._state.phase is SessionPhase.RUNNING:
            self._set_state(SessionState.backgrounded())

    def _do_enter_foreground(self) -> None:
        self._backgrounded = False
        if self._state.phase is SessionPhase.BACKGROUNDED:
            self._set_state(SessionState.running())
        self._do_attempt_recovery()

    # ------------------------------------------------------------------ data management
    def _do_clear_data(self) -> bool:
        if self._state.is_active:
            logger.warning("clear_data() rejected while %s", self._state)
            return False
        self._buffer.clear()
        self._buffer_started_at = None
        removed = 0
        for path in list_session_files(self.sessions_dir):
            for target in (path, meta_path_for(path)):
                try:
                    target.unlink()
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    logger.error("Could not delete %s: %s", target, exc)
                    continue
                if target == path:
                    removed += 1
        self._persist("session_file_sequence", 0)
        logger.info("Cleared %d session file(s); part counter reset", removed)
        return True

    def _do_reset_part_counter(self) -> None:
        self._persist("session_file_sequence", 0)
        logger.info("Session part counter reset")

    def _do_record_realtime(self, reading: Reading) -> None:
        if self._buffer_started_at is None:
            self._buffer_started_at = self._clock()
        self._buffer.append(reading)

    def _do_save_and_transfer(self) -> Tuple[bool, str]:
        readings = self._buffer.snapshot()
        if not readings:
            return False, "No data to save"
        if self._buffer.overwritten:
            logger.warning(
                "Live buffer overflowed; %d oldest reading(s) are not in the export",
                self._buffer.overwritten,
            )

        now = self._clock()
        started = self._buffer_started_at if self._buffer_started_at is not None else now
        path = unique_export_path(self.sessions_dir, _wall_time(now))
        try:
            rows = csv_writer.write_readings(path, [readings], self._export_metadata(readings, started, now))
        except FileWriteFailure as exc:
            logger.error("Manual export failed: %s", exc)
            return False, "Failed to save CSV file"
        logger.info("Exported %d live readings to %s", rows, path.name)

        session_file = SessionFile(
            path=path,
            sequence=0,
            row_count=rows,
            started_at=_wall_time(started),
            ended_at=_wall_time(now),
        )
        ok, info = self._send(session_file)
        if ok:
            self._buffer.clear()
            self._buffer_started_at = None
        return ok, info

    def _export_metadata(self, readings: List[Reading], started: float, ended: float) -> Dict[str, str]:
        elapsed = max(0.0, ended - started)
        minutes, seconds = divmod(int(elapsed), 60)
        meta = {
            "Generated": _wall_time(self._clock()).isoformat(timespec="seconds"),
            "Start Time": _wall_time(started).isoformat(timespec="seconds"),
            "End Time": _wall_time(ended).isoformat(timespec="seconds"),
            "Elapsed Time": f"{elapsed:.1f} seconds ({minutes}m {seconds}s)",
        }
        rate = _estimate_rate_hz(readings)
        if rate is not None:
            meta["Sample Rate"] = f"{rate:.0f} Hz"
        meta["Data Points"] = str(len(readings))
        return meta

    # ------------------------------------------------------------------ transfer
    def _send(self, session_file: SessionFile) -> Tuple[bool, str]:
        if self._transport is None:
            logger.info("No peer paired; %s kept locally", session_file.filename)
            return False, "No paired device"
        metadata = {
            "startTime": session_file.started_at.timestamp(),
            "endTime": session_file.ended_at.timestamp(),
            "elapsedTime": session_file.elapsed_s,
            "sequence": session_file.sequence,
        }
        accepted, info = self._transport.transfer_file(session_file.path, metadata)
        if not accepted:
            logger.warning("Transfer of %s not queued: %s", session_file.filename, info)
            record = TransferRecord(session_file.filename, TransferStatus.FAILED, info)
            self._notify(SessionEvent(SessionEventKind.TRANSFER, self._state, self._elapsed_s, transfer=record))
            return False, info

        self._in_flight = session_file.filename
        record = TransferRecord(session_file.filename, TransferStatus.QUEUED)
        self._notify(SessionEvent(SessionEventKind.TRANSFER, self._state, self._elapsed_s, transfer=record))
        self._broadcast()
        return True, info

    def _on_transfer_finished(self, path: Path, error: Optional[str]) -> None:
        # Called from the transport worker thread; hop onto the dispatcher.
        self._post(self._do_transfer_finished, Path(path), error)

    def _do_transfer_finished(self, path: Path, error: Optional[str]) -> None:
        if error is None:
            record = TransferRecord(path.name, TransferStatus.DELIVERED)
            if self.config.delete_after_transfer:
                try:
                    path.unlink()
                    logger.info("Deleted %s after confirmed delivery", path.name)
                except FileNotFoundError:
                    pass
                except OSError as exc:
                    logger.error("Could not delete delivered file %s: %s", path, exc)
        else:
            logger.warning("Delivery of %s failed (%s); keeping local copy", path.name, error)
            record = TransferRecord(path.name, TransferStatus.FAILED, error)

        if self._in_flight == path.name:
            self._in_flight = None
        self._notify(SessionEvent(SessionEventKind.TRANSFER, self._state, self._elapsed_s, transfer=record))
        self._broadcast()


def _estimate_rate_hz(readings: List[Reading]) -> Optional[float]:
    """Median-interval sample rate of ``readings`` (``None`` if undefined)."""
    if len(readings) < 2:
        return None
    dt = np.diff(np.fromiter((r.timestamp for r in readings), dtype=np.float64, count=len(readings)))
    dt = dt[dt > 0]
    if dt.size == 0:
        return None
    return float(1.0 / np.median(dt))
