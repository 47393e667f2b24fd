"""Command-line entry point for the WristLog recorder process.

``wristlog run`` launches the session coordinator (auto-resuming a sticky
session if one was left on), starts a session, and stops it after
``--duration`` seconds or on Ctrl+C. The remaining subcommands inspect or
reset local state without touching the recorder.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence

import numpy as np

from .config.app_config import AppPaths, load_peer_config
from .config.runtime import WristLogConfig, load_config
from .core.session import SessionCoordinator
from .dataio.file_paths import list_session_files
from .dataio.log_loader import load_csv_array, read_metadata
from .remote.peer_link import build_peer_link
from .runtime.lease import TimedExecutionLease
from .sensors.recorder import SampleJournalRecorder, SampleRecorder
from .sensors.synthetic import SyntheticRecorder
from .store.settings_store import SettingsStore

logger = logging.getLogger(__name__)

DEBUG_WRISTLOG = os.getenv("WRISTLOG_DEBUG", "").lower() in {"1", "true", "yes", "on"}


def configure_logging(verbose: bool, log_dir: Optional[Path] = None) -> None:
    level = logging.DEBUG if (verbose or DEBUG_WRISTLOG) else logging.INFO
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "wristlog.log", encoding="utf-8"))
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def build_coordinator(
    paths: AppPaths,
    config: WristLogConfig,
    recorder: SampleRecorder,
) -> SessionCoordinator:
    """Wire the coordinator to its adapters using files under ``paths``."""
    lease = TimedExecutionLease(config.lease_duration_s, config.lease_expiry_warning_s)
    store = SettingsStore(paths.settings_file)
    transport = build_peer_link(load_peer_config(paths.peer_file))
    return SessionCoordinator(
        recorder,
        lease,
        store,
        paths.sessions,
        transport=transport,
        config=config,
    )


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="WristLog recording session controller")
    parser.add_argument(
        "--data-root",
        type=Path,
        default=None,
        help="Directory for settings, sessions and logs (default: $WRISTLOG_DATA_ROOT or ~/.wristlog)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML config file (default: <data-root>/wristlog.yaml)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a recording session")
    run.add_argument(
        "--simulate",
        action="store_true",
        help="Use the synthetic recorder instead of the sensor daemon journal",
    )
    run.add_argument(
        "--journal",
        type=Path,
        default=None,
        help="Sample journal written by the sensor daemon (default: <data-root>/samples.jsonl)",
    )
    run.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until Ctrl+C)",
    )

    sub.add_parser("status", help="Show sticky intent, part counter and local files")
    sub.add_parser("reset-counter", help="Reset the session part counter to 0")
    sub.add_parser("clear", help="Delete all local session files and reset the counter")

    inspect = sub.add_parser("inspect", help="Summarise a session CSV")
    inspect.add_argument("path", type=Path)
    return parser


def _cmd_run(args: argparse.Namespace, paths: AppPaths, config: WristLogConfig) -> int:
    if args.simulate:
        recorder: SampleRecorder = SyntheticRecorder(rate_hz=config.hardware_rate_hz)
    else:
        recorder = SampleJournalRecorder(args.journal or paths.data_root / "samples.jsonl")

    coordinator = build_coordinator(paths, config, recorder)
    coordinator.launch()
    try:
        state = coordinator.start()
        if not state.is_active:
            print(f"Could not start session: {state}", file=sys.stderr)
            return 1
        print(f"Recording {coordinator.current_session_filename} ({state})")
        try:
            threading.Event().wait(args.duration)
        except KeyboardInterrupt:
            logger.info("Interrupted; stopping session")
        session_file = coordinator.stop()
        if session_file is not None:
            print(f"Saved {session_file.row_count} readings to {session_file.path}")
        else:
            print("No data recorded")
    finally:
        coordinator.shutdown()
    return 0


def _cmd_status(paths: AppPaths) -> int:
    store = SettingsStore(paths.settings_file)
    files = list_session_files(paths.sessions)
    print(f"Continuous collection: {'on' if store.collection_intent else 'off'}")
    print(f"Session part counter:  {store.session_file_sequence}")
    print(f"Local session files:   {len(files)}")
    for path in files:
        print(f"  {path.name}")
    return 0


def _cmd_inspect(path: Path) -> int:
    if not path.is_file():
        print(f"No such file: {path}", file=sys.stderr)
        return 1
    for key, value in read_metadata(path).items():
        print(f"{key}: {value}")
    data = load_csv_array(path)
    print(f"Rows: {data.shape[0]}")
    if data.shape[0] == 0:
        return 0
    t = data[:, 0]
    print(f"Time range: {t[0]:.3f} .. {t[-1]:.3f} s ({t[-1] - t[0]:.1f} s)")
    magnitude = np.linalg.norm(data[:, 1:4], axis=1)
    print(f"|a| mean/max: {magnitude.mean():.3f} / {magnitude.max():.3f} g")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    paths = AppPaths(data_root=args.data_root)
    paths.ensure()
    configure_logging(args.verbose, paths.logs)
    config = load_config(args.config or paths.config_file)

    if args.command == "run":
        return _cmd_run(args, paths, config)
    if args.command == "status":
        return _cmd_status(paths)
    if args.command == "inspect":
        return _cmd_inspect(args.path)

    coordinator = build_coordinator(
        paths, config, SampleJournalRecorder(paths.data_root / "samples.jsonl")
    )
    try:
        if args.command == "reset-counter":
            coordinator.reset_part_counter()
            print("Session part counter reset")
            return 0
        if args.command == "clear":
            if coordinator.collection_intent:
                print("Continuous collection is on; stop it before clearing data", file=sys.stderr)
                return 1
            coordinator.clear_data()
            print("Local session files deleted")
            return 0
    finally:
        coordinator.shutdown()

    parser.error(f"Unknown command {args.command!r}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
