from __future__ import annotations

import logging
from pathlib import Path

import pytest

from wristlog.cli import main
from wristlog.core.models import Reading
from wristlog.dataio.csv_writer import write_readings
from wristlog.dataio.file_paths import list_session_files
from wristlog.store.settings_store import SettingsStore


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_status_reports_intent_and_files(tmp_path: Path, capsys) -> None:
    store = SettingsStore(tmp_path / "settings.yaml")
    store.collection_intent = True
    store.session_file_sequence = 3
    sessions = tmp_path / "sessions"
    sessions.mkdir()
    (sessions / "accel_data_2025-11-05_14-30-00_part003.csv").write_text("", encoding="utf-8")

    assert main(["--data-root", str(tmp_path), "status"]) == 0

    out = capsys.readouterr().out
    assert "Continuous collection: on" in out
    assert "Session part counter:  3" in out
    assert "accel_data_2025-11-05_14-30-00_part003.csv" in out
    assert (tmp_path / "logs" / "wristlog.log").exists()


def test_reset_counter(tmp_path: Path) -> None:
    SettingsStore(tmp_path / "settings.yaml").session_file_sequence = 9

    assert main(["--data-root", str(tmp_path), "reset-counter"]) == 0
    assert SettingsStore(tmp_path / "settings.yaml").session_file_sequence == 0


def test_clear_refuses_while_collection_is_on(tmp_path: Path) -> None:
    SettingsStore(tmp_path / "settings.yaml").collection_intent = True
    sessions = tmp_path / "sessions"
    sessions.mkdir()
    kept = sessions / "accel_data_2025-11-05_14-30-00_part001.csv"
    kept.write_text("", encoding="utf-8")

    assert main(["--data-root", str(tmp_path), "clear"]) == 1
    assert kept.exists()


def test_clear_deletes_session_files(tmp_path: Path) -> None:
    sessions = tmp_path / "sessions"
    sessions.mkdir()
    (sessions / "accel_data_2025-11-05_14-30-00_part001.csv").write_text("", encoding="utf-8")
    SettingsStore(tmp_path / "settings.yaml").session_file_sequence = 1

    assert main(["--data-root", str(tmp_path), "clear"]) == 0
    assert list_session_files(sessions) == []
    assert SettingsStore(tmp_path / "settings.yaml").session_file_sequence == 0


def test_inspect_summarises_file(tmp_path: Path, capsys) -> None:
    path = tmp_path / "export.csv"
    write_readings(
        path,
        [[Reading(0.0, 0.0, 0.0, -1.0), Reading(1.0, 0.0, 0.6, -0.8)]],
        {"Data Points": 2},
    )

    assert main(["--data-root", str(tmp_path), "inspect", str(path)]) == 0

    out = capsys.readouterr().out
    assert "Data Points: 2" in out
    assert "Rows: 2" in out
    assert "|a| mean/max: 1.000 / 1.000 g" in out


def test_inspect_missing_file(tmp_path: Path) -> None:
    assert main(["--data-root", str(tmp_path), "inspect", str(tmp_path / "nope.csv")]) == 1


def test_simulated_run_saves_a_session(tmp_path: Path, capsys) -> None:
    assert main(["--data-root", str(tmp_path), "run", "--simulate", "--duration", "0.5"]) == 0

    files = list_session_files(tmp_path / "sessions")
    assert len(files) == 1
    assert files[0].name.endswith("_part001.csv")
    assert "Saved" in capsys.readouterr().out
    store = SettingsStore(tmp_path / "settings.yaml")
    assert store.collection_intent is False
    assert store.session_file_sequence == 1


def test_run_without_journal_fails(tmp_path: Path, capsys) -> None:
    assert main(["--data-root", str(tmp_path), "run", "--duration", "0.1"]) == 1
    assert "Accelerometer recorder not available" in capsys.readouterr().err
