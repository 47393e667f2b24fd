"""Runtime configuration for the recording session coordinator."""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping, MutableMapping

import yaml


@dataclass(slots=True)
class WristLogConfig:
    """
    Tuning knobs for how sessions are recorded, materialized, and shipped.

    The defaults assume a 50 Hz hardware recorder stored at 10 Hz.
    """

    hardware_rate_hz: float = 50.0
    downsample_factor: int = 5
    max_abs_g: float = 8.0
    csv_batch_size: int = 1000

    max_recording_duration_s: float = 12 * 3600.0
    auto_resume_delay_s: float = 1.0
    tick_interval_s: float = 1.0

    lease_duration_s: float = 3600.0
    lease_expiry_warning_s: float = 30.0

    # Remove the local CSV once the peer confirms delivery
    delete_after_transfer: bool = True

    @property
    def stored_rate_hz(self) -> float:
        return self.hardware_rate_hz / self.downsample_factor

    def sanitized(self) -> WristLogConfig:
        """Return a copy with derived limits applied."""
        lease_duration = max(1.0, float(self.lease_duration_s))
        return WristLogConfig(
            hardware_rate_hz=max(1.0, float(self.hardware_rate_hz)),
            downsample_factor=max(1, int(self.downsample_factor)),
            max_abs_g=max(0.1, float(self.max_abs_g)),
            csv_batch_size=max(1, int(self.csv_batch_size)),
            max_recording_duration_s=max(1.0, float(self.max_recording_duration_s)),
            auto_resume_delay_s=max(0.0, float(self.auto_resume_delay_s)),
            tick_interval_s=max(0.05, float(self.tick_interval_s)),
            lease_duration_s=lease_duration,
            lease_expiry_warning_s=min(
                lease_duration, max(0.0, float(self.lease_expiry_warning_s))
            ),
            delete_after_transfer=bool(self.delete_after_transfer),
        )


def _recognized_fields() -> set[str]:
    """Return the dataclass field names accepted by :class:`WristLogConfig`."""
    return {f.name for f in fields(WristLogConfig)}


def _normalize_mapping(data: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """Flatten the optional top-level ``session`` block."""
    if "session" in data and isinstance(data["session"], Mapping):
        merged: MutableMapping[str, Any] = {}
        for key, value in data.items():
            if key == "session":
                merged.update(value)
            else:
                merged[key] = value
        return merged
    return dict(data)


def config_from_mapping(data: Mapping[str, Any] | None) -> WristLogConfig:
    """Build :class:`WristLogConfig` from ``data`` (ignoring unknown keys)."""
    if not data:
        return WristLogConfig()
    normalized = _normalize_mapping(data)
    known = _recognized_fields()
    payload = {key: normalized[key] for key in normalized.keys() & known}
    return WristLogConfig(**payload).sanitized()


def load_config(path: str | Path | None) -> WristLogConfig:
    """
    Load configuration from ``path``.

    Missing files fall back to default :class:`WristLogConfig`.
    """
    if path is None:
        return WristLogConfig()
    cfg_path = Path(path)
    if not cfg_path.exists():
        return WristLogConfig()
    with cfg_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    if not isinstance(raw, Mapping):
        raise ValueError(f"Expected mapping in {cfg_path}, got {type(raw).__name__}")
    return config_from_mapping(raw)


__all__ = ["WristLogConfig", "config_from_mapping", "load_config"]
