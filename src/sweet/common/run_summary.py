"""Helpers for building and persisting machine-readable round summaries."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping


@dataclass(slots=True)
class DeviceResultData:
    """Summary of one device attempt within a round."""

    hostname: str
    method: str
    status: str
    message: str
    duration: float = 0.0
    config_changed: bool | None = None
    lines_added: int | None = None
    lines_removed: int | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "hostname": self.hostname,
            "method": self.method,
            "status": self.status,
            "message": self.message,
            "duration": round(self.duration, 3),
            "config_changed": self.config_changed,
            "lines_added": self.lines_added,
            "lines_removed": self.lines_removed,
        }


class RoundSummaryBuilder:
    """Accumulate per-round data and store it as JSON."""

    def __init__(self, *, round_id: str, timestamp: str) -> None:
        self.round_id = round_id
        self.timestamp = timestamp
        self.devices_total = 0
        self.devices_success = 0
        self.devices_failed = 0
        self.devices_timeout = 0
        self.configs_changed = 0
        self._devices: list[DeviceResultData] = []

    def set_devices_total(self, total: int) -> None:
        self.devices_total = max(0, total)

    @property
    def devices(self) -> list[DeviceResultData]:
        return list(self._devices)

    @property
    def devices_processed(self) -> int:
        return len(self._devices)

    def add_device(self, device: DeviceResultData) -> None:
        self._devices.append(device)

        if device.status == "success":
            self.devices_success += 1
        elif device.status == "timeout":
            self.devices_timeout += 1
            self.devices_failed += 1
        else:
            self.devices_failed += 1

        if device.config_changed is True:
            self.configs_changed += 1

    def summary_line(self) -> str:
        return (
            f"Finished with all {self.devices_processed} collectors: "
            f"{self.devices_success} succeeded, {self.devices_failed} failed "
            f"({self.devices_timeout} timed out), {self.configs_changed} changed."
        )

    def build(self, status: Mapping[str, object] | None = None) -> dict[str, object]:
        data: dict[str, object] = {
            "round_id": self.round_id,
            "timestamp": self.timestamp,
            "totals": {
                "devices_total": self.devices_total,
                "devices_processed": self.devices_processed,
                "devices_success": self.devices_success,
                "devices_failed": self.devices_failed,
                "devices_timeout": self.devices_timeout,
                "configs_changed": self.configs_changed,
            },
            "devices": [device.to_dict() for device in sorted(self._devices, key=lambda d: d.hostname)],
        }
        if status is not None:
            data["status"] = dict(status)
        return data

    def save(self, target: Path, logger: logging.Logger, status: Mapping[str, object] | None = None) -> Path:
        """Write the summary (and optionally the status table) to ``target``."""

        target.parent.mkdir(parents=True, exist_ok=True)
        staging = target.with_name(f".{target.name}.tmp")
        staging.write_text(
            json.dumps(self.build(status), indent=2, ensure_ascii=False), encoding="utf-8", errors="backslashreplace"
        )
        staging.replace(target)

        logger.info("round_summary_json_saved path=%s", target)
        return target
