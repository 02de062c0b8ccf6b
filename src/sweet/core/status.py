"""Last-attempt outcome table shared between collectors and reporting.

All access goes through a single lock. Entries are immutable and every update
replaces a whole entry, so readers never observe a half-written status.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(frozen=True, slots=True)
class DeviceStatus:
    """Outcome of the latest collection attempt for one device."""

    hostname: str
    message: str
    last_success: datetime | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "hostname": self.hostname,
            "message": self.message,
            "last_success": self.last_success.isoformat() if self.last_success else None,
        }


class StatusRegistry:
    """Mapping of hostname to :class:`DeviceStatus` guarded by one lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, DeviceStatus] = {}

    def get(self, hostname: str) -> DeviceStatus | None:
        with self._lock:
            return self._entries.get(hostname)

    def snapshot(self) -> dict[str, DeviceStatus]:
        """Return a point-in-time copy of the whole table."""

        with self._lock:
            return dict(self._entries)

    def set(self, status: DeviceStatus) -> None:
        with self._lock:
            self._entries[status.hostname] = status

    def record_success(self, hostname: str, when: datetime | None = None) -> DeviceStatus:
        status = DeviceStatus(hostname, "success", when or datetime.now(timezone.utc))
        self.set(status)
        return status

    def record_failure(self, hostname: str, message: str) -> DeviceStatus:
        """Overwrite the entry with ``message``, keeping the last success time."""

        with self._lock:
            previous = self._entries.get(hostname)
            status = DeviceStatus(hostname, message, previous.last_success if previous else None)
            self._entries[hostname] = status
        return status

    def to_dict(self) -> dict[str, dict[str, object]]:
        return {hostname: status.to_dict() for hostname, status in sorted(self.snapshot().items())}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
