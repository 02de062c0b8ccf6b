"""Data models for device inventory and collection results."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Mapping

CollectionResult = Mapping[str, str]


@dataclass(slots=True)
class Device:
    """Representation of a network device.

    ``config`` is the open-ended settings bag from the inventory (``user``,
    ``pass``, ``enable``, ``ip``, ``script``, ``timeout``, ``insecure`` ...).
    ``target`` and ``timeout`` are filled in when the device is resolved for a
    collection attempt.
    """

    hostname: str
    method: str = ""
    target: str = ""
    timeout: float = 0.0
    config: dict[str, str] = field(default_factory=dict)

    def copy(self) -> Device:
        """Return a copy whose config bag can be mutated independently."""

        return replace(self, config=dict(self.config))

    @property
    def insecure(self) -> bool:
        return self.config.get("insecure", "").lower() == "true"


@dataclass(slots=True)
class Defaults:
    """Process-wide fallbacks applied to devices missing a setting."""

    method: str = ""
    user: str = ""
    password: str = ""
    enable: str = ""
