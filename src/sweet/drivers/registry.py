"""Selection of a collection driver by access method."""

from __future__ import annotations

import threading
from typing import Protocol

from sweet.core.config import EXTERNAL_METHOD
from sweet.core.errors import UnknownMethodError
from sweet.core.models import CollectionResult, Device
from sweet.drivers.dialects import DIALECTS
from sweet.drivers.external import ExternalScriptDriver
from sweet.drivers.interactive import InteractiveCliDriver


class Driver(Protocol):
    def collect(self, device: Device, cancel: threading.Event | None = None) -> CollectionResult: ...


def driver_for(method: str) -> Driver:
    """Return the driver for ``method`` or raise :class:`UnknownMethodError`."""

    if method == EXTERNAL_METHOD:
        return ExternalScriptDriver()
    dialect = DIALECTS.get(method)
    if dialect is None:
        raise UnknownMethodError(f"Unknown access method: {method}")
    return InteractiveCliDriver(dialect)
