"""Scripted stand-in for a device session used by the driver tests."""

from __future__ import annotations

import queue
import sys
import threading
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from sweet.core.errors import SessionWriteError
from sweet.session.terminal import CLOSED


class FakeSession:
    """Session whose device replies come from a script.

    ``script`` is a list of ``(expected_text, reply_chunks)`` steps consumed
    one per ``send()``. Sends past the end of the script are only recorded.
    """

    def __init__(
        self,
        greeting: list[str] | tuple[str, ...] = (),
        script: list[tuple[str, list[str]]] | None = None,
        name: str = "r1",
        fail_on: str | None = None,
    ) -> None:
        self.inbound: queue.Queue[object] = queue.Queue()
        self.name = name
        self.cancel = threading.Event()
        self.error: SessionWriteError | None = None
        self.sent: list[str] = []
        self.closed = False
        self.fail_on = fail_on
        self._script = list(script or [])
        self.emit(*greeting)

    def emit(self, *chunks: str) -> None:
        for chunk in chunks:
            self.inbound.put(chunk)

    def end(self) -> None:
        self.inbound.put(CLOSED)

    def send(self, text: str) -> None:
        if self.closed:
            raise SessionWriteError("Session is closed.", self.name)
        if self.fail_on is not None and text == self.fail_on:
            self.error = SessionWriteError("Session write failed: broken pipe", self.name)
            self.end()
            raise self.error

        self.sent.append(text)
        if self._script:
            expected, chunks = self._script.pop(0)
            if text != expected:
                raise AssertionError(f"expected {expected!r} to be sent, got {text!r}")
            self.emit(*chunks)

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> FakeSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def factory(self):
        """Return a session factory handing out this session."""

        def _open(device, cancel):
            self.cancel = cancel
            return self

        return _open
