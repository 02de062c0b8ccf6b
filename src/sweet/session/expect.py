"""Expect primitives over a session's inbound flow.

Every call consumes the chunks it reads. Text following a match stays in the
buffer for the next call, text up to and including the match is discarded, so
drivers must expect patterns in the order the device prints them.
"""

from __future__ import annotations

import queue
import threading
import time
from typing import Protocol, Sequence

from sweet.core.errors import (
    AttemptCancelled,
    CaptureOverflowError,
    ConnectivityError,
    ExpectTimeout,
    SessionWriteError,
    StalledCaptureError,
)
from sweet.session.terminal import CLOSED

DEFAULT_POLL_INTERVAL = 0.2


class InboundSource(Protocol):
    inbound: queue.Queue

    @property
    def error(self) -> SessionWriteError | None: ...


class Expect:
    """Pattern waits bound to one session.

    Parameters
    ----------
    session:
        Anything exposing an ``inbound`` queue terminated by :data:`CLOSED`
        and an ``error`` attribute.
    cancel:
        Event that aborts any pending wait with :class:`AttemptCancelled`.
    wait_timeout:
        Default bound for :meth:`await_literal` and :meth:`await_first_of`;
        ``None`` waits until the stream closes.
    max_capture:
        Optional cap, in characters, on :meth:`capture_until_quiet` output.
    """

    def __init__(
        self,
        session: InboundSource,
        cancel: threading.Event | None = None,
        *,
        wait_timeout: float | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_capture: int | None = None,
    ) -> None:
        self._session = session
        self._inbound = session.inbound
        self._name = getattr(session, "name", None)
        self.cancel = cancel or getattr(session, "cancel", None) or threading.Event()
        self.wait_timeout = wait_timeout
        self.poll_interval = poll_interval
        self.max_capture = max_capture
        self._buffer = ""
        self._closed = False

    @property
    def pending(self) -> str:
        """Text received after the last match and not consumed yet."""

        return self._buffer

    def await_literal(self, pattern: str, timeout: float | None = None) -> None:
        """Block until ``pattern`` has been received."""

        self.await_first_of([pattern], timeout)

    def await_first_of(self, patterns: Sequence[str], timeout: float | None = None) -> str:
        """Block until one of ``patterns`` has been received and return it.

        Candidates are checked in the given order each time a chunk arrives,
        so an earlier candidate wins even if a later one sits earlier in the
        buffer.
        """

        if not patterns:
            raise ValueError("At least one pattern is required.")

        deadline = self._deadline(timeout)
        waiting_for = " or ".join(repr(pattern) for pattern in patterns)
        while True:
            for pattern in patterns:
                index = self._buffer.find(pattern)
                if index >= 0:
                    self._buffer = self._buffer[index + len(pattern):]
                    return pattern

            chunk = self._poll(deadline, waiting_for)
            if chunk is None:
                raise ExpectTimeout(f"Timed out waiting for {waiting_for}.", self._name)
            self._buffer += chunk

    def capture_until_quiet(self, max_idle: float, ceiling: float | None = None) -> str:
        """Return everything received until no chunk arrived for ``max_idle`` seconds.

        ``ceiling`` bounds the whole capture; a device still talking when it
        expires raises :class:`StalledCaptureError`.
        """

        captured = [self._buffer]
        size = len(self._buffer)
        self._buffer = ""

        start = time.monotonic()
        hard_deadline = start + ceiling if ceiling is not None else None
        last_chunk = start
        while True:
            idle_deadline = last_chunk + max_idle
            deadline = idle_deadline if hard_deadline is None else min(idle_deadline, hard_deadline)
            chunk = self._poll(deadline, "command output")
            if chunk is None:
                if time.monotonic() >= idle_deadline:
                    return "".join(captured)
                raise StalledCaptureError(f"Output still arriving after {ceiling:g} seconds.", self._name)

            captured.append(chunk)
            size += len(chunk)
            if self.max_capture is not None and size > self.max_capture:
                raise CaptureOverflowError(
                    f"Captured output exceeded {self.max_capture} characters.", self._name
                )
            last_chunk = time.monotonic()

    def _deadline(self, timeout: float | None) -> float | None:
        bound = timeout if timeout is not None else self.wait_timeout
        return time.monotonic() + bound if bound is not None else None

    def _poll(self, deadline: float | None, waiting_for: str) -> str | None:
        """Return the next chunk, or ``None`` once ``deadline`` has passed."""

        while True:
            if self.cancel.is_set():
                raise AttemptCancelled("Collection attempt cancelled.", self._name)
            if self._closed:
                error = self._session.error
                if error is not None:
                    raise error
                raise ConnectivityError(f"Session closed while waiting for {waiting_for}.", self._name)

            wait = self.poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                wait = min(wait, remaining)

            try:
                item = self._inbound.get(timeout=wait)
            except queue.Empty:
                continue
            if item is CLOSED:
                self._closed = True
                continue
            return item
