"""Pseudo-terminal backed remote shell session.

A :class:`Session` runs one subprocess (normally ``ssh``) on a pty so the
remote side emits its interactive prompts, and exposes it as two flows:
``inbound`` receives text chunks in arrival order followed by :data:`CLOSED`,
``outbound`` takes strings that a writer thread passes verbatim to the
terminal.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Sequence

import pexpect

from sweet.core.errors import ConnectivityError, SessionWriteError
from sweet.core.models import Device

logger = logging.getLogger(__name__)

CLOSED = object()
"""End-of-stream marker published once on ``Session.inbound``."""

DEFAULT_READ_SIZE = 4096


class Session:
    """Interactive subprocess attached to a pseudo-terminal."""

    def __init__(
        self,
        argv: Sequence[str],
        cancel: threading.Event | None = None,
        *,
        encoding: str = "utf-8",
        read_size: int = DEFAULT_READ_SIZE,
        name: str = "-",
    ) -> None:
        if not argv:
            raise ValueError("Session command must not be empty.")

        self.argv = list(argv)
        self.name = name
        self.cancel = cancel or threading.Event()
        self.read_size = read_size
        self.inbound: queue.Queue[object] = queue.Queue()
        self.outbound: queue.Queue[str | None] = queue.Queue()

        self._error: SessionWriteError | None = None
        self._eof = threading.Event()
        self._close_lock = threading.Lock()
        self._terminated = False
        log_extra = {"device": name}

        try:
            self._child = pexpect.spawn(
                self.argv[0], self.argv[1:], encoding=encoding, codec_errors="surrogateescape", timeout=None
            )
        except (pexpect.ExceptionPexpect, OSError) as exc:
            raise ConnectivityError(f"Unable to start session: {exc}", name) from exc

        logger.debug("session started pid=%s command=%s", self._child.pid, self.argv[0], extra=log_extra)

        self._reader = threading.Thread(target=self._read_loop, name=f"session-read-{name}", daemon=True)
        self._writer = threading.Thread(target=self._write_loop, name=f"session-write-{name}", daemon=True)
        self._reader.start()
        self._writer.start()

    @property
    def closed(self) -> bool:
        """True once the inbound flow has ended."""

        return self._eof.is_set()

    @property
    def error(self) -> SessionWriteError | None:
        return self._error

    def send(self, text: str) -> None:
        """Queue ``text`` for writing to the terminal."""

        if self._error is not None:
            raise self._error
        if self._terminated or self._eof.is_set():
            raise SessionWriteError("Session is closed.", self.name)
        self.outbound.put(text)

    def close(self) -> None:
        """Stop the writer and terminate the subprocess. Safe to call twice."""

        with self._close_lock:
            if self._terminated:
                return
            self._terminated = True

        self.outbound.put(None)
        try:
            if self._child.isalive():
                self._child.terminate(force=True)
        except (pexpect.ExceptionPexpect, OSError) as exc:
            logger.warning("session terminate failed reason=\"%s\"", exc, extra={"device": self.name})

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _read_loop(self) -> None:
        try:
            while True:
                try:
                    chunk = self._child.read_nonblocking(self.read_size, timeout=None)
                except (pexpect.ExceptionPexpect, OSError, ValueError):
                    break
                if chunk:
                    self.inbound.put(chunk)
        finally:
            self._eof.set()
            self.inbound.put(CLOSED)
            self.outbound.put(None)
            try:
                self._child.close(force=True)
            except (pexpect.ExceptionPexpect, OSError) as exc:
                logger.debug("session close failed reason=\"%s\"", exc, extra={"device": self.name})
            logger.debug("session ended exitstatus=%s", self._child.exitstatus, extra={"device": self.name})

    def _write_loop(self) -> None:
        while True:
            text = self.outbound.get()
            if text is None:
                return
            try:
                self._child.send(text)
            except (OSError, ValueError) as exc:
                self._error = SessionWriteError(f"Session write failed: {exc}", self.name)
                logger.debug("session write failed reason=\"%s\"", exc, extra={"device": self.name})
                self.close()
                return


def ssh_command(device: Device) -> list[str]:
    """Build the ``ssh`` command line for a resolved device."""

    argv = ["ssh"]
    if device.insecure:
        argv.append("-oStrictHostKeyChecking=no")
    port = device.config.get("port")
    if port:
        argv.extend(["-p", str(port)])
    argv.append(f"{device.config['user']}@{device.target}")
    return argv


def open_session(device: Device, cancel: threading.Event | None = None) -> Session:
    """Open an interactive ssh session to ``device``."""

    return Session(ssh_command(device), cancel, name=device.hostname)
