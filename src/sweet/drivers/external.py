"""Driver that delegates collection to an operator-provided script."""

from __future__ import annotations

import logging
import shlex
import signal
import subprocess
import threading
import time
from types import MappingProxyType

from sweet.core.errors import AttemptCancelled, CollectionTimeout, ExternalProcessError
from sweet.core.models import CollectionResult, Device

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.2
REAP_GRACE_PERIOD = 5.0


def timeout_message(timeout: float) -> str:
    return f"Timeout collecting after {timeout:g} seconds."


class ExternalScriptDriver:
    """Run ``script_path`` and return its standard output as the configuration.

    The script races the device timeout on its own; when the timeout (or the
    cancel event) wins the script receives ``SIGINT``.
    """

    def __init__(self, poll_interval: float = DEFAULT_POLL_INTERVAL) -> None:
        self.poll_interval = poll_interval

    def collect(self, device: Device, cancel: threading.Event | None = None) -> CollectionResult:
        cancel = cancel or threading.Event()
        log_extra = {"device": device.hostname}

        script = device.config.get("script_path") or device.config.get("script")
        if not script:
            raise ExternalProcessError("No script configured.", device.hostname)
        try:
            argv = shlex.split(script)
        except ValueError as exc:
            raise ExternalProcessError(f"Unable to parse script command: {exc}", device.hostname) from exc
        if not argv:
            raise ExternalProcessError("No script configured.", device.hostname)

        logger.debug("starting script=%s", argv[0], extra=log_extra)
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="surrogateescape",
            )
        except OSError as exc:
            raise ExternalProcessError(f"Unable to start {argv[0]}: {exc}", device.hostname) from exc

        deadline = time.monotonic() + device.timeout if device.timeout > 0 else None
        while True:
            if cancel.is_set():
                self._interrupt(process, device)
                raise AttemptCancelled("Collection attempt cancelled.", device.hostname)

            wait = self.poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._interrupt(process, device)
                    raise CollectionTimeout(timeout_message(device.timeout), device.hostname)
                wait = min(wait, remaining)

            try:
                stdout, stderr = process.communicate(timeout=wait)
                break
            except subprocess.TimeoutExpired:
                continue

        if process.returncode != 0:
            message = f"{stderr.rstrip()} exit status {process.returncode}".strip()
            raise ExternalProcessError(f"Error collecting: {message}", device.hostname)

        logger.debug("script output received bytes=%d", len(stdout.encode("utf-8", "surrogateescape")), extra=log_extra)
        return MappingProxyType({"config": stdout})

    def _interrupt(self, process: subprocess.Popen, device: Device) -> None:
        try:
            process.send_signal(signal.SIGINT)
        except OSError as exc:
            raise ExternalProcessError(f"Unable to interrupt script: {exc}", device.hostname) from exc
        threading.Thread(target=_reap, args=(process, device.hostname), daemon=True).start()


def _reap(process: subprocess.Popen, hostname: str) -> None:
    try:
        process.communicate(timeout=REAP_GRACE_PERIOD)
    except subprocess.TimeoutExpired:
        logger.warning("script ignored SIGINT, killing pid=%s", process.pid, extra={"device": hostname})
        process.kill()
        process.communicate()
