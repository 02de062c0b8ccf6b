"""Collection rounds across the device inventory.

A round resolves every device against the process-wide defaults, then runs at
most ``concurrency`` attempts at a time. Each attempt races its driver against
the device timeout; a driver that loses the race has its cancel event set so
it tears down its own session or subprocess. Per-device errors end up in the
status registry. Only :class:`FatalError` leaves :meth:`Scheduler.run_round`.
"""

from __future__ import annotations

import logging
import os
import shlex
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Protocol, Sequence

from sweet.common.diff import ChangeOutcome
from sweet.common.run_summary import DeviceResultData, RoundSummaryBuilder
from sweet.core.config import EXTERNAL_METHOD, CollectionOptions
from sweet.core.errors import CollectionError, CollectionTimeout, ConfigurationError
from sweet.core.models import CollectionResult, Device
from sweet.core.status import StatusRegistry
from sweet.drivers.external import timeout_message
from sweet.drivers.registry import Driver, driver_for


class ConfigSink(Protocol):
    def save(self, hostname: str, content: str) -> ChangeOutcome | None: ...


def _parse_timeout(value: str, hostname: str) -> float:
    try:
        timeout = float(value)
    except ValueError as exc:
        raise ConfigurationError(f"Bad timeout setting {value} for host {hostname}") from exc
    if timeout <= 0:
        raise ConfigurationError(f"Bad timeout setting {value} for host {hostname}")
    return timeout


def _script_path(script: str, executable_dir: Path, hostname: str) -> str:
    try:
        parts = shlex.split(script)
    except ValueError as exc:
        raise ConfigurationError(f"Bad script setting for host {hostname}: {exc}") from exc
    if not parts:
        raise ConfigurationError(f"No script specified for {hostname}.")
    if not os.path.isabs(parts[0]):
        parts[0] = str(executable_dir / parts[0])
    return shlex.join(parts)


def resolve_device(device: Device, options: CollectionOptions) -> Device:
    """Return a private copy of ``device`` with every required setting filled in.

    Raises :class:`ConfigurationError` when a setting is missing on the device
    and has no process-wide default.
    """

    resolved = device.copy()
    config = resolved.config
    defaults = options.defaults
    hostname = resolved.hostname

    if not resolved.method:
        if not defaults.method:
            raise ConfigurationError(f"No method specified for {hostname} and default-method not defined.")
        resolved.method = defaults.method

    resolved.timeout = options.timeout
    if config.get("timeout"):
        resolved.timeout = _parse_timeout(config["timeout"], hostname)

    if not config.get("user"):
        if not defaults.user:
            raise ConfigurationError(f"No user specified for {hostname} and default-user not defined.")
        config["user"] = defaults.user
    if not config.get("pass"):
        if not defaults.password:
            raise ConfigurationError(f"No pass specified for {hostname} and default-pass not defined.")
        config["pass"] = defaults.password
    if not config.get("enable"):
        config["enable"] = defaults.enable or config["pass"]

    resolved.target = config.get("ip") or hostname
    if options.insecure:
        config["insecure"] = "true"

    if resolved.method == EXTERNAL_METHOD:
        if not config.get("script"):
            raise ConfigurationError(f"No script specified for {hostname}.")
        config["script_path"] = _script_path(config["script"], options.executable_dir, hostname)

    return resolved


class _RoundTokens:
    """Cancel events of the attempts running in one round."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: set[threading.Event] = set()
        self._aborted = False

    def acquire(self) -> threading.Event:
        token = threading.Event()
        with self._lock:
            if self._aborted:
                token.set()
            self._tokens.add(token)
        return token

    def release(self, token: threading.Event) -> None:
        with self._lock:
            self._tokens.discard(token)

    def abort(self) -> None:
        with self._lock:
            self._aborted = True
            for token in self._tokens:
                token.set()


class Scheduler:
    """Run collection rounds with bounded concurrency."""

    def __init__(
        self,
        options: CollectionOptions,
        status: StatusRegistry,
        store: ConfigSink,
        driver_factory: Callable[[str], Driver] = driver_for,
        logger: logging.Logger | None = None,
    ) -> None:
        self.options = options
        self.status = status
        self.store = store
        self.logger = logger or logging.getLogger(__name__)
        self._driver_factory = driver_factory

    def run_round(self, devices: Sequence[Device]) -> RoundSummaryBuilder:
        """Collect from every device once and return the round summary."""

        resolved = [resolve_device(device, self.options) for device in devices]

        now = datetime.now(timezone.utc)
        summary = RoundSummaryBuilder(round_id=now.strftime("%Y%m%d_%H%M%S"), timestamp=now.isoformat())
        summary.set_devices_total(len(resolved))
        self.logger.info(
            "Starting %d collectors. [concurrency=%d]", len(resolved), self.options.concurrency
        )
        if not resolved:
            self.logger.info(summary.summary_line())
            return summary

        tokens = _RoundTokens()
        workers = min(self.options.concurrency, len(resolved))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="collector") as pool:
            futures = [pool.submit(self._attempt, device, tokens) for device in resolved]
            try:
                for future in as_completed(futures):
                    summary.add_device(future.result())
            except BaseException:
                tokens.abort()
                for future in futures:
                    future.cancel()
                raise

        self.logger.info(summary.summary_line())
        return summary

    def _attempt(self, device: Device, tokens: _RoundTokens) -> DeviceResultData:
        hostname = device.hostname
        log_extra = {"device": hostname}
        started = time.monotonic()
        self.logger.info("Collector started method=%s target=%s", device.method, device.target, extra=log_extra)

        cancel = tokens.acquire()
        try:
            result = self._race(device, cancel)
            config = result.get("config")
            if config is None:
                raise CollectionError("Config missing from collection results.", hostname)
        except CollectionError as exc:
            if exc.hostname is None:
                exc.hostname = hostname
            self.logger.error("%s", exc, extra=log_extra)
            self.status.record_failure(hostname, exc.reason)
            return DeviceResultData(
                hostname=hostname,
                method=device.method,
                status="timeout" if isinstance(exc, CollectionTimeout) else "failed",
                message=exc.reason,
                duration=time.monotonic() - started,
            )
        except Exception as exc:
            self.logger.exception("Collector crashed.", extra=log_extra)
            message = f"Collector crashed: {exc}"
            self.status.record_failure(hostname, message)
            return DeviceResultData(
                hostname=hostname,
                method=device.method,
                status="failed",
                message=message,
                duration=time.monotonic() - started,
            )
        finally:
            tokens.release(cancel)

        change = self.store.save(hostname, config)
        self.status.record_success(hostname)
        size = len(config.encode("utf-8", "surrogateescape"))
        self.logger.info("Collection succeeded bytes=%d", size, extra=log_extra)
        return DeviceResultData(
            hostname=hostname,
            method=device.method,
            status="success",
            message="success",
            duration=time.monotonic() - started,
            config_changed=change.config_changed if change else None,
            lines_added=change.added if change else None,
            lines_removed=change.removed if change else None,
        )

    def _race(self, device: Device, cancel: threading.Event) -> CollectionResult:
        """Run the driver on its own thread and wait at most ``device.timeout``."""

        driver = self._driver_factory(device.method)
        outcome: Future = Future()

        def run() -> None:
            if not outcome.set_running_or_notify_cancel():
                return
            try:
                outcome.set_result(driver.collect(device, cancel))
            except Exception as exc:
                outcome.set_exception(exc)

        threading.Thread(target=run, name=f"driver-{device.hostname}", daemon=True).start()
        try:
            return outcome.result(timeout=device.timeout)
        except FuturesTimeoutError:
            # The driver may have finished between the wait expiring and this check.
            if outcome.done():
                return outcome.result()
            cancel.set()
            raise CollectionTimeout(timeout_message(device.timeout), device.hostname) from None
