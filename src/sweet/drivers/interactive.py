"""Interactive CLI driver for vendors reached over an ssh terminal."""

from __future__ import annotations

import logging
import threading
from types import MappingProxyType
from typing import Callable

from sweet.core.errors import (
    AuthenticationError,
    CollectionTimeout,
    ConnectivityError,
    ExpectTimeout,
    SessionWriteError,
)
from sweet.core.models import CollectionResult, Device
from sweet.drivers.dialects import Dialect
from sweet.session.expect import Expect
from sweet.session.terminal import Session, open_session

logger = logging.getLogger(__name__)

DEFAULT_STEP_TIMEOUT = 30.0
DEFAULT_CAPTURE_CEILING = 600.0

SessionFactory = Callable[[Device, threading.Event], Session]


class InteractiveCliDriver:
    """Log in, escalate, disable paging and capture the configuration dump.

    The sequence is fixed and only the :class:`Dialect` varies per vendor:
    password prompt, password, privileged/unprivileged/re-prompt branch,
    optional escalation, pager commands, dump command, quiet-period capture,
    best-effort logout. The first failing step aborts the attempt.
    """

    def __init__(
        self,
        dialect: Dialect,
        session_factory: SessionFactory = open_session,
        *,
        step_timeout: float | None = DEFAULT_STEP_TIMEOUT,
        capture_ceiling: float | None = DEFAULT_CAPTURE_CEILING,
        max_capture: int | None = None,
    ) -> None:
        self.dialect = dialect
        self.step_timeout = step_timeout
        self.capture_ceiling = capture_ceiling
        self.max_capture = max_capture
        self._session_factory = session_factory

    def collect(self, device: Device, cancel: threading.Event | None = None) -> CollectionResult:
        cancel = cancel or threading.Event()
        log_extra = {"device": device.hostname}
        dialect = self.dialect

        logger.debug("opening %s session target=%s", dialect.name, device.target, extra=log_extra)
        session = self._session_factory(device, cancel)
        with session:
            expect = Expect(session, cancel, wait_timeout=self.step_timeout, max_capture=self.max_capture)
            self._login(device, session, expect)

            for command in dialect.pager_commands:
                self._run(session, expect, command, log_extra)

            logger.debug("executing command='%s'", dialect.dump_command, extra=log_extra)
            session.send(dialect.dump_command + "\n")
            config = expect.capture_until_quiet(dialect.idle_timeout, self.capture_ceiling)
            logger.debug("output received bytes=%d", len(config.encode("utf-8", "surrogateescape")), extra=log_extra)

            try:
                session.send(dialect.logout_command + "\n")
            except SessionWriteError as exc:
                logger.debug("logout skipped reason=\"%s\"", exc.reason, extra=log_extra)

        return MappingProxyType({"config": config})

    def _login(self, device: Device, session: Session, expect: Expect) -> None:
        dialect = self.dialect
        try:
            expect.await_literal(dialect.password_prompt)
        except ExpectTimeout as exc:
            raise ConnectivityError(f"No password prompt received. {exc.reason}", device.hostname) from exc

        session.send(device.config.get("pass", "") + "\n")
        matched = expect.await_first_of(dialect.login_candidates())
        if matched == dialect.password_prompt:
            raise AuthenticationError("Bad login password.", device.hostname)

        if matched == dialect.unprivileged_prompt and dialect.escalate_command:
            self._escalate(device, session, expect)

    def _escalate(self, device: Device, session: Session, expect: Expect) -> None:
        dialect = self.dialect
        logger.debug("escalating privilege command='%s'", dialect.escalate_command, extra={"device": device.hostname})
        try:
            session.send(f"{dialect.escalate_command}\n")
            expect.await_literal(dialect.password_prompt)
            session.send(device.config.get("enable", "") + "\n")
            matched = expect.await_first_of([dialect.password_prompt, dialect.privileged_prompt])
        except (ConnectivityError, CollectionTimeout) as exc:
            raise AuthenticationError(f"Privilege escalation failed. {exc.reason}", device.hostname) from exc

        if matched == dialect.password_prompt:
            raise AuthenticationError("Bad enable password.", device.hostname)

    def _run(self, session: Session, expect: Expect, command: str, log_extra: dict[str, str]) -> None:
        logger.debug("executing command='%s'", command, extra=log_extra)
        session.send(command + "\n")
        expect.await_literal(self.dialect.privileged_prompt)
