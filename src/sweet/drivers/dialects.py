"""Vendor CLI dialects.

A dialect is the data the interactive driver needs for one vendor: its
prompts, the commands that escalate privilege and disable paging, and the
command that dumps the configuration. Supporting another vendor means adding
an entry to :data:`DIALECTS`.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Dialect:
    """Prompt strings and commands for one vendor CLI."""

    name: str
    privileged_prompt: str
    dump_command: str
    idle_timeout: float
    unprivileged_prompt: str | None = None
    password_prompt: str = "assword:"
    escalate_command: str | None = None
    pager_commands: tuple[str, ...] = ()
    logout_command: str = "exit"

    def login_candidates(self) -> list[str]:
        """Prompts that may follow the login password, most authoritative first."""

        candidates = [self.password_prompt, self.privileged_prompt]
        if self.unprivileged_prompt and self.unprivileged_prompt not in candidates:
            candidates.append(self.unprivileged_prompt)
        return candidates


CISCO = Dialect(
    name="cisco",
    privileged_prompt="#",
    unprivileged_prompt=">",
    escalate_command="enable",
    pager_commands=("terminal length 0", "terminal pager 0"),
    dump_command="show running-config",
    idle_timeout=2.0,
)

JUNOS = Dialect(
    name="junos",
    privileged_prompt=">",
    pager_commands=("set cli screen-length 0",),
    dump_command="show configuration",
    idle_timeout=2.5,
)

EOS = Dialect(
    name="eos",
    privileged_prompt="#",
    unprivileged_prompt=">",
    escalate_command="enable",
    pager_commands=("terminal length 0",),
    dump_command="show running-config",
    idle_timeout=2.0,
)

DIALECTS: dict[str, Dialect] = {dialect.name: dialect for dialect in (CISCO, JUNOS, EOS)}
