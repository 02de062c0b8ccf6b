"""Change detection between the stored and the freshly collected text."""

from __future__ import annotations

import difflib
from dataclasses import dataclass


@dataclass(slots=True)
class ChangeOutcome:
    """Result of comparing a new configuration with the stored one."""

    first_backup: bool
    config_changed: bool
    added: int = 0
    removed: int = 0


def count_changes(prev: str, curr: str) -> tuple[int, int]:
    """Return the number of added and removed lines between two texts."""

    added = removed = 0
    # The first two lines are the ---/+++ file headers.
    hunks = list(difflib.unified_diff(prev.splitlines(), curr.splitlines(), lineterm="", n=0))[2:]
    for line in hunks:
        if line.startswith("+"):
            added += 1
        elif line.startswith("-"):
            removed += 1
    return added, removed


def evaluate_change(previous: str | None, current: str) -> ChangeOutcome:
    """Compare ``current`` against ``previous`` (``None`` when nothing was stored)."""

    if previous is None:
        return ChangeOutcome(first_backup=True, config_changed=True)
    if previous == current:
        return ChangeOutcome(first_backup=False, config_changed=False)

    added, removed = count_changes(previous, current)
    return ChangeOutcome(first_backup=False, config_changed=True, added=added, removed=removed)
