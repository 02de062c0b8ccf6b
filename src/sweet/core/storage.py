"""Storage helpers for the git-tracked configuration workspace."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Any, Mapping

import yaml

from sweet.common.diff import ChangeOutcome, evaluate_change
from sweet.core.errors import StorageError

PROJECT_ROOT = Path(__file__).resolve().parents[3]
FALLBACK_WORKSPACE = PROJECT_ROOT / "workspace"
DEFAULT_LOCAL_CONFIG = PROJECT_ROOT / "config" / "local.yml"

COMMIT_PREFIX = "Sweet commit:\n"


class ConfigStore:
    """Write collected configurations into a git working tree.

    Each device is stored as a single file named after its hostname. Only
    complete captures are ever written.
    """

    def __init__(self, workspace: Path, logger: logging.Logger | None = None) -> None:
        self.workspace = workspace
        self.logger = logger or logging.getLogger(__name__)

    def path_for(self, hostname: str) -> Path:
        if not hostname or hostname in (".", "..") or "/" in hostname or os.sep in hostname:
            raise StorageError(f"Hostname cannot be used as a file name: {hostname!r}")
        return self.workspace / hostname

    def save(self, hostname: str, content: str) -> ChangeOutcome:
        """Persist ``content`` for ``hostname`` and report what changed.

        Bytes that were not valid UTF-8 on the wire arrive as surrogate escapes
        and are written back out unchanged.
        """

        target = self.path_for(hostname)
        staging = target.with_name(f".{hostname}.tmp")
        try:
            previous = (
                target.read_text(encoding="utf-8", errors="surrogateescape") if target.exists() else None
            )
            staging.write_text(content, encoding="utf-8", errors="surrogateescape")
            os.replace(staging, target)
        except OSError as exc:
            raise StorageError(f"Error saving config to workspace: {exc}") from exc

        outcome = evaluate_change(previous, content)
        log_extra = {"device": hostname}
        self.logger.debug("saved path=%s", target, extra=log_extra)
        if outcome.first_backup:
            self.logger.info("first_backup=true", extra=log_extra)
        elif outcome.config_changed:
            self.logger.info(
                "config_changed=true added=%d removed=%d", outcome.added, outcome.removed, extra=log_extra
            )
        return outcome

    def ensure_repository(self) -> None:
        """Create the workspace and initialise a git repository in it if needed."""

        try:
            self.workspace.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Unable to create workspace {self.workspace}: {exc}") from exc

        if (self.workspace / ".git").exists():
            return

        self._git("init")
        self._git("config", "user.name", "sweet")
        self._git("config", "user.email", "sweet@localhost")
        self.logger.info("initialized git repository in %s", self.workspace)

    def commit(self, push: bool = False) -> bool:
        """Commit pending changes. Returns ``True`` when a commit was made."""

        status_text = self._git("status", "-s")
        if not status_text.strip():
            self.logger.info("No changes detected.")
            return False

        self._git("add", ".")
        self._git("commit", "-a", "-m", COMMIT_PREFIX + status_text)
        if push:
            try:
                self._git("push")
            except StorageError as exc:
                self.logger.error("Git push failed, continuing anyway: %s", exc)

        self.logger.info("Committed changes to git.")
        return True

    def _git(self, *args: str) -> str:
        try:
            completed = subprocess.run(
                ["git", *args], cwd=self.workspace, capture_output=True, text=True, check=True
            )
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or exc.stdout or "").strip() or f"exit status {exc.returncode}"
            raise StorageError(f"Git {args[0]} error: {detail}") from exc
        except OSError as exc:
            raise StorageError(f"Git {args[0]} error: {exc}") from exc
        return completed.stdout


def load_local_config(
    config_path: str | Path | None = None, logger: logging.Logger | None = None
) -> Mapping[str, Any] | None:
    """Load local.yml if it exists and return the mapping."""

    config_file = Path(config_path) if config_path else DEFAULT_LOCAL_CONFIG
    if not config_file.is_absolute():
        config_file = PROJECT_ROOT / config_file

    if logger:
        logger.debug("loading local config from %s", config_file)

    if not config_file.exists():
        if logger:
            logger.debug("local config not found at %s", config_file)
        return None

    try:
        with config_file.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        if logger:
            logger.warning("unable to read local config file=%s reason=\"%s\"", config_file, exc)
        return None

    return data if isinstance(data, Mapping) else None


def _check_writable(path: Path) -> tuple[bool, str | None]:
    """Try to create and write to the directory, returning success and reason."""

    try:
        path.mkdir(parents=True, exist_ok=True)
        test_file = path / ".write-test"
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
        test_file.unlink(missing_ok=True)
        return True, None
    except OSError as exc:
        return False, str(exc)


def _extract_local_workspace(local_cfg: Mapping[str, Any] | None) -> Path | None:
    """Return collection.workspace from local.yml mapping when present."""

    if not isinstance(local_cfg, Mapping):
        return None

    collection_section = local_cfg.get("collection")
    if not isinstance(collection_section, Mapping):
        return None

    directory_value = collection_section.get("workspace")
    if not directory_value:
        return None

    candidate = Path(directory_value).expanduser()
    if not candidate.is_absolute():
        candidate = PROJECT_ROOT / candidate
    return candidate


def resolve_workspace(
    cli_workspace: str | Path | None, local_cfg: Mapping[str, Any] | None, logger: logging.Logger
) -> Path:
    """Determine the workspace directory with priority: CLI > local.yml > fallback.

    An explicitly configured workspace that cannot be written is fatal, since
    falling back would split the git history.
    """

    candidates: list[tuple[str, Path]] = []
    if cli_workspace:
        candidates.append(("cli", Path(cli_workspace).expanduser()))

    local_candidate = _extract_local_workspace(local_cfg)
    if local_candidate:
        candidates.append(("local_yml", local_candidate))

    source, candidate = candidates[0] if candidates else ("fallback", FALLBACK_WORKSPACE)
    ok, reason = _check_writable(candidate)
    if not ok:
        logger.error('workspace source=%s path=%s reason="%s"', source, candidate, reason or "unavailable")
        raise StorageError(f"Workspace is not writable: {candidate}")

    logger.info("workspace source=%s path=%s", source, candidate)
    return candidate
