"""Secrets management helpers.

Credentials are loaded from ``config/secrets.yml`` when present and can be
overridden via environment variables, so passwords do not have to live in
devices.yml. Environment variables take priority over the file, and the file
takes priority over the ``defaults`` section of devices.yml.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable, Mapping

import yaml

from sweet.core.errors import ConfigurationError
from sweet.core.models import Defaults, Device

logger = logging.getLogger(__name__)

ENV_PREFIX = "SWEET_SECRET_"
DEFAULT_ENV = {
    "user": "SWEET_DEFAULT_USER",
    "password": "SWEET_DEFAULT_PASS",
    "enable": "SWEET_DEFAULT_ENABLE",
}


class SecretsConfigError(ConfigurationError, ValueError):
    """Raised when the secrets file is missing required structure."""


@dataclass(slots=True)
class SecretEntry:
    """Credentials for one device or for the defaults."""

    user: str | None = None
    password: str | None = None
    enable_password: str | None = None


@dataclass(slots=True)
class Secrets:
    """Container for default and per-host secrets."""

    defaults: SecretEntry = field(default_factory=SecretEntry)
    hosts: Mapping[str, SecretEntry] = field(default_factory=dict)

    def get(self, hostname: str) -> SecretEntry | None:
        return self.hosts.get(hostname)


def _normalize_env_key(hostname: str) -> str:
    """Convert hostnames to ``UPPER_SNAKE_CASE`` for env lookup."""

    normalized = re.sub(r"[^A-Z0-9]+", "_", hostname.upper())
    return normalized.strip("_")


def _optional(entry: Mapping, key: str, context: str) -> str | None:
    value = entry.get(key)
    if value is not None and not isinstance(value, str):
        raise SecretsConfigError(f"{context} field '{key}' must be a string when provided.")
    return value


def _parse_entry(entry: object, context: str) -> SecretEntry:
    if not isinstance(entry, Mapping):
        raise SecretsConfigError(f"{context} must be a mapping.")
    return SecretEntry(
        user=_optional(entry, "user", context),
        password=_optional(entry, "pass", context),
        enable_password=_optional(entry, "enable", context),
    )


def _load_file_secrets(path: Path) -> Secrets:
    try:
        with path.open("r", encoding="utf-8") as handle:
            raw_data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise SecretsConfigError(f"Unable to read secrets file: {path}") from exc

    if not isinstance(raw_data, Mapping):
        raise SecretsConfigError("Top-level secrets.yml structure must be a mapping.")

    defaults = SecretEntry()
    if raw_data.get("defaults") is not None:
        defaults = _parse_entry(raw_data["defaults"], "Secret defaults")

    raw_hosts = raw_data.get("hosts") or {}
    if not isinstance(raw_hosts, Mapping):
        raise SecretsConfigError("Field 'hosts' must be a mapping of hostnames.")

    hosts = {str(name): _parse_entry(entry, f"Secret '{name}'") for name, entry in raw_hosts.items()}
    return Secrets(defaults=defaults, hosts=hosts)


def load_secrets(path: Path, logger: logging.Logger | None = None) -> Secrets:
    """Load secrets from the provided path. A missing file is not an error."""

    logger = logger or logging.getLogger(__name__)
    if not path.exists():
        logger.debug("Secrets file not found at %s", path, extra={"device": "-"})
        return Secrets()

    secrets = _load_file_secrets(path)
    logger.debug("Secrets file loaded path=%s hosts=%d", path, len(secrets.hosts))
    return secrets


def merge_defaults(defaults: Defaults, secrets: Secrets) -> Defaults:
    """Overlay secrets.yml defaults and ``SWEET_DEFAULT_*`` variables on ``defaults``."""

    file_defaults = secrets.defaults
    return Defaults(
        method=defaults.method,
        user=os.getenv(DEFAULT_ENV["user"]) or file_defaults.user or defaults.user,
        password=os.getenv(DEFAULT_ENV["password"]) or file_defaults.password or defaults.password,
        enable=os.getenv(DEFAULT_ENV["enable"]) or file_defaults.enable_password or defaults.enable,
    )


def apply_host_secrets(devices: Iterable[Device], secrets: Secrets) -> list[Device]:
    """Return copies of ``devices`` with per-host credentials filled in.

    Values already present in a device's config bag are kept.
    ``SWEET_SECRET_<HOSTNAME>`` overrides the host password from the file.
    """

    resolved: list[Device] = []
    for device in devices:
        entry = secrets.get(device.hostname) or SecretEntry()
        env_password = os.getenv(f"{ENV_PREFIX}{_normalize_env_key(device.hostname)}")
        config = dict(device.config)

        for key, value in (
            ("user", entry.user),
            ("pass", env_password or entry.password),
            ("enable", entry.enable_password),
        ):
            if value and not config.get(key):
                config[key] = value

        resolved.append(replace(device, config=config))
    return resolved
