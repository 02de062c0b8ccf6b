"""Configuration helpers for sweet."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any, Mapping

import yaml

from sweet.core.errors import ConfigurationError
from sweet.core.models import Defaults, Device

EXTERNAL_METHOD = "external"

DEFAULT_INTERVAL = 0.0
DEFAULT_TIMEOUT = 60.0
DEFAULT_CONCURRENCY = 30

_FLAG_WORDS = {"true": True, "yes": True, "on": True, "false": False, "no": False, "off": False}


class DevicesConfigError(ConfigurationError, ValueError):
    """Raised when devices.yml cannot be parsed or validated."""


@dataclass(slots=True)
class Inventory:
    """Devices and process-wide defaults loaded from devices.yml."""

    devices: list[Device]
    defaults: Defaults = field(default_factory=Defaults)


@dataclass(slots=True)
class CollectionOptions:
    """Settings for collection rounds, resolved from CLI and local.yml."""

    interval: float = DEFAULT_INTERVAL
    timeout: float = DEFAULT_TIMEOUT
    concurrency: int = DEFAULT_CONCURRENCY
    insecure: bool = False
    executable_dir: Path = Path(".")
    git_push: bool = False
    status_file: Path | None = None
    defaults: Defaults = field(default_factory=Defaults)


def _require_string(mapping: Mapping[str, Any], field_name: str, context: str) -> str:
    value = mapping.get(field_name)
    if value is None or value == "":
        raise DevicesConfigError(f"{context}: missing required field '{field_name}'.")
    if not isinstance(value, str):
        raise DevicesConfigError(f"{context}: field '{field_name}' must be a string.")
    return value


def _optional_string(mapping: Mapping[str, Any], field_name: str, context: str) -> str:
    value = mapping.get(field_name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise DevicesConfigError(f"{context}: field '{field_name}' must be a string.")
    return value


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_device(raw_device: Mapping[str, Any], context: str) -> Device:
    hostname = _require_string(raw_device, "hostname", context)
    method = _optional_string(raw_device, "method", f"{context} '{hostname}'")

    config: dict[str, str] = {}
    for key, value in raw_device.items():
        if key in ("hostname", "method") or value is None:
            continue
        if isinstance(value, (Mapping, list)):
            raise DevicesConfigError(f"{context} '{hostname}': field '{key}' must be a scalar value.")
        config[str(key)] = _stringify(value)

    if method == EXTERNAL_METHOD and not config.get("script"):
        raise DevicesConfigError(f"{context} '{hostname}': external devices require a 'script' field.")

    return Device(hostname=hostname, method=method, config=config)


def _parse_defaults(raw_defaults: Any) -> Defaults:
    if raw_defaults is None:
        return Defaults()
    if not isinstance(raw_defaults, Mapping):
        raise DevicesConfigError("The 'defaults' field must be a mapping.")

    context = "defaults"
    return Defaults(
        method=_optional_string(raw_defaults, "method", context),
        user=_optional_string(raw_defaults, "user", context),
        password=_optional_string(raw_defaults, "pass", context),
        enable=_optional_string(raw_defaults, "enable", context),
    )


def load_inventory(path: Path, logger: logging.Logger | None = None) -> Inventory:
    """Load and validate devices.yml.

    Structural problems raise :class:`DevicesConfigError`; a malformed device
    entry is logged and skipped so the remaining devices are still collected.
    """

    logger = logger or logging.getLogger(__name__)

    if not path.exists():
        raise DevicesConfigError(f"Devices inventory not found: {path}")

    try:
        with path.open("r", encoding="utf-8") as handle:
            raw_data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise DevicesConfigError(f"Unable to parse {path}: {exc}") from exc

    if not isinstance(raw_data, dict):
        raise DevicesConfigError("Top-level devices.yml structure must be a mapping.")

    defaults = _parse_defaults(raw_data.get("defaults"))

    raw_devices = raw_data.get("devices")
    if raw_devices is None:
        raise DevicesConfigError("devices.yml must contain a 'devices' list.")
    if not isinstance(raw_devices, list):
        raise DevicesConfigError("The 'devices' field must be a list of device entries.")

    devices: list[Device] = []
    seen_hostnames: set[str] = set()

    for index, raw_device in enumerate(raw_devices, start=1):
        context = f"device #{index}"
        if not isinstance(raw_device, dict):
            logger.error("%s: each device must be a mapping.", context, extra={"device": "-"})
            continue

        log_extra = {"device": raw_device.get("hostname") or "-"}
        try:
            device = _parse_device(raw_device, context)
        except DevicesConfigError as exc:
            logger.error("%s", exc, extra=log_extra)
            continue

        if device.hostname in seen_hostnames:
            logger.error(
                "%s '%s': hostname must be unique. Duplicate ignored.",
                context,
                device.hostname,
                extra=log_extra,
            )
            continue

        seen_hostnames.add(device.hostname)
        devices.append(device)
        logger.debug(
            "device=%s method=%s loaded from devices.yml",
            device.hostname,
            device.method or "-",
            extra={"device": device.hostname},
        )

    return Inventory(devices=devices, defaults=defaults)


def _collection_section(local_cfg: Mapping[str, Any] | None) -> Mapping[str, Any]:
    if not isinstance(local_cfg, Mapping):
        return {}
    section = local_cfg.get("collection")
    return section if isinstance(section, Mapping) else {}


def _pick(cli_value: Any, section: Mapping[str, Any], key: str, default: Any) -> Any:
    if cli_value is not None:
        return cli_value
    value = section.get(key)
    return default if value is None else value


def _as_number(value: Any, name: str, minimum: float, strict: bool) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid {name} setting: {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid {name} setting: {value!r}") from exc
    if number < minimum or (strict and number == minimum):
        raise ConfigurationError(f"Invalid {name} setting: {value!r}")
    return number


def _as_flag(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    word = value.strip().lower() if isinstance(value, str) else None
    if word not in _FLAG_WORDS:
        raise ConfigurationError(f"Invalid {name} setting: {value!r}")
    return _FLAG_WORDS[word]


def resolve_options(
    local_cfg: Mapping[str, Any] | None,
    *,
    devices_path: Path,
    defaults: Defaults | None = None,
    interval: float | None = None,
    timeout: float | None = None,
    concurrency: int | None = None,
    insecure: bool | None = None,
    git_push: bool | None = None,
    status_file: str | Path | None = None,
) -> CollectionOptions:
    """Build collection options with priority: CLI > local.yml > defaults."""

    section = _collection_section(local_cfg)

    executable_dir = section.get("executable_dir")
    executable_path = Path(executable_dir).expanduser() if executable_dir else devices_path.resolve().parent

    status_value = _pick(status_file, section, "status_file", None)

    return CollectionOptions(
        interval=_as_number(_pick(interval, section, "interval", DEFAULT_INTERVAL), "interval", 0, False),
        timeout=_as_number(_pick(timeout, section, "timeout", DEFAULT_TIMEOUT), "timeout", 0, True),
        concurrency=int(
            _as_number(_pick(concurrency, section, "concurrency", DEFAULT_CONCURRENCY), "concurrency", 1, False)
        ),
        insecure=_as_flag(_pick(insecure or None, section, "insecure", False), "insecure"),
        executable_dir=executable_path,
        git_push=_as_flag(_pick(git_push or None, section, "git_push", False), "git_push"),
        status_file=Path(status_value).expanduser() if status_value else None,
        defaults=defaults or Defaults(),
    )
