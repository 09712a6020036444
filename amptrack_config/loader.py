"""
Settings loader (``amptrack_config.loader``).

Responsibility
--------------
Reads YAML (PyYAML ``safe_load``), merges an optional override file over
the packaged defaults, applies ``AMPTRACK_*`` environment overrides and
parses the result into ``amptrack_config.schema`` dataclasses.

Failure modes
-------------
* Missing override file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrongly typed values  -> ``ValueError`` naming the key.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import yaml

from amptrack_config.schema import (
    AppSettings,
    BusinessProfileSettings,
    DatabaseSettings,
    LoggingSettings,
    NotificationSettings,
    NumberingSettings,
    PaymentSettings,
    ProjectSettings,
    RenderingSettings,
)

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

ENV_PREFIX = "AMPTRACK_"

# environment variable -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "AMPTRACK_DATABASE_URL": ("database", "url"),
    "AMPTRACK_DATABASE_ECHO": ("database", "echo"),
    "AMPTRACK_LOG_LEVEL": ("logging", "level"),
    "AMPTRACK_STORAGE_DIR": ("rendering", "storage_dir"),
    "AMPTRACK_RENDER_TIMEOUT": ("rendering", "timeout_seconds"),
    "AMPTRACK_RENDER_ON_CREATE": ("rendering", "render_on_create"),
    "AMPTRACK_AWS_REGION": ("notification", "aws_region"),
    "AMPTRACK_AWS_ACCESS_KEY_ID": ("notification", "aws_access_key_id"),
    "AMPTRACK_AWS_SECRET_ACCESS_KEY": ("notification", "aws_secret_access_key"),
    "AMPTRACK_FROM_EMAIL": ("notification", "from_email"),
    "AMPTRACK_STRIPE_SECRET_KEY": ("payments", "secret_key"),
    "AMPTRACK_STRIPE_PUBLISHABLE_KEY": ("payments", "publishable_key"),
    "AMPTRACK_STRIPE_WEBHOOK_SECRET": ("payments", "webhook_secret"),
    "AMPTRACK_CURRENCY": ("payments", "currency"),
    "AMPTRACK_BUSINESS_NAME": ("business_profile", "name"),
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML mapping.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``; nested mappings merge."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    result = {key: dict(value) if isinstance(value, Mapping) else value for key, value in data.items()}
    for var, (section, key) in ENV_OVERRIDES.items():
        if var in environ and environ[var] != "":
            result.setdefault(section, {})[key] = environ[var]
    return result


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("1", "true", "yes", "on"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{key} must be a boolean, got {value!r}")


def _as_number(value: Any, key: str, kind: type = float):
    if isinstance(value, bool):
        raise ValueError(f"{key} must be a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be a number, got {value!r}") from None


def _as_str_or_none(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def parse_settings(data: Mapping[str, Any]) -> AppSettings:
    db = data.get("database") or {}
    numbering = data.get("numbering") or {}
    rendering = data.get("rendering") or {}
    notification = data.get("notification") or {}
    payments = data.get("payments") or {}
    profile = data.get("business_profile") or {}
    projects = data.get("projects") or {}
    logging_section = data.get("logging") or {}

    defaults = AppSettings()
    return AppSettings(
        database=DatabaseSettings(
            url=str(db.get("url", defaults.database.url)),
            echo=_as_bool(db.get("echo", False), "database.echo"),
            pool_size=_as_number(db.get("pool_size", 20), "database.pool_size", int),
            max_overflow=_as_number(db.get("max_overflow", 10), "database.max_overflow", int),
            pool_timeout=_as_number(db.get("pool_timeout", 30), "database.pool_timeout", int),
        ),
        numbering=NumberingSettings(
            prefixes={
                **defaults.numbering.prefixes,
                **{str(k): str(v) for k, v in (numbering.get("prefixes") or {}).items()},
            },
        ),
        rendering=RenderingSettings(
            enabled=_as_bool(rendering.get("enabled", True), "rendering.enabled"),
            timeout_seconds=_as_number(
                rendering.get("timeout_seconds", 30), "rendering.timeout_seconds"
            ),
            render_on_create=_as_bool(
                rendering.get("render_on_create", True), "rendering.render_on_create"
            ),
            storage_dir=str(rendering.get("storage_dir", defaults.rendering.storage_dir)),
            template_dir=_as_str_or_none(rendering.get("template_dir")),
        ),
        notification=NotificationSettings(
            enabled=_as_bool(notification.get("enabled", True), "notification.enabled"),
            aws_region=str(notification.get("aws_region", "us-east-1")),
            aws_access_key_id=_as_str_or_none(notification.get("aws_access_key_id")),
            aws_secret_access_key=_as_str_or_none(notification.get("aws_secret_access_key")),
            from_email=str(notification.get("from_email", defaults.notification.from_email)),
            attach_pdf=_as_bool(notification.get("attach_pdf", True), "notification.attach_pdf"),
        ),
        payments=PaymentSettings(
            enabled=_as_bool(payments.get("enabled", True), "payments.enabled"),
            currency=str(payments.get("currency", "usd")).lower(),
            secret_key=_as_str_or_none(payments.get("secret_key")),
            publishable_key=_as_str_or_none(payments.get("publishable_key")),
            webhook_secret=_as_str_or_none(payments.get("webhook_secret")),
            api_base=str(payments.get("api_base", defaults.payments.api_base)).rstrip("/"),
            timeout_seconds=_as_number(payments.get("timeout_seconds", 20), "payments.timeout_seconds"),
            webhook_tolerance_seconds=_as_number(
                payments.get("webhook_tolerance_seconds", 300),
                "payments.webhook_tolerance_seconds",
                int,
            ),
        ),
        business_profile=BusinessProfileSettings(
            name=str(profile.get("name", defaults.business_profile.name)),
            address=str(profile.get("address") or ""),
            phone=str(profile.get("phone") or ""),
            email=str(profile.get("email") or ""),
            website=str(profile.get("website") or ""),
            logo_url=_as_str_or_none(profile.get("logo_url")),
            footer_lines=tuple(str(line) for line in profile.get("footer_lines") or ()),
        ),
        projects=ProjectSettings(
            default_folders=tuple(
                str(name)
                for name in projects.get("default_folders", defaults.projects.default_folders)
            ),
        ),
        logging=LoggingSettings(level=str(logging_section.get("level", "INFO")).upper()),
    )


def load_settings(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppSettings:
    """Defaults, then ``config_path``, then environment overrides."""
    data = load_yaml_file(DEFAULTS_PATH)
    if config_path is not None:
        data = deep_merge(data, load_yaml_file(Path(config_path)))
    if environ is not None:
        data = apply_env_overrides(data, environ)
    return parse_settings(data)
