"""
amptrack_config -- single public entrypoint for runtime settings.

Responsibility:
    ``get_settings()`` is the only way components obtain configuration.
    Nothing else reads YAML files or ``AMPTRACK_*`` environment variables.

Architecture position:
    Configuration.  Sits beside ``amptrack_kernel``; the kernel never
    imports from here.  ``amptrack_services.engine.build_engine`` translates
    settings into collaborator constructors.

Failure modes:
    - ``FileNotFoundError`` for a missing override file.
    - ``ValueError`` for wrongly typed values.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping

from amptrack_config.loader import load_settings
from amptrack_config.schema import AppSettings, is_placeholder

_logger = logging.getLogger("amptrack.config")

CONFIG_PATH_ENV = "AMPTRACK_CONFIG"


def get_settings(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppSettings:
    """
    Load settings: packaged defaults, then an override file, then
    ``AMPTRACK_*`` environment variables.

    ``config_path`` defaults to ``$AMPTRACK_CONFIG`` when set.  ``environ``
    defaults to ``os.environ``.
    """
    env = os.environ if environ is None else environ
    if config_path is None and env.get(CONFIG_PATH_ENV):
        config_path = env[CONFIG_PATH_ENV]

    settings = load_settings(config_path, env)
    _logger.info(
        "settings_loaded",
        extra={
            "config_path": str(config_path) if config_path else None,
            "notification_configured": settings.notification.configured,
            "payments_configured": settings.payments.configured,
            "rendering_enabled": settings.rendering.enabled,
        },
    )
    return settings


__all__ = ["AppSettings", "get_settings", "is_placeholder"]
