"""Config loader: resolve the operator's AudienceConfig at startup.

Workers call `load_config()` instead of `AudienceConfig()`. Resolution order:
1. `AUDIENCE_CONFIG_MODULE` env var (e.g. `my_package.config:MyConfig`)
2. `audience_definitions.config:AudienceConfig` (standard operator override)
3. `audience_node.audience_config:AudienceConfig` (engine default)
"""
from __future__ import annotations

import importlib
import logging
import os
from typing import Any

from audience_node.audience_config import AudienceConfig

logger = logging.getLogger(__name__)

_cached_config: AudienceConfig | None = None


def load_config() -> AudienceConfig:
    """Load and cache the AudienceConfig instance."""
    global _cached_config
    if _cached_config is not None:
        return _cached_config

    _cached_config = _resolve_config()
    return _cached_config


def _resolve_config() -> AudienceConfig:
    explicit = os.getenv("AUDIENCE_CONFIG_MODULE", "").strip()
    if explicit:
        config = _try_load(explicit)
        if config is not None:
            logger.info("Loaded config from AUDIENCE_CONFIG_MODULE=%s", explicit)
            return config
        logger.warning("AUDIENCE_CONFIG_MODULE=%s failed to load, trying fallbacks", explicit)

    config = _try_load("audience_definitions.config:AudienceConfig")
    if config is not None:
        logger.info("Loaded config from audience_definitions.config")
        return config

    logger.info("Using default AudienceConfig (no operator override found)")
    return AudienceConfig()


def _try_load(path: str) -> AudienceConfig | None:
    """Import `module.path:Attr`; classes are instantiated, instances used directly."""
    if ":" in path:
        module_name, attr_name = path.rsplit(":", 1)
    else:
        module_name, attr_name = path, "AudienceConfig"

    try:
        module = importlib.import_module(module_name)
        target: Any = getattr(module, attr_name)
    except (ImportError, AttributeError):
        return None

    if isinstance(target, type):
        target = target()

    if not isinstance(target, AudienceConfig):
        logger.warning("Ignoring %s: expected an AudienceConfig, got %s", path, type(target).__name__)
        return None
    return target


def reset_cache() -> None:
    """Clear the cached config (for testing)."""
    global _cached_config
    _cached_config = None
