"""
Static data shipped with the package — locale catalogs.

Catalogs live in ``envboot/core/data/locales/<locale>.yml`` and are
plain nested mappings of message keys to strings.

Usage::

    from envboot.core.data import available_locales, load_catalog

    load_catalog("en-US")["messages"]["startCheck"]
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_DATA_DIR = Path(__file__).parent
LOCALES_DIR = _DATA_DIR / "locales"


def available_locales() -> list[str]:
    """Names of all shipped catalogs (e.g. ``["en-US", "zh-CN"]``)."""
    return sorted(p.stem for p in LOCALES_DIR.glob("*.yml"))


def load_catalog(locale: str) -> dict:
    """Load one locale catalog.

    Returns an empty mapping when the catalog is missing or unreadable;
    callers fall back to printing message keys.
    """
    path = LOCALES_DIR / f"{locale}.yml"
    if not path.is_file():
        logger.warning("Locale catalog not found: %s", path)
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to load locale catalog %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Locale catalog %s is not a mapping", path)
        return {}
    logger.debug("Loaded locale catalog %s", locale)
    return data
