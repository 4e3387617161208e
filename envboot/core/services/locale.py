"""
Message translation — key lookup over the shipped locale catalogs.

    t = Translator("zh_CN")
    t("messages.startCheck")              # → "正在检查运行环境..."
    t("messages.unknown")                 # → "messages.unknown"
    t("greeting", name="Ada")             # "{{ name }}" → "Ada"

Lookup never raises: an unknown key, a non-string leaf, or a catalog
that failed to load all yield the key itself.
"""

from __future__ import annotations

import logging
import re

from envboot.core.data import available_locales, load_catalog

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "en-US"


def find_best_locale(requested: str | None, locales: list[str] | None = None) -> str:
    """Pick the closest shipped locale for ``requested``.

    Order: exact match (case-insensitive, ``_`` treated as ``-``),
    Chinese script/region mapping, any locale with the same language,
    then ``en-US``.
    """
    if locales is None:
        locales = available_locales()
    if not requested:
        return DEFAULT_LOCALE

    cleaned = requested.replace("_", "-")
    by_lower = {name.lower(): name for name in locales}
    if cleaned.lower() in by_lower:
        return by_lower[cleaned.lower()]

    parts = cleaned.split("-")
    lang = parts[0].lower()

    if lang == "zh":
        region = parts[1].lower() if len(parts) > 1 else ""
        if any(tag in region for tag in ("tw", "hant", "hk")):
            return by_lower.get("zh-tw", "zh-CN")
        return by_lower.get("zh-cn", "zh-CN")

    for name in locales:
        if name.lower().startswith(f"{lang}-"):
            return name
    for name in locales:
        if name.split("-")[0].lower() == lang:
            return name

    return DEFAULT_LOCALE


class Translator:
    """Callable message lookup bound to one locale."""

    def __init__(self, locale: str | None = None) -> None:
        self.locale = find_best_locale(locale)
        self._catalog = load_catalog(self.locale)
        logger.debug("Translator ready (requested=%s, locale=%s)", locale, self.locale)

    def __call__(self, key: str, **params: object) -> str:
        return self.t(key, **params)

    def t(self, key: str, **params: object) -> str:
        value: object = self._catalog
        for part in key.split("."):
            if not isinstance(value, dict):
                return key
            value = value.get(part)
            if value is None:
                return key
        if not isinstance(value, str):
            return key

        for name, replacement in params.items():
            text = str(replacement)
            value = re.sub(r"{{\s*" + re.escape(name) + r"\s*}}", lambda _m: text, value)
        return value
