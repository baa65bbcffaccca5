"""Locale-aware string catalog loaded from a directory of JSON files."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path

_SEPARATORS = re.compile(r"[,;]")


class CatalogError(Exception):
    """Raised when a strings catalog cannot be loaded."""


def normalize_locale(raw: str) -> str:
    """Reduce a locale or Accept-Language value to a two-letter code, or ''."""
    raw = raw.strip().lower()
    if not raw:
        return ""
    parts = [part for part in _SEPARATORS.split(raw) if part]
    if not parts:
        return ""
    code = parts[0].strip()
    if len(code) < 2:
        return ""
    return code[:2]


@dataclass(frozen=True)
class Catalog:
    """Translations keyed by locale, with a fallback locale."""

    default_locale: str
    values: dict[str, dict[str, str]] = field(default_factory=dict)

    def translate(self, request_locale: str, key: str) -> str:
        """Return the text for key in the best matching locale, or the key itself."""
        locale = self.resolve_locale(request_locale)
        for candidate in (locale, self.default_locale):
            value = self.values.get(candidate, {}).get(key)
            if value is not None:
                return value
        return key

    def resolve_locale(self, raw: str) -> str:
        """Pick the supported locale that best matches a requested one."""
        normalized_raw = raw.strip().lower()
        locale = normalize_locale(raw)
        if not locale:
            return self.default_locale
        if locale in self.values:
            return locale
        for supported in self.values:
            if normalized_raw.startswith((supported + "-", supported + "_")):
                return supported
        return self.default_locale


def _extension(name: str) -> str:
    dot = name.rfind(".")
    return name[dot:] if dot >= 0 else ""


def load_dir(path: str | Path, default_locale: str) -> Catalog:
    """Load every <locale>.json file in a directory into a catalog."""
    directory = Path(path)
    try:
        entries = sorted(directory.iterdir())
    except OSError as exc:
        raise CatalogError(f"read strings dir: {exc}") from exc

    values: dict[str, dict[str, str]] = {}
    for entry in entries:
        if entry.is_dir():
            continue
        name = entry.name
        if _extension(name) != ".json":
            continue
        locale = name.lower().removesuffix(".json")
        try:
            raw = entry.read_bytes()
        except OSError as exc:
            raise CatalogError(f"read strings file {name}: {exc}") from exc
        try:
            dictionary = json.loads(raw)
        except ValueError as exc:
            raise CatalogError(f"decode strings file {name}: {exc}") from exc
        if dictionary is None:
            dictionary = {}
        if not isinstance(dictionary, dict) or not all(
            isinstance(value, str) for value in dictionary.values()
        ):
            raise CatalogError(f"decode strings file {name}: expected an object of strings")
        values[locale] = dictionary

    default_locale = normalize_locale(default_locale)
    if default_locale not in values:
        raise CatalogError(f"default locale file is missing: {default_locale}.json")
    return Catalog(default_locale=default_locale, values=values)