from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import yaml

from mbti_assess.config import CONTENT_ROOT, DIMENSIONS
from mbti_assess.errors import ContentError


SUPPORTED_LANGUAGES = {"en", "ar"}
DEFAULT_LANGUAGE = "en"


def _load_yaml(path: Path) -> Dict[str, Any]:
    """Reads a YAML mapping. Raises ContentError on any problem."""
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except Exception as e:
        raise ContentError(f"Failed to read YAML {path}: {e}") from e
    if not isinstance(data, dict):
        raise ContentError(f"YAML must be a mapping: {path}")
    return data


def normalize_language(language: Any) -> str:
    lang = str(language or "").strip().lower()
    return lang if lang in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


@lru_cache(maxsize=None)
def load_interim_content(root: Path = CONTENT_ROOT) -> Dict[str, Any]:
    data = _load_yaml(root / "interim.yaml")
    if "insights" not in data or "disclaimer" not in data:
        raise ContentError(f"{root / 'interim.yaml'}: 'insights' and 'disclaimer' are required")
    return data


@lru_cache(maxsize=None)
def load_sais_domains(root: Path = CONTENT_ROOT) -> Dict[str, Any]:
    data = _load_yaml(root / "sais_domains.yaml")
    missing = [d for d in DIMENSIONS if d not in data]
    if missing:
        raise ContentError(f"{root / 'sais_domains.yaml'}: missing dimensions: {', '.join(missing)}")
    return data


def localized(entry: Any, language: str) -> str:
    """Picks the language variant of a {en: .., ar: ..} entry, falling back to English."""
    if isinstance(entry, dict):
        return str(entry.get(language) or entry.get(DEFAULT_LANGUAGE) or "")
    return "" if entry is None else str(entry)


def interim_insight(dimension: str, preference: str, language: str) -> str:
    insights = load_interim_content()["insights"]
    return localized((insights.get(dimension) or {}).get(preference), language)


def interim_disclaimer(language: str) -> str:
    return localized(load_interim_content()["disclaimer"], language)
