"""Default monitoring settings by header category."""

from typing import Any

from .config import PATTERN_CATEGORIES

SETTING_KEYS = ("threshold", "alert_duration", "frozen_threshold")


def detect_header_category(header_name: str) -> str | None:
    """Return the first category whose patterns match the name.

    A name matching any of a category's negative patterns is excluded from
    that category ("Atmospheric Pressure" is not a pressure header).
    """
    name = header_name.lower()
    for category, rules in PATTERN_CATEGORIES.items():
        if any(neg in name for neg in rules.get("negative_patterns", [])):
            continue
        if any(pattern in name for pattern in rules["patterns"]):
            return category
    return None


def apply_category_defaults(header_name: str, settings: dict[str, Any]) -> dict[str, Any]:
    """Fill missing settings from the header's category.

    Explicit values, including 0, are kept.
    """
    result = dict(settings)
    category = detect_header_category(header_name)
    if category is None:
        return result

    defaults = PATTERN_CATEGORIES[category]
    for key in SETTING_KEYS:
        if result.get(key) is None:
            result[key] = defaults[key]
    return result
