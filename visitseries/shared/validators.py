"""Shared validation utilities"""

import re
from typing import Optional

HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def validate_hhmm(value: Optional[str]) -> Optional[str]:
    """
    Validate and normalize a wall-clock time to zero-padded HH:MM.

    Availability checks compare times as strings, which is only correct
    for the fixed-width form, so "9:00" is normalized to "09:00".

    Args:
        value: Time string such as "09:00", "9:00" or "09:00:00"

    Returns:
        Normalized HH:MM string

    Raises:
        ValueError: If the value is not a valid time of day
    """
    if value is None:
        return value

    value = value.strip()
    parts = value.split(":")
    if len(parts) == 3 and parts[2] == "00":
        parts = parts[:2]
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError("Time must be in HH:MM format")

    normalized = f"{int(parts[0]):02d}:{int(parts[1]):02d}"
    if not HHMM_PATTERN.match(normalized):
        raise ValueError("Time must be in HH:MM format")

    return normalized


def validate_hex_color(color: Optional[str]) -> Optional[str]:
    """Validate a #RRGGBB calendar color"""
    if not color:
        return color

    if not re.match(r"^#[0-9a-fA-F]{6}$", color):
        raise ValueError("Color must be a hex value like #6366f1")

    return color.lower()


def dedupe_ids(ids: Optional[list[str]]) -> list[str]:
    """Drop duplicate ids while keeping first-seen order"""
    seen = set()
    result = []
    for value in ids or []:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result
