"""Deterministic validators and sanitizers used by intake and webhooks."""

from __future__ import annotations

import re

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
PHONE_DIGITS = re.compile(r"\D+")


def sanitize_text(value: str | None, max_len: int = 20000) -> str:
    """Sanitize free-form content before persistence."""
    if value is None:
        return ""
    cleaned = str(value).replace("\x00", "").strip()
    return cleaned[:max_len]


def normalize_email(value: str | None) -> str:
    """Dedup key for contact addresses."""
    return sanitize_text(value, max_len=320).lower()


def is_valid_email(value: str | None) -> bool:
    return bool(value) and EMAIL_PATTERN.match(normalize_email(value)) is not None


def normalize_phone(value: str | None) -> str | None:
    if not value:
        return None
    digits = PHONE_DIGITS.sub("", str(value))
    if not digits:
        return None
    return f"+{digits}" if str(value).strip().startswith("+") else digits


def coerce_int(value) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def coerce_float(value) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
