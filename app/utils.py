"""Utility helpers for the Cinema Guru service."""

from __future__ import annotations

import re
from typing import Any


LIKE_ESCAPE_RE = re.compile(r"([\\%_])")


def split_csv(value: str) -> list[str]:
    """Split a comma-joined list, dropping blanks and duplicates."""

    cleaned: list[str] = []
    for part in value.split(","):
        entry = part.strip()
        if entry and entry not in cleaned:
            cleaned.append(entry)
    return cleaned


def escape_like(value: str) -> str:
    """Escape SQL ``LIKE`` wildcards so user input matches literally."""

    return LIKE_ESCAPE_RE.sub(r"\\\1", value)


def coerce_int(value: Any, *, default: int | None = None) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
