"""Utility helpers for Pickem."""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("pickem.utils")

_MENTION_PATTERN = re.compile(r"^<@!?(?P<user_id>[A-Za-z0-9]+)(?:\|[^>]*)?>$")


def int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s=%s. Falling back to %s.", name, raw, default)
        return default


def str_from_env(name: str, default: str = "") -> str:
    value = os.getenv(name, default).strip()
    return value or default


def extract_user_id(text: str) -> Optional[str]:
    """Return the user id inside a chat mention such as ``<@123>`` or ``<@U123|name>``."""
    if not text:
        return None
    match = _MENTION_PATTERN.match(text.strip())
    if match is None:
        return None
    return match.group("user_id")


def format_mention(user_id: str) -> str:
    return f"<@{user_id}>"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


__all__ = [
    "extract_user_id",
    "format_mention",
    "int_from_env",
    "str_from_env",
    "utc_now",
]
