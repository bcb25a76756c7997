from __future__ import annotations

import logging
from typing import Any

NOTICE_LEVEL = 25
NOTICE_NAME = "NOTICE"

# Level names used by the platform's own logging that the stdlib does not know.
_PLATFORM_ALIASES = {
    "NOTICE": NOTICE_LEVEL,
    "WARN": logging.WARNING,
    "CRIT": logging.CRITICAL,
    "FATAL": logging.CRITICAL,
}


def register_logging_levels() -> None:
    if logging.getLevelName(NOTICE_LEVEL) != NOTICE_NAME:
        logging.addLevelName(NOTICE_LEVEL, NOTICE_NAME)
    if getattr(logging, NOTICE_NAME, None) != NOTICE_LEVEL:
        setattr(logging, NOTICE_NAME, NOTICE_LEVEL)


def resolve_log_level(raw_level: Any, default: int = logging.ERROR) -> int:
    register_logging_levels()
    if raw_level is None:
        return int(default)
    if isinstance(raw_level, int):
        return raw_level

    name = str(raw_level).strip().upper()
    if not name:
        return int(default)

    if name in _PLATFORM_ALIASES:
        return _PLATFORM_ALIASES[name]

    value = getattr(logging, name, None)
    if isinstance(value, int):
        return value

    try:
        return int(name)
    except ValueError:
        return int(default)
