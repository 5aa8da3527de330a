from __future__ import annotations

import logging
import time

_LAST: dict[str, float] = {}
_MAX_CODES = 256


def warn_once(logger: logging.Logger, code: str, message: str, window: int = 60) -> bool:
    """Log a warning once per time window for a given logger/code pair.

    Returns ``True`` when the warning was emitted. The cache is capped and the
    oldest entries are discarded so many distinct codes cannot grow it unbounded.
    """
    key = f"{logger.name}:{code}"
    now = time.monotonic()
    last = _LAST.get(key)
    if last is not None and now - last <= window:
        logger.debug("%s: %s", code, message)
        return False
    if len(_LAST) >= _MAX_CODES:
        oldest = min(_LAST, key=_LAST.get)
        _LAST.pop(oldest, None)
    _LAST[key] = now
    logger.warning("%s: %s", code, message)
    return True


def reset_warnings() -> None:
    """Forget every rate-limited warning code."""
    _LAST.clear()


def redact_token(token: str | None) -> str | None:
    """Mask a bearer token so only its last four characters remain visible."""
    if not token:
        return None
    if len(token) <= 8:
        return "***"
    return f"***{token[-4:]}"
