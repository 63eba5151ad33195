"""Optional Logfire integration for dispatch tracing and logs."""
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)

_logfire = None
_configured = False


def _load_logfire():
    global _logfire
    if _logfire is not None:
        return _logfire
    try:
        import logfire
    except Exception:
        _logfire = False
        return _logfire
    _logfire = logfire
    return _logfire


def _env_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def enabled() -> bool:
    # Off unless asked for: the CLI is short-lived and should not ship spans by default.
    logfire = _load_logfire()
    if not logfire:
        return False
    return _env_truthy(os.getenv("POLECAT_LOGFIRE"))


def configure() -> bool:
    logfire = _load_logfire()
    if not logfire or not enabled():
        return False
    global _configured
    if not _configured:
        try:
            logfire.configure(
                console=None if _env_truthy(os.getenv("POLECAT_LOGFIRE_CONSOLE")) else False
            )
        except Exception as e:
            logger.warning("Logfire configuration failed: %s", e)
            return False
        _configured = True
    return True


@contextmanager
def span(name: str, **attrs: Any) -> Iterator[None]:
    if not configure():
        yield
        return
    try:
        ctx = _logfire.span(name, **attrs)
        ctx.__enter__()
    except Exception as e:
        logger.debug("Logfire span %s failed to open: %s", name, e)
        yield
        return
    try:
        yield
    except Exception as exc:
        try:
            ctx.__exit__(type(exc), exc, exc.__traceback__)
        except Exception as e:
            logger.debug("Logfire span %s failed to close: %s", name, e)
        raise
    else:
        try:
            ctx.__exit__(None, None, None)
        except Exception as e:
            logger.debug("Logfire span %s failed to close: %s", name, e)


def log(level: str, message: str, **attrs: Any) -> None:
    if configure():
        fn = getattr(_logfire, level, None) or _logfire.info
        try:
            fn(message, **attrs)
        except Exception as e:
            logger.debug("Logfire %s failed: %s", level, e)
        return
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO
    logger.log(log_level, "%s %s", message, attrs)
