"""Logging setup shared by the API process and scripts."""
from __future__ import annotations

import datetime
import logging
import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_LOGGING_CONFIGURED = False


class ZonedFormatter(logging.Formatter):
    """Formatter rendering timestamps in the usage reference timezone."""

    def __init__(self, *args, timezone_name: str | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._tzinfo = self._resolve_tzinfo(timezone_name)

    @staticmethod
    def _resolve_tzinfo(timezone_name: str | None) -> datetime.tzinfo:
        if timezone_name:
            try:
                return ZoneInfo(timezone_name)
            except ZoneInfoNotFoundError:
                pass
        return datetime.timezone.utc

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        dt = datetime.datetime.fromtimestamp(record.created, tz=self._tzinfo)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(timespec="milliseconds")


def configure_logging(level: str = "INFO", *, timezone_name: str | None = None) -> None:
    """Install a single stdout handler on the root logger (idempotent)."""

    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ZonedFormatter(LOG_FORMAT, timezone_name=timezone_name))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())
    _LOGGING_CONFIGURED = True


def mask_token(token: str | None) -> str:
    """Return a log-safe prefix of a caller token."""

    if not token:
        return ""
    return token[:10] + "..."
