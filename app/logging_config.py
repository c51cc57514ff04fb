import datetime
import logging
import re
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .settings import settings


LOGGER_NAME = "geminiproxy"

# Date part of a rotated file name for every "when" granularity.
_ROTATED_DATE = re.compile(r"\d{4}-\d{2}-\d{2}(_\d{2}(-\d{2}){0,2})?")

_LOGGING_CONFIGURED = False


class LocalTimezoneFormatter(logging.Formatter):
    """
    Formatter that renders timestamps in LOG_TIMEZONE, or in the system
    local timezone when it is unset or unknown.
    """

    def __init__(self, *args, timezone_name: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._tzinfo = self._resolve_tzinfo(timezone_name)

    @staticmethod
    def _resolve_tzinfo(timezone_name: str | None) -> datetime.tzinfo:
        if timezone_name:
            try:
                return ZoneInfo(timezone_name)
            except ZoneInfoNotFoundError:
                pass
        return datetime.datetime.now().astimezone().tzinfo or datetime.timezone.utc

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        dt = datetime.datetime.fromtimestamp(record.created, tz=self._tzinfo)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(timespec="milliseconds")


class DailyFileHandler(TimedRotatingFileHandler):
    """
    TimedRotatingFileHandler that names rotated files like
    logs/app-YYYY-MM-DD.log while the current day stays in logs/app.log.
    """

    def rotation_filename(self, default_name: str) -> str:  # type: ignore[override]
        # default_name is "<base>.YYYY-MM-DD" because suffix is "%Y-%m-%d".
        base = Path(self.baseFilename)
        date_suffix = default_name.rsplit(".", 1)[-1]
        return str(base.with_name(f"{base.stem}-{date_suffix}{base.suffix}"))

    def getFilesToDelete(self) -> list[str]:
        # The stock lookup only sees "<base>.<suffix>" names, not ours.
        base = Path(self.baseFilename)
        prefix = f"{base.stem}-"
        rotated = sorted(
            str(path)
            for path in base.parent.glob(f"{prefix}*{base.suffix}")
            if _ROTATED_DATE.fullmatch(path.name[len(prefix) : -len(base.suffix)])
        )
        if len(rotated) <= self.backupCount:
            return []
        return rotated[: len(rotated) - self.backupCount]


def _resolve_level(name: str | None) -> int:
    level = getattr(logging, str(name or "INFO").upper(), None)
    return level if isinstance(level, int) else logging.INFO


def setup_logging() -> None:
    """
    Configure application logging once per process.

    geminiproxy records go to a daily rotating file under LOG_DIR; every
    record (uvicorn included) goes to the console via the root logger.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    level = _resolve_level(settings.log_level)
    formatter = LocalTimezoneFormatter(
        "%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        timezone_name=settings.log_timezone,
    )

    file_handler = DailyFileHandler(
        log_dir / "app.log",
        when="midnight",
        interval=1,
        backupCount=7,
        encoding="utf-8",
    )
    file_handler.suffix = "%Y-%m-%d"
    file_handler.setFormatter(formatter)
    file_handler.addFilter(lambda record: record.name.startswith(LOGGER_NAME))

    app_logger = logging.getLogger(LOGGER_NAME)
    app_logger.setLevel(level)
    app_logger.propagate = True
    app_logger.addHandler(file_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in root_logger.handlers
    )
    if not has_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    _LOGGING_CONFIGURED = True


logger = logging.getLogger(LOGGER_NAME)
