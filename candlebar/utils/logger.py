"""Logging for the status-bar dashboard.

The console handler writes to stderr at ``settings.LOG_LEVEL``; stdout is
left to the console host, which prints the status line there. With
``settings.LOG_TO_FILE`` on, every process start also gets its own
``candlebar_<timestamp>.log`` (DEBUG) and ``candlebar.log`` mirrors the
current run. Old run files beyond ``settings.MAX_LOG_FILES`` are deleted.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from candlebar.config import settings

# Chatty libraries: one line per HTTP request / scheduler tick otherwise
_QUIET_LOGGERS = ("httpx", "httpcore", "yfinance", "apscheduler", "urllib3")

_FORMAT = logging.Formatter(
    "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _parse_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else logging.INFO


def _prune_old_logs(logs_dir: Path, keep: int) -> list[Path]:
    """Delete the oldest run files so at most ``keep`` remain."""
    run_logs = sorted(logs_dir.glob("candlebar_*.log"), key=lambda p: p.stat().st_mtime)
    removed = []
    for old in run_logs[: max(len(run_logs) - keep, 0)]:
        try:
            old.unlink()
            removed.append(old)
        except OSError:
            continue
    return removed


def _file_handlers(logs_dir: Path, keep: int) -> list[logging.Handler]:
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    handlers: list[logging.Handler] = [
        logging.FileHandler(logs_dir / f"candlebar_{timestamp}.log", encoding="utf-8"),
    ]
    try:
        handlers.append(
            logging.FileHandler(logs_dir / "candlebar.log", mode="w", encoding="utf-8")
        )
    except OSError:
        pass  # the per-run file is enough
    _prune_old_logs(logs_dir, keep)
    return handlers


def setup_logger(
    name: str = "candlebar",
    level: str | int | None = None,
    to_file: bool | None = None,
    logs_dir: Path | None = None,
) -> logging.Logger:
    """Configure ``name`` once; later calls return it untouched.

    Arguments default to the matching ``settings`` values.
    """
    log = logging.getLogger(name)
    if log.handlers:
        return log
    log.setLevel(logging.DEBUG)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(_parse_level(settings.LOG_LEVEL if level is None else level))
    console.setFormatter(_FORMAT)
    log.addHandler(console)

    if to_file is None:
        to_file = settings.LOG_TO_FILE
    if to_file:
        for handler in _file_handlers(logs_dir or settings.LOGS_DIR, settings.MAX_LOG_FILES):
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(_FORMAT)
            log.addHandler(handler)

    for noisy in _QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    log.debug("Logger %s ready (console=%s, files=%d)",
              name, logging.getLevelName(console.level), len(log.handlers) - 1)
    return log


logger = setup_logger()
