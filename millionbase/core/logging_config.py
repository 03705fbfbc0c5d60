"""
Process-wide logging for the registry service and the CLI.

The registry service logs to stdout and to a rotating file under LOG_DIR
(default `logs/millionbase/system.log`); the CLI only logs warnings to stdout.
Everything else uses `logging.getLogger(__name__)` with a `[Component]` prefix.

    setup_logging(service_name="registry")   # once, at process start
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from millionbase.core.config import Settings, get_settings

SYSTEM_LOG_NAME = "system.log"

FILE_FORMAT = "%(asctime)s | %(levelname)-5s | %(name)-30s | %(message)s"
CONSOLE_FORMAT = "%(asctime)s | %(levelname)-5s | %(name)-20s | %(message)s"

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "asyncio", "sse_starlette")

_logging_configured = False


def _build_handlers(settings: Settings, log_dir: Path, log_to_file: bool, log_to_console: bool) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if log_to_file:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / SYSTEM_LOG_NAME,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, "%Y-%m-%d %H:%M:%S"))
        handlers.append(file_handler)
    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, "%H:%M:%S"))
        handlers.append(console_handler)
    return handlers


def setup_logging(
    service_name: str = "millionbase",
    level: Optional[str] = None,
    log_to_file: Optional[bool] = None,
    log_to_console: bool = True,
    log_dir: Optional[Path] = None,
) -> None:
    """
    Configure the root logger once per process.

    Arguments left as None come from Settings (LOG_LEVEL, LOG_TO_FILE,
    LOG_DIR). Later calls are no-ops.
    """
    global _logging_configured
    if _logging_configured:
        return

    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    to_file = settings.log_to_file if log_to_file is None else log_to_file
    directory = Path(log_dir or settings.log_dir)

    handlers = _build_handlers(settings, directory, to_file, log_to_console)
    logging.basicConfig(level=log_level, handlers=handlers, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _logging_configured = True
    where = f" -> {(directory / SYSTEM_LOG_NAME).absolute()}" if to_file else ""
    logging.getLogger(service_name).info(f"Logging initialized for {service_name} at {level_name}{where}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


# =============================================================================
# Claim log lines
# =============================================================================


def log_claim_attempt(logger: logging.Logger, cell_index: int, claimant: str, assisted_by: Optional[str] = None):
    """Log a claim attempt with standard format."""
    via = f" | via={assisted_by}" if assisted_by else ""
    logger.info(f"[Claim] ATTEMPT | cell={cell_index} | claimant={claimant}{via}")


def log_claim_result(
    logger: logging.Logger,
    cell_index: int,
    success: bool,
    detail: str = "",
    elapsed_ms: Optional[float] = None,
):
    """Log the outcome of a claim with standard format."""
    status = "SUCCESS" if success else "REJECTED"
    elapsed = f" | elapsed={elapsed_ms:.0f}ms" if elapsed_ms is not None else ""
    suffix = f" | {detail}" if detail else ""
    logger.info(f"[Claim] {status} | cell={cell_index}{suffix}{elapsed}")
