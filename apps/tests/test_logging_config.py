import logging
from logging.handlers import RotatingFileHandler

import pytest

from millionbase.core import logging_config
from millionbase.core.config import get_settings
from millionbase.core.logging_config import get_logger, log_claim_attempt, log_claim_result, setup_logging


@pytest.fixture
def fresh_root_logger(monkeypatch):
    """Let setup_logging run again, then put the root logger back as it was."""
    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    saved_level = root.level
    monkeypatch.setattr(logging_config, "_logging_configured", False)
    yield root
    for handler in root.handlers[:]:
        if handler not in saved_handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in saved_handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(saved_level)


def test_setup_writes_rotating_system_log(fresh_root_logger, tmp_path):
    setup_logging(service_name="registry", level="debug", log_to_file=True, log_to_console=False, log_dir=tmp_path)

    file_handlers = [h for h in fresh_root_logger.handlers if isinstance(h, RotatingFileHandler)]
    assert len(file_handlers) == 1
    assert fresh_root_logger.level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING

    get_logger("millionbase.test").info("hello registry")
    text = (tmp_path / "system.log").read_text(encoding="utf-8")
    assert "Logging initialized for registry at DEBUG" in text
    assert "hello registry" in text


def test_setup_defaults_come_from_settings(fresh_root_logger, tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "warning")
    monkeypatch.setenv("LOG_TO_FILE", "true")
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "svc"))
    monkeypatch.setenv("LOG_MAX_BYTES", "2048")
    monkeypatch.setenv("LOG_BACKUP_COUNT", "2")
    get_settings.cache_clear()
    try:
        setup_logging(service_name="registry", log_to_console=False)
    finally:
        get_settings.cache_clear()

    (file_handler,) = fresh_root_logger.handlers
    assert isinstance(file_handler, RotatingFileHandler)
    assert file_handler.maxBytes == 2048
    assert file_handler.backupCount == 2
    assert file_handler.baseFilename == str((tmp_path / "svc" / "system.log").absolute())
    assert fresh_root_logger.level == logging.WARNING


def test_setup_runs_once(fresh_root_logger, tmp_path):
    setup_logging(service_name="cli", level="WARNING", log_to_file=False)
    handlers = fresh_root_logger.handlers[:]
    setup_logging(service_name="cli", level="DEBUG", log_to_file=True, log_dir=tmp_path)
    assert fresh_root_logger.handlers == handlers
    assert fresh_root_logger.level == logging.WARNING
    assert not (tmp_path / "system.log").exists()


def test_claim_log_lines(caplog):
    logger = get_logger("millionbase.test")
    with caplog.at_level(logging.INFO, logger="millionbase.test"):
        log_claim_attempt(logger, 5, "alice")
        log_claim_attempt(logger, 6, "bob", assisted_by="ops")
        log_claim_result(logger, 5, True, "order=1/3", elapsed_ms=2.4)
        log_claim_result(logger, 6, False)

    assert caplog.messages == [
        "[Claim] ATTEMPT | cell=5 | claimant=alice",
        "[Claim] ATTEMPT | cell=6 | claimant=bob | via=ops",
        "[Claim] SUCCESS | cell=5 | order=1/3 | elapsed=2ms",
        "[Claim] REJECTED | cell=6",
    ]
