"""Logging setup: one set of handlers on the package logger, module loggers propagate."""
import logging

import pytest


@pytest.fixture
def restore_package_logger(monkeypatch):
    monkeypatch.delenv("SQLACCESS_LOG_LEVEL", raising=False)
    monkeypatch.delenv("SQLACCESS_LOG_DIR", raising=False)
    yield
    from sqlaccess.utils.logger import configure_logging
    configure_logging()


def test_module_loggers_share_package_handlers(restore_package_logger):
    from sqlaccess.utils.logger import get_logger
    coordinator = get_logger("sqlaccess.coordinator")
    bulk = get_logger("sqlaccess.bulk")
    package = logging.getLogger("sqlaccess")
    assert package.handlers
    assert not coordinator.handlers and not bulk.handlers
    assert coordinator.propagate and bulk.propagate


def test_configure_logging_writes_daily_file(restore_package_logger, tmp_path):
    from sqlaccess.utils.logger import configure_logging, get_logger
    package = configure_logging("debug", str(tmp_path / "logs"))
    assert package.level == logging.DEBUG
    assert len(package.handlers) == 2
    get_logger("sqlaccess.bulk").debug("rows copied: 1000")
    for handler in package.handlers:
        handler.flush()
    files = list((tmp_path / "logs").glob("sqlaccess_*.log"))
    assert len(files) == 1
    assert "DEBUG | sqlaccess.bulk | rows copied: 1000" in files[0].read_text(encoding="utf-8")

    package = configure_logging("WARNING")
    assert package.level == logging.WARNING
    assert len(package.handlers) == 1


def test_level_from_env_and_unknown_names(restore_package_logger, monkeypatch):
    from sqlaccess.utils.logger import configure_logging
    monkeypatch.setenv("SQLACCESS_LOG_LEVEL", "error")
    assert configure_logging().level == logging.ERROR
    assert configure_logging("chatty").level == logging.INFO


def test_create_coordinator_applies_logging_section(restore_package_logger, tmp_path):
    pytest.importorskip("duckdb")
    from sqlaccess.config.settings import create_coordinator
    config = {
        "connection_strings": {"DefaultConnection": "duckdb:///:memory:"},
        "logging": {"level": "DEBUG", "log_dir": str(tmp_path)},
    }
    with create_coordinator(config):
        pass
    assert logging.getLogger("sqlaccess").level == logging.DEBUG
    assert list(tmp_path.glob("sqlaccess_*.log"))
