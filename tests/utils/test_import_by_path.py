"""Resolving the operator's native builder factory."""

import logging

import pytest

from dfi_rewards.network import get_network
from dfi_rewards.utils import import_by_path, setup_console_logging


def test_import_by_path():
    assert import_by_path("dfi_rewards.network:get_network") is get_network


@pytest.mark.parametrize("path", ["dfi_rewards.network", ":get_network", "dfi_rewards.network:"])
def test_import_by_path_malformed(path):
    with pytest.raises(ValueError):
        import_by_path(path)


def test_import_by_path_missing_attribute():
    with pytest.raises(AttributeError):
        import_by_path("dfi_rewards.network:no_such_factory")


def test_setup_console_logging_file(tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "warning")
    log_file = tmp_path / "logs" / "run.log"
    root = logging.getLogger()
    handlers_before = list(root.handlers)
    level_before = root.level

    try:
        setup_console_logging(log_file=log_file)
        logging.getLogger("dfi_rewards.test").info("Written to file only")
        for handler in root.handlers:
            handler.flush()
        assert "Written to file only" in log_file.read_text()
    finally:
        for handler in root.handlers:
            if handler not in handlers_before:
                root.removeHandler(handler)
                handler.close()
        root.setLevel(level_before)
