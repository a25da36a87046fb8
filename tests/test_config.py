"""
Tests for config.py — environment flags and logging setup.
"""

import logging

import pytest

import config


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestEnvFlag:

    def test_default_when_unset(self, monkeypatch):
        monkeypatch.delenv("VAULT_TEST_FLAG", raising=False)
        assert config._env_flag("VAULT_TEST_FLAG", True) is True
        assert config._env_flag("VAULT_TEST_FLAG", False) is False

    def test_blank_uses_default(self, monkeypatch):
        monkeypatch.setenv("VAULT_TEST_FLAG", "  ")
        assert config._env_flag("VAULT_TEST_FLAG", True) is True

    @pytest.mark.parametrize("raw,expected", [("true", True), ("YES", True), ("1", True), ("false", False), ("off", False)])
    def test_parsing(self, monkeypatch, raw, expected):
        monkeypatch.setenv("VAULT_TEST_FLAG", raw)
        assert config._env_flag("VAULT_TEST_FLAG", not expected) is expected


class TestConfigureLogging:

    def test_file_and_console(self, tmp_path, restore_root_logger):
        log_file = tmp_path / "logs" / "vault.log"
        config.configure_logging(level="DEBUG", log_file=str(log_file))

        logging.getLogger("StagingEngine").debug("hello vault")
        for handler in restore_root_logger.handlers:
            handler.flush()

        assert restore_root_logger.level == logging.DEBUG
        assert "[DEBUG] StagingEngine: hello vault" in log_file.read_text(encoding="utf-8")

    def test_console_only(self, restore_root_logger):
        config.configure_logging(level="WARNING", log_file="")
        assert restore_root_logger.level == logging.WARNING
        assert not any(isinstance(h, logging.FileHandler) for h in restore_root_logger.handlers)
