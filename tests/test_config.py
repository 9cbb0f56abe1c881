"""Tests for configuration loading and logging setup."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from devcrew.config import CrewConfig, load_config
from devcrew.logging_setup import setup_logging


class TestLoadConfig:
    def test_defaults_without_file(self, temp_data_dir: Path) -> None:
        config = load_config(temp_data_dir / "missing.toml", env={})
        assert config == CrewConfig()
        assert config.engine.main_interval == 2.0
        assert config.engine.max_recovery_attempts == 3
        assert config.oracle.url is None

    def test_toml_sections(self, temp_data_dir: Path) -> None:
        path = temp_data_dir / "config.toml"
        path.write_text(
            'seed = 11\nlog_level = "INFO"\n'
            "[engine]\nmain_interval = 0.5\nmax_recovery_attempts = 5\n"
            "[scoring]\nload_weight = 50.0\n"
            '[oracle]\nurl = "http://oracle.local/decide"\ntimeout = 3.0\n'
        )

        config = load_config(path, env={})

        assert config.seed == 11
        assert config.log_level == "INFO"
        assert config.engine.main_interval == 0.5
        assert config.engine.max_recovery_attempts == 5
        assert config.engine.health_interval == 30.0
        assert config.scoring.load_weight == 50.0
        assert config.oracle.url == "http://oracle.local/decide"
        assert config.oracle.timeout == 3.0

    def test_unknown_keys_are_ignored(
        self,
        temp_data_dir: Path,
        caplog: pytest.LogCaptureFixture,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(logging.getLogger("devcrew"), "propagate", True)
        path = temp_data_dir / "config.toml"
        path.write_text("[monitor]\ninterval = 5.0\nfrobnicate = true\n")

        with caplog.at_level(logging.WARNING, logger="devcrew.config"):
            config = load_config(path, env={})

        assert config.monitor.interval == 5.0
        assert "frobnicate" in caplog.text

    def test_section_must_be_table(self, temp_data_dir: Path) -> None:
        path = temp_data_dir / "config.toml"
        path.write_text("engine = 3\n")
        with pytest.raises(ValueError):
            load_config(path, env={})

    def test_env_overrides_file(self, temp_data_dir: Path) -> None:
        path = temp_data_dir / "config.toml"
        path.write_text('[oracle]\nurl = "http://from-file"\n')
        env = {
            "DEVCREW_DATA_DIR": str(temp_data_dir / "crew"),
            "DEVCREW_ORACLE_URL": "http://from-env",
            "DEVCREW_ORACLE_TIMEOUT": "7.5",
            "DEVCREW_LOG_LEVEL": "DEBUG",
            "DEVCREW_SEED": "3",
        }

        config = load_config(path, env=env)

        assert config.data_dir == temp_data_dir / "crew"
        assert config.oracle.url == "http://from-env"
        assert config.oracle.timeout == 7.5
        assert config.log_level == "DEBUG"
        assert config.seed == 3
        assert config.config_path == temp_data_dir / "crew" / "config.toml"


class TestLogging:
    def test_file_and_console_handlers(self, temp_data_dir: Path) -> None:
        log_file = temp_data_dir / "logs" / "devcrew.log"
        logger = setup_logging("INFO", log_file=log_file)
        try:
            assert logger.level == logging.INFO
            assert any(isinstance(h, RotatingFileHandler) for h in logger.handlers)
            logging.getLogger("devcrew.engine.workflow").info("hello from the engine")
            for handler in logger.handlers:
                handler.flush()
            assert "hello from the engine" in log_file.read_text()
        finally:
            setup_logging(log_file=False)

    def test_reconfigure_replaces_handlers(self) -> None:
        setup_logging("DEBUG", log_file=False)
        logger = setup_logging("bogus", log_file=False)
        assert len(logger.handlers) == 1
        assert logger.level == logging.WARNING
