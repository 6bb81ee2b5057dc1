"""Tests for invoicer.logging_setup."""

import logging
from logging.handlers import RotatingFileHandler

from invoicer.config import Config, LoggingConfig
from invoicer.logging_setup import log_file_path, reset_logging, setup_logging


class TestSetupLogging:
    def test_console_handler(self):
        setup_logging(Config())
        logger = logging.getLogger("invoicer")
        assert logger.level == logging.INFO
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], logging.StreamHandler)

    def test_verbose_forces_debug(self):
        setup_logging(Config(), verbose=True)
        assert logging.getLogger("invoicer").level == logging.DEBUG

    def test_only_initializes_once(self):
        setup_logging(Config())
        setup_logging(Config(logging=LoggingConfig(level="DEBUG")))
        logger = logging.getLogger("invoicer")
        assert logger.level == logging.INFO
        assert len(logger.handlers) == 1

    def test_file_output_with_rotation(self, tmp_path):
        log_file = tmp_path / "logs" / "invoicer.log"
        cfg = Config(logging=LoggingConfig(output="both", file=str(log_file), max_size_mb=1, backup_count=2))
        setup_logging(cfg)
        logger = logging.getLogger("invoicer")
        file_handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].maxBytes == 1024 * 1024
        assert file_handlers[0].backupCount == 2

        logging.getLogger("invoicer.builder").info("hello")
        file_handlers[0].flush()
        assert "hello" in log_file.read_text()

    def test_file_output_without_rotation(self, tmp_path):
        log_file = tmp_path / "invoicer.log"
        setup_logging(Config(logging=LoggingConfig(output="file", file=str(log_file), rotate=False)))
        handlers = logging.getLogger("invoicer").handlers
        assert len(handlers) == 1
        assert type(handlers[0]) is logging.FileHandler

    def test_reset_clears_handlers(self):
        setup_logging(Config())
        reset_logging()
        assert logging.getLogger("invoicer").handlers == []

    def test_relative_file_next_to_config(self, tmp_path):
        cfg = Config(logging=LoggingConfig(output="file", file="logs/${YEAR}.log", rotate=False))
        cfg.directories.config = str(tmp_path)
        setup_logging(cfg)
        handler = logging.getLogger("invoicer").handlers[0]
        assert handler.baseFilename.startswith(str(tmp_path / "logs"))

    def test_unknown_level_falls_back_to_info(self):
        setup_logging(Config(logging=LoggingConfig(level="chatty")))
        assert logging.getLogger("invoicer").level == logging.INFO


class TestLogFilePath:
    def test_console_only(self):
        assert log_file_path(Config(logging=LoggingConfig(output="console", file="x.log"))) is None

    def test_file_without_path(self):
        assert log_file_path(Config(logging=LoggingConfig(output="file"))) is None

    def test_absolute_path_kept(self, tmp_path):
        cfg = Config(logging=LoggingConfig(output="both", file=str(tmp_path / "run.log")))
        assert log_file_path(cfg) == tmp_path / "run.log"
