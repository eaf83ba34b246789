"""
Unit tests for setup_logging().
"""

import logging
import logging.handlers

import pytest

from knowledge_core.logging_config import setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in saved_handlers:
        root.addHandler(handler)
    root.setLevel(saved_level)


@pytest.mark.unit
class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_console_and_rotating_file(self, tmp_path, restore_root_logger):
        logger = setup_logging("DEBUG", log_dir=tmp_path / "logs")

        root = logging.getLogger()
        file_handlers = [h for h in root.handlers if isinstance(h, logging.handlers.RotatingFileHandler)]
        assert logger.name == "knowledge_core"
        assert root.level == logging.DEBUG
        assert len(file_handlers) == 1
        assert file_handlers[0].baseFilename.endswith(".log")
        assert "knowledge_core_" in file_handlers[0].baseFilename
        assert len(list((tmp_path / "logs").iterdir())) == 1

    def test_repeated_calls_replace_handlers(self, tmp_path, restore_root_logger):
        setup_logging(log_dir=tmp_path)
        setup_logging(log_dir=tmp_path)

        assert len(logging.getLogger().handlers) == 2

    def test_unknown_level_falls_back_to_info(self, tmp_path, restore_root_logger):
        setup_logging("VERBOSE", log_dir=tmp_path)

        assert logging.getLogger().level == logging.INFO

    def test_exported_from_package(self):
        import knowledge_core

        assert knowledge_core.setup_logging is setup_logging
        assert "setup_logging" in knowledge_core.__all__
