import logging
import logging.handlers

from rich.logging import RichHandler

from share_dumper.logging_config import setup_logging


def test_console_and_rotating_file_handlers(settings):
    root_logger = logging.getLogger()
    saved_handlers = list(root_logger.handlers)
    saved_level = root_logger.level
    try:
        setup_logging(settings)
        setup_logging(settings)

        handlers = root_logger.handlers
        assert len(handlers) == 2
        assert isinstance(handlers[0], RichHandler)
        assert isinstance(handlers[1], logging.handlers.TimedRotatingFileHandler)
        assert handlers[1].backupCount == settings.log_retention_days
        assert logging.getLogger("keyring").level == logging.WARNING

        logging.info("hello from the test")
        handlers[1].flush()
        assert "hello from the test" in open(settings.log_file_path, encoding="utf-8").read()
    finally:
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root_logger.addHandler(handler)
        root_logger.setLevel(saved_level)
