import logging
from pathlib import Path

from pipesync import app_paths, logging_config


def test_configure_logging_adds_a_single_file_handler(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr(app_paths, "LOG_DIR", tmp_path / "logs")
    monkeypatch.setattr(logging_config, "_LOG_PATH", None)
    root_logger = logging.getLogger()
    before = list(root_logger.handlers)

    try:
        path = logging_config.configure_logging()
        again = logging_config.configure_logging()

        assert path == again == tmp_path / "logs" / "pipesync.log"
        assert path.exists()
        handlers = [
            handler
            for handler in root_logger.handlers
            if isinstance(handler, logging.FileHandler) and handler.baseFilename == str(path)
        ]
        assert len(handlers) == 1
    finally:
        for handler in list(root_logger.handlers):
            if handler not in before:
                root_logger.removeHandler(handler)
                handler.close()
