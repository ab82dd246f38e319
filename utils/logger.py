import atexit
import logging
import sys
from logging.handlers import RotatingFileHandler, QueueHandler, QueueListener
from queue import Queue
from pathlib import Path
from typing import Dict, Optional

from config.settings import LOG_LEVEL, LOG_FILE

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Every component logger for a given file shares one queue and one listener,
# so the engine, ingest and store loggers can rotate segmenter.log together.
_LISTENERS: Dict[Path, QueueListener] = {}
_QUEUES: Dict[Path, Queue] = {}


def _listener_queue(log_file: Path, max_bytes: int, backup_count: int) -> Queue:
    if log_file in _QUEUES:
        return _QUEUES[log_file]

    log_file.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = RotatingFileHandler(
        log_file,
        mode="a",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
        delay=True,  # opened on first record
    )
    file_handler.setFormatter(formatter)

    q: Queue = Queue(-1)
    listener = QueueListener(q, file_handler, respect_handler_level=True)
    listener.start()

    _QUEUES[log_file] = q
    _LISTENERS[log_file] = listener
    return q


def shutdown_logging() -> None:
    """Drain every queue and close file handles. Safe to call more than once."""
    while _LISTENERS:
        log_file, listener = _LISTENERS.popitem()
        _QUEUES.pop(log_file, None)
        listener.stop()
        for handler in listener.handlers:
            handler.close()


atexit.register(shutdown_logging)


def setup_logger(
    name: str,
    log_file: str = LOG_FILE,
    level=LOG_LEVEL,
    max_bytes: int = 1024 * 1024 * 5,
    backup_count: int = 3,
    echo_level: Optional[str] = None,
):
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    if not logger.handlers:
        q = _listener_queue(Path(log_file).resolve(), max_bytes, backup_count)
        qh = QueueHandler(q)
        qh.setLevel(level)
        logger.addHandler(qh)

        if echo_level:
            # CLI runs surface problems on stderr as well
            echo = logging.StreamHandler(sys.stderr)
            echo.setLevel(echo_level)
            echo.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(echo)

    return logger
