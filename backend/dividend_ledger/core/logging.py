import logging
import sys

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
_NOISY_LOGGERS = ("sqlalchemy", "httpx", "httpcore", "aiosqlite", "asyncpg")


def setup_logging(level: int = logging.INFO) -> None:
    """Send ledger logs to stdout; repeated calls only adjust the level."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if any(getattr(handler, "_ledger_handler", False) for handler in root_logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    handler._ledger_handler = True  # type: ignore[attr-defined]
    root_logger.addHandler(handler)

    # Provider and store drivers log every request at INFO
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
