"""Process-wide logging setup."""

import logging
import logging.handlers
import pathlib
import sys

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s [%(name)s] %(message)s"

_initialized = False


def setup_logging(level: str = "INFO", log_dir: str = "") -> None:
    global _initialized
    if _initialized:
        return
    _initialized = True

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, level, logging.INFO))

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
    root.addHandler(console)

    if log_dir:
        path = pathlib.Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            path / "counter-bot.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(file_handler)

    # Library noise
    for name in ("urllib3", "apscheduler", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info("Logging: level=%s dir=%s", level, log_dir or "-")
