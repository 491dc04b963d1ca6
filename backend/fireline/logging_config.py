"""JSON logging to stdout."""
import logging
import sys
from pythonjsonlogger import jsonlogger

# Loggers that are too chatty at INFO for an incident console
QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "uvicorn.access")


def setup_logging(level: str = "INFO") -> None:
    level = level.upper()
    root = logging.getLogger()
    root.setLevel(level)
    for existing in list(root.handlers):
        root.removeHandler(existing)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level"},
            timestamp=True,
        )
    )
    root.addHandler(handler)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
