import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Attach a single stderr handler to the ``pgbranch`` logger."""
    pkg_logger = logging.getLogger("pgbranch")
    pkg_logger.setLevel(level.upper())

    # Remove existing handlers to avoid duplication
    if pkg_logger.handlers:
        pkg_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    pkg_logger.addHandler(handler)
    pkg_logger.propagate = False

    # SQL echo is noisy at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


logger = logging.getLogger("pgbranch")
