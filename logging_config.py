import logging

from config import LOG_LEVEL


def setup_logging() -> None:
    """Configure root logging once for the whole process."""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # the per-statement SQL log is controlled by SQL_ECHO, not LOG_LEVEL
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
