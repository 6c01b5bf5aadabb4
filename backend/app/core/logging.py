import logging

from backend.app.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging() -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # engine echo is too chatty at INFO and would print bound parameters
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
