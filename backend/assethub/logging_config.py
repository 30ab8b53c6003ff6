"""Logging setup shared by the API process and Celery workers."""
import logging

from assethub.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    """Configure root logging from settings. Safe to call more than once."""
    settings = get_settings()
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("assethub").setLevel(level)
    # SQL echo is controlled by settings.debug on the engine itself.
    logging.getLogger("sqlalchemy.engine").propagate = settings.debug
