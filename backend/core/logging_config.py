import logging
from typing import Optional

from core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for the API process and scripts."""
    logging.basicConfig(
        level=(level or settings.log_level),
        format=LOG_FORMAT,
    )
    # SQL echo is controlled by DATABASE_ECHO, keep the engine logger quiet otherwise
    if not settings.database_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
