"""Structured JSON logging configuration."""
import logging
import sys
from pythonjsonlogger import jsonlogger
from app.core.config import settings
from app.middleware.request_id import RequestIdFilter


def setup_logging(level: int = logging.INFO) -> None:
    """JSON lines in production, plain text everywhere else."""
    if getattr(settings, 'APP_ENV', 'development') == "production":
        handler = logging.StreamHandler(sys.stdout)
        formatter = jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(request_id)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
        handler.setFormatter(formatter)
        handler.addFilter(RequestIdFilter())
        logging.root.handlers = [handler]
        logging.root.setLevel(level)
    else:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
        )
    # SQL echo is noisy next to the approval audit lines
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
