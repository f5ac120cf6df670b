"""Logging setup: JSON records on stdout, stamped with the current request id."""

import logging
import sys
import uuid
from contextvars import ContextVar

from fastapi import Request
from pythonjsonlogger import jsonlogger

from app.core.config import settings

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


class RequestIdFilter(logging.Filter):
    """Attach the request id of the running request to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True


def setup_logging() -> None:
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    if settings.LOG_JSON:
        formatter: logging.Formatter = jsonlogger.JsonFormatter(
            "%(levelname)s %(name)s %(message)s %(asctime)s %(request_id)s"
        )
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s")
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)
    root.setLevel(settings.LOG_LEVEL)

    # quiet noisy loggers
    logging.getLogger("uvicorn.access").setLevel("WARNING")


def get_request_id(req: Request) -> str:
    rid = req.headers.get(settings.REQUEST_ID_HEADER)
    return rid if rid else uuid.uuid4().hex
