from __future__ import annotations

from collections.abc import Iterator
import contextlib
import contextvars
import logging
import uuid

_UNSET = "-"
REQUEST_ID_MAX_LENGTH = 64
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [req=%(request_id)s] %(message)s"

# Third-party loggers that are chatty at INFO during every batch cycle.
_QUIET_LOGGERS = ("aiosmtplib", "urllib3", "sqlalchemy.engine")

_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("remindly_request_id", default=_UNSET)


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = _request_id.get()
        return True


def new_request_id(incoming: str | None = None) -> str:
    """Reuse a caller-supplied id (bounded in length) or mint a short random one."""
    value = (incoming or "").strip()
    if value:
        return value[:REQUEST_ID_MAX_LENGTH]
    return uuid.uuid4().hex[:12]


@contextlib.contextmanager
def request_id_scope(value: str) -> Iterator[str]:
    token = _request_id.set(value)
    try:
        yield value
    finally:
        _request_id.reset(token)


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler.addFilter(RequestIdFilter())
    logging.basicConfig(level=level.upper(), handlers=[handler], force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
