# sis_import/logging_setup.py
from __future__ import annotations

import logging
import logging.config

LOGGER_NAME = "sis_import"


class DefaultContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "batch_id"):
            record.batch_id = "-"
        if not hasattr(record, "artifact"):
            record.artifact = "-"
        return True


def setup_logging(verbosity: int = 1) -> None:
    """
    Configure a consistent logger for the project.
    - INFO by default, DEBUG when verbosity >= 2
    - Always prints batch_id and artifact so logs are grep-able.
    """
    level = logging.DEBUG if verbosity >= 2 else logging.INFO

    fmt = (
        "%(asctime)s %(levelname)s "
        "batch=%(batch_id)s artifact=%(artifact)s "
        "%(message)s"
    )

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"std": {"format": fmt}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "std",
                "level": level,
                "filters": ["default_context"]
            }
        },
        "loggers": {
            LOGGER_NAME: {"handlers": ["console"], "level": level, "propagate": False}
        },
        "filters": {
            "default_context": {
                "()": "logging_setup.DefaultContextFilter"
            }
        },
    })


class _Adapter(logging.LoggerAdapter):
    """LoggerAdapter that ensures batch_id and artifact keys exist, and avoids LogRecord collisions."""

    _RESERVED = {
        "name", "msg", "args", "levelname", "levelno", "pathname", "filename", "module", "lineno", "funcName",
        "created", "asctime", "msecs", "relativeCreated", "thread", "threadName", "processName", "process",
        "exc_info", "exc_text", "stack_info", "stacklevel", "message", "taskName",
    }

    def process(self, msg: str, kwargs):
        extra = dict(self.extra)
        user_extra = kwargs.get("extra") or {}
        for k, v in user_extra.items():
            key = k if k not in self._RESERVED else f"meta_{k}"
            if key not in extra:  # don't clobber adapter defaults
                extra[key] = v
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(*, artifact: str, batch_id: int | str | None) -> logging.LoggerAdapter:
    """
    Create a logger bound to artifact + batch_id.
    Usage:
        log = get_logger(artifact="courses", batch_id=7)
        log.info("import started", extra={"rows": 12})
    """
    base = logging.getLogger(LOGGER_NAME)
    return _Adapter(base, extra={"artifact": artifact, "batch_id": "-" if batch_id is None else batch_id})
