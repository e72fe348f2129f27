import logging
import sys
from typing import Optional

import structlog
from index_service.core.config import settings

# Libraries that log every request or retry at INFO
QUIET_LOGGERS = {
    "uvicorn": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "openai": logging.WARNING,
    "botocore": logging.WARNING,
    "boto3": logging.WARNING,
    "urllib3": logging.WARNING,
    "fitz": logging.WARNING,
    "celery": logging.INFO,
}


def _drop_empty_job_fields(logger, method_name, event_dict):
    """Stage loggers bind doc_hash/stage lazily; unset values are noise in JSON."""
    for key in ("doc_hash", "stage", "job_id"):
        if key in event_dict and event_dict[key] is None:
            del event_dict[key]
    return event_dict


def setup_logging(role: Optional[str] = None):
    """Configures structlog over stdlib logging for the API process or a stage worker."""
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _drop_empty_job_fields,
    ]

    if settings.LOG_LEVEL == "DEBUG":
        shared_processors.append(structlog.processors.CallsiteParameterAdder(
            {
                structlog.processors.CallsiteParameter.MODULE,
                structlog.processors.CallsiteParameter.LINENO,
            }
        ))

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
    )

    root_logger = logging.getLogger()
    # Celery's worker hijacks the root logger; re-running setup must not stack handlers
    for existing in list(root_logger.handlers):
        if getattr(existing, "_index_service_handler", False):
            root_logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler._index_service_handler = True
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.LOG_LEVEL)

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    structlog.contextvars.clear_contextvars()
    if role:
        structlog.contextvars.bind_contextvars(role=role)

    log = structlog.get_logger(settings.PROJECT_NAME)
    log.info("Logging configured", log_level=settings.LOG_LEVEL, role=role or "library")
