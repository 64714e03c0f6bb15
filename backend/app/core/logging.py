"""Logging setup shared by the API process and the Celery workers."""

import logging
import sys
from datetime import UTC, datetime

from celery import current_task

NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "botocore": logging.WARNING,
    "boto3": logging.WARNING,
    "urllib3": logging.WARNING,
    "httpcore": logging.WARNING,
    "httpx": logging.WARNING,
    "celery": logging.INFO,
}


class SaasifyFormatter(logging.Formatter):
    """``timestamp | LEVEL | logger [job] | message``.

    Inside a Celery task the job id (which is also the task id) is added so
    every line of a provisioning run can be grepped out of a worker log.
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        source = record.name
        job_id = _current_job_id()
        if job_id:
            source = f"{source} [{job_id}]"

        line = f"{timestamp} | {record.levelname:<8} | {source} | {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _current_job_id() -> str | None:
    task = current_task
    if not task:
        return None
    return getattr(task.request, "id", None)


def setup_logging(log_level: str = "INFO") -> None:
    level = getattr(logging, log_level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)

    # Uvicorn reload and Celery both call this; never stack handlers
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SaasifyFormatter())
    root.addHandler(handler)

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)
    logging.getLogger("app").setLevel(level)
