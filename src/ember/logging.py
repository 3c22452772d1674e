import logging
import sys
from contextvars import ContextVar
from typing import Optional

# Set by the job runner for the duration of one capture job, on the worker thread
job_id_ctx: ContextVar[Optional[str]] = ContextVar("job_id", default=None)


def get_job_id() -> str:
    """Current job id, or '-' outside a job."""
    return job_id_ctx.get() or "-"


class JobIDFilter(logging.Filter):
    """Stamps every record with the job it was logged from."""
    def filter(self, record):
        record.job_id = get_job_id()
        return True


def configure_logging(level: str = "INFO"):
    """Root logger writes to stderr with the job id between level and logger name."""
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | [%(job_id)s] | %(name)s:%(funcName)s:%(lineno)d - %(message)s"
    ))
    handler.addFilter(JobIDFilter())
    root.addHandler(handler)

    # The OpenAI SDK logs every HTTP request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


configure_logging()
logger = logging.getLogger("ember")
