"""
Logging setup: plain or JSON output for the platform and the worker.

Modules log through ``logging.getLogger(__name__)`` with a bracketed
subsystem tag in the message ("[PROVISION] ...", "[ROUTER] ..."). The
orchestrator binds the instance being worked on through ``instance_id_var``
so every line it emits while provisioning can be correlated.
"""

import json
import logging
import sys
from contextvars import ContextVar

instance_id_var: ContextVar[str] = ContextVar("instance_id", default="")

PLAIN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(instance)s%(message)s"


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        inst_id = instance_id_var.get("")
        if inst_id:
            log_entry["instance_id"] = inst_id

        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(log_entry)


class InstanceContextFilter(logging.Filter):
    """Prefix plain log lines with the bound instance id, if any."""

    def filter(self, record: logging.LogRecord) -> bool:
        inst_id = instance_id_var.get("")
        record.instance = f"[{inst_id[:8]}] " if inst_id else ""
        return True


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure the root logger once per process."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.addFilter(InstanceContextFilter())
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))

    root.addHandler(handler)
    root.setLevel(level.upper())

    # Docker SDK and httpx are chatty at DEBUG/INFO
    logging.getLogger("docker").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
