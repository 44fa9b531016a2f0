"""
Append-only audit sink.

Every hardening action is recorded as ``<timestamp>: <message>`` in a
central log file shared by all routines. The file is opened in append mode
and never truncated or rotated here; rotation is logrotate's job.
"""

import logging
from pathlib import Path

from defensys.branding import ds_print
from defensys.exceptions import PreconditionError

DEFAULT_AUDIT_LOG = Path("/var/log/security_hardening.log")
AUDIT_FORMAT = "%(asctime)s: %(message)s"
AUDIT_DATEFMT = "%Y-%m-%d %H:%M:%S"

_STATUS_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "thinking": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

logger = logging.getLogger(__name__)


class AuditLog:
    """
    Timestamped, append-only log of hardening actions.

    Each entry goes to the audit file and, when ``echo`` is set, to the
    console through :func:`ds_print`.
    """

    def __init__(self, path: str | Path = DEFAULT_AUDIT_LOG, echo: bool = True):
        self.path = Path(path)
        self.echo = echo
        self._logger = logging.getLogger(f"defensys.audit:{self.path}")
        self._logger.propagate = False
        self._logger.setLevel(logging.INFO)
        self._handler = None

        if not self._logger.handlers:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                handler = logging.FileHandler(self.path, mode="a", encoding="utf-8")
            except OSError as e:
                raise PreconditionError(f"Cannot open audit log {self.path}: {e}") from e
            handler.setFormatter(logging.Formatter(AUDIT_FORMAT, datefmt=AUDIT_DATEFMT))
            self._logger.addHandler(handler)
            self._handler = handler

    def record(self, message: str, status: str = "info") -> None:
        """Append one entry and echo it to the console."""
        level = _STATUS_LEVELS.get(status, logging.INFO)
        self._logger.log(level, message)
        logger.debug("audit: %s", message)
        if self.echo:
            ds_print(message, status)

    def info(self, message: str) -> None:
        self.record(message, "info")

    def success(self, message: str) -> None:
        self.record(message, "success")

    def warning(self, message: str) -> None:
        self.record(message, "warning")

    def error(self, message: str) -> None:
        self.record(message, "error")

    def close(self) -> None:
        """Detach and close the file handler owned by this instance."""
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()
        self._handler = None
