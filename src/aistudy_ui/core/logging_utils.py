"""
Logging setup for the annotation study.

Every record is stamped with the participant and trial the session is
working on, so a failed save in ``aistudy_errors.log`` can be matched to
the row that is missing from ``trials.xlsx``::

    2026-03-02 14:05:11 ERROR [1-AB3CD/trial_7] aistudy_ui.core.session: ...

The session controller updates the stamp through ``set_log_context``.
Records logged outside a session carry ``-`` for both fields.
"""

import logging
import logging.handlers
import sys
from pathlib import Path

from .config import StudySettings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(participant)s/%(trial)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Shared by the GUI thread and the save worker; one session per process.
_context = {"participant": "-", "trial": "-"}


def set_log_context(participant=None, trial=None):
    """Set the participant and trial id stamped on subsequent records."""
    _context["participant"] = participant or "-"
    _context["trial"] = trial or "-"


class TrialContextFilter(logging.Filter):
    """Adds ``participant`` and ``trial`` attributes to every record."""

    def filter(self, record):
        record.participant = _context["participant"]
        record.trial = _context["trial"]
        return True


def _attach(root, handler, level):
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(TrialContextFilter())
    root.addHandler(handler)


def setup_logging(settings: StudySettings) -> None:
    """
    Send study logs to the console, a daily ``aistudy.log`` and a size-capped
    ``aistudy_errors.log`` under ``settings.log_dir``.
    """
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    level = getattr(logging, settings.log_level.upper())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    _attach(root, logging.StreamHandler(sys.stdout), level)
    _attach(
        root,
        logging.handlers.TimedRotatingFileHandler(
            log_dir / "aistudy.log",
            when=settings.log_rotation_interval,
            backupCount=settings.log_rotation_count,
            encoding="utf-8",
        ),
        level,
    )
    _attach(
        root,
        logging.handlers.RotatingFileHandler(
            log_dir / "aistudy_errors.log",
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        ),
        logging.ERROR,
    )

    # image decoding and workbook parsing are chatty at DEBUG
    for name in ("PIL", "openpyxl"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
