"""
Background Task Execution
=========================

Runs blocking study operations off the GUI thread on Qt's global
QThreadPool. Two things go through here: the one-time load of the AI
prediction CSV and the commit of a finished trial to the study workbooks.

Classes
-------
TaskSignals
    Signals carrying a task's result or error back to the GUI thread
Task
    QRunnable wrapper around a plain function

Functions
---------
submit
    Submit a function for background execution

Notes
-----
Signals emitted from a worker thread are delivered to receivers living on
the GUI thread through queued connections, so slots connected to
``finished`` and ``error`` may touch widgets directly.

The ``error`` signal carries the exception object itself rather than its
message, so a receiver can tell a ``PersistenceError`` (retry makes sense)
apart from a programming error.

Examples
--------
>>> from aistudy_ui.core.tasks import submit
>>> signals = submit(controller.persist)
>>> signals.finished.connect(on_saved)
>>> signals.error.connect(on_save_failed)

See Also
--------
aistudy_ui.ui.trial_tab : Commits trials through submit
"""

import logging

from PySide6.QtCore import QObject, QRunnable, QThreadPool, Signal

logger = logging.getLogger(__name__)


class TaskSignals(QObject):
    """
    Signals
    -------
    finished : Signal(object)
        Emitted with the function's return value
    error : Signal(object)
        Emitted with the exception the function raised
    """

    finished = Signal(object)
    error = Signal(object)


class Task(QRunnable):
    """
    Background wrapper executing ``fn(*args, **kwargs)`` in the thread pool.

    Exceptions raised by ``fn`` are logged and reported through
    ``signals.error``; they never escape into the pool.
    """

    def __init__(self, fn, *args, **kwargs):
        super().__init__()
        self.fn = fn
        self.args = args
        self.kwargs = kwargs
        self.signals = TaskSignals()

    def run(self):
        try:
            res = self.fn(*self.args, **self.kwargs)
        except Exception as e:
            logger.debug("Task %s failed: %s", getattr(self.fn, "__name__", self.fn), e)
            self.signals.error.emit(e)
        else:
            self.signals.finished.emit(res)


_pool = QThreadPool.globalInstance()


def submit(fn, *args, **kwargs):
    """
    Submit a function for background execution in the global thread pool.

    Returns
    -------
    TaskSignals
        Connect to ``finished`` and ``error`` to handle the outcome
    """
    t = Task(fn, *args, **kwargs)
    _pool.start(t)
    return t.signals
