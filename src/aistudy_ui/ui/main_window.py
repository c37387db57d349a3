"""Main window for the annotation study."""

import logging

from PySide6.QtWidgets import (
    QMainWindow,
    QStackedWidget,
    QWidget,
    QVBoxLayout,
    QLabel,
    QTextEdit,
)
from PySide6.QtCore import Qt

from aistudy_ui.core.metrics import compute_trial_metrics, metrics_to_text
from aistudy_ui.core.session import SessionController
from .trial_tab import TrialTab

logger = logging.getLogger(__name__)


class MainWindow(QMainWindow):
    """
    Main window showing the trial tab, then a completion page.

    Parameters
    ----------
    controller : SessionController
        Session to run; its ``on_complete`` is pointed at ``show_completion``
    parent : QWidget, optional

    Attributes
    ----------
    trial_tab : TrialTab
    """

    def __init__(self, controller: SessionController, parent=None):
        super().__init__(parent)
        self.controller = controller
        self.setWindowTitle("AI-Assist Annotation Study")
        self.setMinimumSize(1200, 800)

        self.stack = QStackedWidget()
        self.setCentralWidget(self.stack)
        self.trial_tab = TrialTab(controller)
        self.stack.addWidget(self.trial_tab)
        self.stack.addWidget(self._create_completion_page())
        controller.on_complete = self.show_completion

    def _create_completion_page(self):
        widget = QWidget()
        layout = QVBoxLayout(widget)
        label = QLabel("Thank you! This part of the study is complete.")
        label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        label.setStyleSheet("font-size: 22px; font-weight: bold; margin: 20px;")
        layout.addWidget(label)
        self.summary_text = QTextEdit()
        self.summary_text.setReadOnly(True)
        layout.addWidget(self.summary_text, 1)
        return widget

    def start(self, user_id: str):
        self.stack.setCurrentIndex(0)
        self.trial_tab.start(user_id)

    def show_completion(self):
        participant = self.controller.participant
        logger.info("Session finished for %s", participant.user_id)
        try:
            df = self.controller.store.read_trials(participant.user_id)
            if "phase" in df.columns and self.controller.phase is not None:
                df = df[df["phase"] == self.controller.phase]
            self.summary_text.setText(metrics_to_text(compute_trial_metrics(df)))
        except (OSError, ValueError, KeyError) as e:
            logger.warning("Could not summarize trials of %s: %s", participant.user_id, e)
            self.summary_text.setText("Summary unavailable.")
        self.stack.setCurrentIndex(1)
