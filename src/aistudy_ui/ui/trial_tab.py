"""Trial tab: runs one trial at a time for the study session."""

import logging

import numpy as np
from PySide6.QtWidgets import (
    QWidget,
    QVBoxLayout,
    QHBoxLayout,
    QPushButton,
    QLabel,
    QGroupBox,
    QComboBox,
    QCheckBox,
    QButtonGroup,
    QStackedWidget,
    QMessageBox,
)
from PySide6.QtCore import Qt, Signal
from PySide6.QtGui import QPixmap, QImage

from aistudy_ui.core.box_tool import ColoredBox
from aistudy_ui.core.image_io import load_image_for_display
from aistudy_ui.core.predictions import Diagnosis
from aistudy_ui.core.session import PersistenceError, SessionController, SessionError
from aistudy_ui.core.tasks import submit
from aistudy_ui.core.trial import CONFIDENCE_SCALE, FindingClass, Trial
from . import format_iou
from .box_canvas import BoxCanvas

logger = logging.getLogger(__name__)

SLOT_STYLES = {
    "finding1": ("#00c853", "Finding 1"),
    "finding2": ("#ff9100", "Finding 2"),
}
DEFAULT_SLOT_COLOR = "#2979ff"
AI_BOX_COLOR = "#ff1744"

FINDING_CHOICES = [
    ("-- choose --", None),
    ("Finding present", FindingClass.PRESENT),
    ("Uncertain", FindingClass.UNCERTAIN),
    ("No finding", FindingClass.ABSENT),
]
FINDING_HINTS = {
    FindingClass.PRESENT: "Draw a box around the finding (required).",
    FindingClass.UNCERTAIN: "Mark the suspicious area (optional).",
    FindingClass.ABSENT: "Nothing to mark.",
}
DIAGNOSIS_CHOICES = [("YES", Diagnosis.YES), ("NO", Diagnosis.NO)]

PAGE_INITIAL, PAGE_PRE, PAGE_FEEDBACK, PAGE_POST, PAGE_SAVING = range(5)

BIG_BUTTON = """
    QPushButton {
        background-color: #212121;
        color: white;
        font-weight: bold;
        padding: 10px;
        border-radius: 5px;
    }
    QPushButton:disabled {
        background-color: #ccc;
    }
"""


def pil_to_qimage(img) -> QImage:
    arr = np.ascontiguousarray(np.array(img))
    h, w, c = arr.shape
    fmt = QImage.Format.Format_RGBA8888 if c == 4 else QImage.Format.Format_RGB888
    return QImage(arr.data, w, h, c * w, fmt).copy()


class ChoiceRow(QWidget):
    """Row of exclusive checkable buttons, one per value."""

    chosen = Signal(object)

    def __init__(self, choices, parent=None):
        super().__init__(parent)
        self.values = [v for _, v in choices]
        self.group = QButtonGroup(self)
        h = QHBoxLayout(self)
        h.setContentsMargins(0, 0, 0, 0)
        for i, (text, _) in enumerate(choices):
            b = QPushButton(text)
            b.setCheckable(True)
            self.group.addButton(b, i)
            h.addWidget(b)
        self.group.idClicked.connect(lambda i: self.chosen.emit(self.values[i]))

    def value(self):
        i = self.group.checkedId()
        return self.values[i] if i >= 0 else None

    def set_value(self, value):
        if value in self.values:
            self.group.button(self.values.index(value)).setChecked(True)

    def reset(self):
        self.group.setExclusive(False)
        for b in self.group.buttons():
            b.setChecked(False)
        self.group.setExclusive(True)


class SlotControls(QGroupBox):
    def __init__(self, slot_id, label, parent=None):
        super().__init__(label, parent)
        self.slot_id = slot_id
        v = QVBoxLayout(self)
        self.combo = QComboBox()
        for text, value in FINDING_CHOICES:
            self.combo.addItem(text, userData=value)
        v.addWidget(self.combo)
        self.hint = QLabel("")
        self.hint.setWordWrap(True)
        self.hint.setStyleSheet("color: #555;")
        v.addWidget(self.hint)
        h = QHBoxLayout()
        self.draw_btn = QPushButton("Draw box")
        self.clear_btn = QPushButton("Clear box")
        h.addWidget(self.draw_btn)
        h.addWidget(self.clear_btn)
        v.addLayout(h)

    def reset(self):
        self.combo.blockSignals(True)
        self.combo.setCurrentIndex(0)
        self.combo.blockSignals(False)
        self.hint.setText("")


class TrialTab(QWidget):
    """
    Runs the trials of one session.

    Every answer goes straight to the current ``Trial``; buttons are enabled
    from its guards. Finished trials are saved on the thread pool and the next
    trial is shown once the save succeeded.

    Parameters
    ----------
    controller : SessionController
        Session to drive; its ``on_complete`` is set by the caller
    parent : QWidget, optional
    """

    def __init__(self, controller: SessionController, parent=None):
        super().__init__(parent)
        self.controller = controller
        self.trial: Trial | None = None
        self._pending = None
        self._build()

    def _build(self):
        L = QHBoxLayout(self)
        self.canvas = BoxCanvas(self)
        self.canvas.setMinimumSize(700, 700)
        self.canvas.boxChanged.connect(self._on_box_changed)
        L.addWidget(self.canvas, 3)

        R = QVBoxLayout()
        self.title = QLabel("")
        self.title.setStyleSheet("font-size: 20px; font-weight: bold;")
        R.addWidget(self.title)
        self.mode_lbl = QLabel("")
        self.mode_lbl.setStyleSheet("color: #666;")
        R.addWidget(self.mode_lbl)

        self.pages = QStackedWidget()
        self.pages.addWidget(self._build_initial_page())
        self.pages.addWidget(self._build_pre_page())
        self.pages.addWidget(self._build_feedback_page())
        self.pages.addWidget(self._build_post_page())
        self.pages.addWidget(self._build_saving_page())
        R.addWidget(self.pages, 1)
        L.addLayout(R, 2)

    def _build_initial_page(self):
        w = QWidget()
        v = QVBoxLayout(w)
        self.slot_controls = {}
        for slot_id in self.controller.slots:
            color, label = SLOT_STYLES.get(slot_id, (DEFAULT_SLOT_COLOR, slot_id))
            sc = SlotControls(slot_id, label)
            sc.setStyleSheet(f"QGroupBox {{ color: {color}; font-weight: bold; }}")
            sc.combo.currentIndexChanged.connect(
                lambda _i, s=slot_id: self._on_finding_changed(s)
            )
            sc.draw_btn.clicked.connect(lambda _c=False, s=slot_id: self._arm(s))
            sc.clear_btn.clicked.connect(lambda _c=False, s=slot_id: self._clear_box(s))
            self.slot_controls[slot_id] = sc
            v.addWidget(sc)
            self.canvas.tool.add_slot(slot_id, color, label)

        g = QGroupBox("Diagnosis")
        gv = QVBoxLayout(g)
        self.diagnosis_row = ChoiceRow(DIAGNOSIS_CHOICES)
        self.diagnosis_row.chosen.connect(self._on_diagnosis)
        gv.addWidget(self.diagnosis_row)
        v.addWidget(g)

        self.initial_conf_group = QGroupBox("Confidence (1 = not at all, 7 = fully)")
        cv = QVBoxLayout(self.initial_conf_group)
        self.initial_conf = ChoiceRow([(str(i), i) for i in CONFIDENCE_SCALE])
        self.initial_conf.chosen.connect(lambda _v: self._refresh())
        cv.addWidget(self.initial_conf)
        v.addWidget(self.initial_conf_group)

        self.missing_lbl = QLabel("")
        self.missing_lbl.setWordWrap(True)
        self.missing_lbl.setStyleSheet("color: #b71c1c;")
        v.addWidget(self.missing_lbl)

        v.addStretch(1)
        self.next_btn = QPushButton("Next →")
        self.next_btn.setStyleSheet(BIG_BUTTON)
        self.next_btn.clicked.connect(self._submit_initial)
        v.addWidget(self.next_btn)
        return w

    def _build_pre_page(self):
        w = QWidget()
        v = QVBoxLayout(w)
        self.pre_summary = QLabel("")
        self.pre_summary.setWordWrap(True)
        v.addWidget(self.pre_summary)
        v.addWidget(QLabel("How confident are you in your diagnosis?"))
        self.pre_conf = ChoiceRow([(str(i), i) for i in CONFIDENCE_SCALE])
        self.pre_conf.chosen.connect(lambda _v: self.pre_btn.setEnabled(True))
        v.addWidget(self.pre_conf)
        v.addStretch(1)
        self.pre_btn = QPushButton("Show AI analysis →")
        self.pre_btn.setStyleSheet(BIG_BUTTON)
        self.pre_btn.clicked.connect(self._submit_pre_confidence)
        v.addWidget(self.pre_btn)
        return w

    def _build_feedback_page(self):
        w = QWidget()
        v = QVBoxLayout(w)
        g = QGroupBox("AI analysis")
        gv = QVBoxLayout(g)
        self.ai_diag_lbl = QLabel("")
        self.ai_conf_lbl = QLabel("")
        self.iou_lbl = QLabel("")
        self.iou_lbl.setWordWrap(True)
        for lbl in (self.ai_diag_lbl, self.ai_conf_lbl, self.iou_lbl):
            lbl.setStyleSheet("font-size: 15px;")
            gv.addWidget(lbl)
        self.heatmap_chk = QCheckBox("Show heatmap")
        self.heatmap_chk.toggled.connect(self.canvas.set_heatmap_visible)
        gv.addWidget(self.heatmap_chk)
        v.addWidget(g)

        v.addWidget(QLabel("Final diagnosis:"))
        self.final_row = ChoiceRow(DIAGNOSIS_CHOICES)
        self.final_row.chosen.connect(self._on_revise)
        v.addWidget(self.final_row)
        v.addStretch(1)
        b = QPushButton("Continue →")
        b.setStyleSheet(BIG_BUTTON)
        b.clicked.connect(self._continue_from_feedback)
        v.addWidget(b)
        return w

    def _build_post_page(self):
        w = QWidget()
        v = QVBoxLayout(w)
        v.addWidget(QLabel("How confident are you in your final diagnosis?"))
        self.post_conf = ChoiceRow([(str(i), i) for i in CONFIDENCE_SCALE])
        self.post_conf.chosen.connect(lambda _v: self.post_btn.setEnabled(True))
        v.addWidget(self.post_conf)
        v.addStretch(1)
        self.post_btn = QPushButton("Finish trial")
        self.post_btn.setStyleSheet(BIG_BUTTON)
        self.post_btn.clicked.connect(self._submit_final_confidence)
        v.addWidget(self.post_btn)
        return w

    def _build_saving_page(self):
        w = QWidget()
        v = QVBoxLayout(w)
        self.saving_lbl = QLabel("Saving…")
        self.saving_lbl.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.saving_lbl.setWordWrap(True)
        v.addWidget(self.saving_lbl, 1)
        self.save_again_btn = QPushButton("Save again")
        self.save_again_btn.setStyleSheet(BIG_BUTTON)
        self.save_again_btn.clicked.connect(self._commit)
        self.save_again_btn.hide()
        v.addWidget(self.save_again_btn)
        return w

    # session -----------------------------------------------------------

    def start(self, user_id: str):
        """Load the AI dataset in the background, then resume the session."""
        self.title.setText("Loading…")
        self.pages.setCurrentIndex(PAGE_SAVING)
        self.saving_lbl.setText("Loading study data…")
        sigs = submit(self.controller.lookup.load)
        sigs.finished.connect(lambda _n: self._resume(user_id))
        sigs.error.connect(self._on_load_failed)
        self._pending = sigs

    def _resume(self, user_id):
        self._pending = None
        try:
            trial = self.controller.start(user_id)
        except KeyError:
            self._on_load_failed(f"Unknown participant {user_id!r}")
            return
        except (SessionError, ValueError) as e:
            self._on_load_failed(e)
            return
        if trial is not None:
            self.show_trial(trial)

    def _on_load_failed(self, err):
        self._pending = None
        logger.error("Could not start session: %s", err)
        self.pages.setCurrentIndex(PAGE_SAVING)
        self.saving_lbl.setText(f"Could not start the session:\n\n{err}")

    def show_trial(self, trial: Trial):
        self.trial = trial
        total = self.controller.total_trials
        self.title.setText(f"Trial {trial.index + 1} / {total}")
        self.mode_lbl.setText("With AI assistant" if trial.ai_assisted else "Without AI")

        for sc in self.slot_controls.values():
            sc.reset()
        self.diagnosis_row.reset()
        self.initial_conf.reset()
        self.pre_conf.reset()
        self.post_conf.reset()
        self.final_row.reset()
        self.heatmap_chk.setChecked(False)
        self.initial_conf_group.setVisible(not trial.ai_assisted)

        self.canvas.tool.clear_all()
        self.canvas.set_references([])
        self.canvas.set_heatmap(None)
        self._load_images(trial)
        self.canvas.set_interactive(True)
        self.pages.setCurrentIndex(PAGE_INITIAL)
        self._refresh()

    def _load_images(self, trial):
        pred = trial.prediction
        try:
            img = load_image_for_display(pred.image_path)
        except OSError as e:
            logger.error("Cannot load image %s: %s", pred.image_path, e)
            self.canvas.clear_image()
            return
        self.canvas.set_image(
            QPixmap.fromImage(pil_to_qimage(img)), pred.image_path, pred.image_size
        )
        if pred.heatmap_path and trial.ai_assisted:
            try:
                heat = load_image_for_display(pred.heatmap_path)
                self.canvas.set_heatmap(pil_to_qimage(heat))
            except OSError as e:
                logger.warning("Cannot load heatmap %s: %s", pred.heatmap_path, e)

    # initial step ------------------------------------------------------

    def _on_finding_changed(self, slot_id):
        sc = self.slot_controls[slot_id]
        finding = sc.combo.currentData()
        if finding is None or self.trial is None:
            return
        self.trial.set_finding(slot_id, finding)
        sc.hint.setText(FINDING_HINTS[finding])
        if finding == FindingClass.ABSENT:
            self.canvas.tool.clear(slot_id)
            if self.canvas.tool.active_slot_id == slot_id:
                self.canvas.activate(None)
        self.canvas.update()
        self._refresh()

    def _arm(self, slot_id):
        if self.trial is not None and self.trial.can_draw(slot_id):
            self.canvas.activate(slot_id)
            self._refresh()

    def _clear_box(self, slot_id):
        if self.trial is not None and self.trial.set_box(slot_id, None):
            self.canvas.tool.clear(slot_id)
            self.canvas.update()
            self._refresh()

    def _on_box_changed(self, slot_id, box):
        if self.trial is None or not self.trial.set_box(slot_id, box):
            self.canvas.tool.clear(slot_id)
            self.canvas.update()
        self._refresh()

    def _on_diagnosis(self, diagnosis):
        if self.trial is not None:
            self.trial.set_diagnosis(diagnosis)
        self._refresh()

    def _refresh(self):
        t = self.trial
        if t is None:
            return
        active = self.canvas.tool.active_slot_id
        for slot_id, sc in self.slot_controls.items():
            sc.draw_btn.setEnabled(t.can_draw(slot_id))
            sc.draw_btn.setText("Drawing…" if active == slot_id else "Draw box")
            sc.clear_btn.setEnabled(t.boxes.get(slot_id) is not None)
        missing = t.missing_requirements()
        ok = t.can_submit_initial()
        if not t.ai_assisted and self.initial_conf.value() is None:
            missing = missing + ["rate your confidence"]
            ok = False
        self.missing_lbl.setText("\n".join(missing))
        self.next_btn.setEnabled(ok)

    def _submit_initial(self):
        t = self.trial
        if t.ai_assisted:
            if not t.submit_initial():
                return
            self.canvas.set_interactive(False)
            self.pre_summary.setText(f"Your diagnosis: {t.initial_diagnosis.name}")
            self.pre_btn.setEnabled(False)
            self.pages.setCurrentIndex(PAGE_PRE)
            return
        if t.submit_initial(self.initial_conf.value()):
            self.canvas.set_interactive(False)
            self._commit()

    # AI feedback -------------------------------------------------------

    def _submit_pre_confidence(self):
        t = self.trial
        if not t.submit_pre_confidence(self.pre_conf.value()):
            return
        pred = t.prediction
        self.ai_diag_lbl.setText(f"AI diagnosis: {pred.diagnosis.name}")
        self.ai_conf_lbl.setText(f"AI confidence: {round(pred.confidence * 100)}%")
        scores = t.iou_by_slot()
        if pred.box is None:
            self.iou_lbl.setText("The AI marked no region.")
        elif not scores:
            self.iou_lbl.setText("You marked no region.")
        else:
            lines = []
            for slot_id, score in scores.items():
                _, label = SLOT_STYLES.get(slot_id, (DEFAULT_SLOT_COLOR, slot_id))
                lines.append(f"Overlap with AI ({label}): {format_iou(score)}")
            self.iou_lbl.setText("\n".join(lines))
        if pred.box is not None:
            self.canvas.set_references([ColoredBox("ai", pred.box, AI_BOX_COLOR, "AI")])
        self.heatmap_chk.setEnabled(self.canvas.heatmap is not None)
        self.final_row.set_value(t.final_diagnosis)
        self.pages.setCurrentIndex(PAGE_FEEDBACK)

    def _on_revise(self, diagnosis):
        if self.trial is not None:
            self.trial.revise_diagnosis(diagnosis)

    def _continue_from_feedback(self):
        if self.trial.continue_from_feedback():
            self.post_btn.setEnabled(False)
            self.pages.setCurrentIndex(PAGE_POST)

    def _submit_final_confidence(self):
        if self.trial.submit_final_confidence(self.post_conf.value()):
            self._commit()

    # commit ------------------------------------------------------------

    def _commit(self):
        if self._pending is not None:
            return
        self.saving_lbl.setText("Saving…")
        self.save_again_btn.hide()
        self.pages.setCurrentIndex(PAGE_SAVING)
        sigs = submit(self.controller.persist)
        sigs.finished.connect(self._on_saved)
        sigs.error.connect(self._on_save_failed)
        self._pending = sigs

    def _on_saved(self, _record):
        self._pending = None
        try:
            trial = self.controller.advance()
        except SessionError as e:
            logger.error("Cannot continue session: %s", e)
            self.saving_lbl.setText(f"The session cannot continue:\n\n{e}")
            return
        if trial is not None:
            self.show_trial(trial)

    def _on_save_failed(self, err):
        self._pending = None
        if not isinstance(err, PersistenceError):
            logger.error("Unexpected error while saving: %s", err)
        self.saving_lbl.setText(f"The trial could not be saved.\n\n{err}")
        self.save_again_btn.show()
        answer = QMessageBox.warning(
            self,
            "Save failed",
            f"The trial could not be saved:\n\n{err}\n\nTry again?",
            QMessageBox.StandardButton.Retry | QMessageBox.StandardButton.Cancel,
            QMessageBox.StandardButton.Retry,
        )
        if answer == QMessageBox.StandardButton.Retry:
            self._commit()
