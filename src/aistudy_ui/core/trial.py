"""
Trial State Machine
===================

One trial is one participant judging one image. This module holds the
answers captured during a trial, enforces the order in which they may be
given, and turns a finished trial into the record that gets persisted.

Classes
-------
FindingClass
    Per-slot classification: present ("tunet"), uncertain ("bizonytalan"),
    absent ("nincsen")
TrialStep
    Steps of the trial lifecycle
TrialRecord
    Immutable persisted form of a completed trial
Trial
    The state machine

Lifecycle
---------
AI-assisted trials::

    INITIAL -> PRE_CONFIDENCE -> FEEDBACK -> POST_CONFIDENCE -> READY -> COMMITTED

Trials without AI collapse to::

    INITIAL -> READY -> COMMITTED

INITIAL
    Finding classification per slot, boxes, tentative diagnosis (and, for
    no-AI trials, the confidence).
PRE_CONFIDENCE
    Confidence 1-7 on the initial diagnosis, shown next to the participant's
    own boxes.
FEEDBACK
    AI diagnosis, confidence, box and heatmap are revealed; the diagnosis may
    be revised any number of times.
POST_CONFIDENCE
    Confidence 1-7 on the final diagnosis.
READY
    Answers are frozen and the record can be built, possibly several times
    if persisting fails and is retried.
COMMITTED
    The record was stored; the session moves on.

Guards
------
Transition methods return False and change nothing when their guard fails,
so a UI can simply keep the corresponding button disabled. A PRESENT slot
needs a box, an UNCERTAIN slot may have one, and an ABSENT slot never has
one (classifying a slot ABSENT clears its box).

See Also
--------
aistudy_ui.core.session : Creates trials and persists their records
"""

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum

from .geometry import Box, iou
from .predictions import AIPrediction, Diagnosis

logger = logging.getLogger(__name__)

CONFIDENCE_SCALE = tuple(range(1, 8))
DEFAULT_SLOTS = ("finding1", "finding2")


class FindingClass(str, Enum):
    PRESENT = "tunet"
    UNCERTAIN = "bizonytalan"
    ABSENT = "nincsen"


class TrialStep(str, Enum):
    INITIAL = "initial"
    PRE_CONFIDENCE = "pre-confidence"
    FEEDBACK = "feedback"
    POST_CONFIDENCE = "post-confidence"
    READY = "ready"
    COMMITTED = "committed"


def valid_confidence(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value in CONFIDENCE_SCALE


@dataclass(frozen=True)
class TrialRecord:
    """
    Persisted form of one completed trial.

    All boxes are in natural image pixels. ``diagnosis`` and ``confidence``
    repeat the final values so the record reads the same for trials with
    and without AI. Keyed by (``participant_id``, ``trial_id``); writing the
    same key again replaces the earlier record.
    """

    participant_id: str
    trial_id: str
    phase: str
    trial_index: int
    image_id: int
    image_name: str
    start_time: float
    end_time: float
    duration: float
    findings: dict
    boxes: dict
    box_drawn: bool
    diagnosis: str
    confidence: int
    initial_diagnosis: str
    initial_confidence: int
    final_diagnosis: str
    final_confidence: int
    reverted_decision: bool
    ai_shown: bool
    image_width: float | None = None
    image_height: float | None = None
    ai_diagnosis: str | None = None
    ai_confidence: float | None = None
    ai_box: dict | None = None
    ai_fallback: bool | None = None
    iou: dict = field(default_factory=dict)
    best_iou: float | None = None
    ground_truth_raw: int = -1
    ground_truth_binary: int = -1
    prediction: int = -1

    def to_dict(self) -> dict:
        return asdict(self)

    def to_row(self) -> dict:
        """Flat row for tabular storage; nested mappings become JSON text."""
        row = self.to_dict()
        for key in ("findings", "boxes", "ai_box", "iou"):
            row[key] = json.dumps(row[key]) if row[key] is not None else None
        return row


class Trial:
    """
    Answers and step of a single trial.

    Parameters
    ----------
    trial_id : str
        Deterministic id, e.g. ``"trial_3"`` or ``"p2_trial_3"``
    index : int
        0-based position in the phase's image sequence
    image_id : int
        Image index taken from the sequence
    prediction : AIPrediction
        AI record for the image (possibly a fallback); also supplies the image
        path and ground-truth metadata for trials without AI
    ai_assisted : bool
        Whether the feedback loop is part of this trial
    phase : str, default="phase1"
    slots : sequence of str
        Finding slot ids
    clock : callable, default=time.time
        Timestamp source, injectable for tests

    Examples
    --------
    >>> t = Trial("trial_1", 0, 7, pred, ai_assisted=False)
    >>> t.set_finding("finding1", FindingClass.ABSENT)
    True
    >>> t.set_finding("finding2", FindingClass.ABSENT)
    True
    >>> t.set_diagnosis(Diagnosis.NO)
    True
    >>> t.submit_initial(confidence=3)
    True
    >>> t.step
    <TrialStep.READY: 'ready'>
    """

    def __init__(
        self,
        trial_id: str,
        index: int,
        image_id: int,
        prediction: AIPrediction,
        ai_assisted: bool,
        phase: str = "phase1",
        slots=DEFAULT_SLOTS,
        clock=time.time,
    ):
        self.trial_id = trial_id
        self.index = index
        self.image_id = image_id
        self.prediction = prediction
        self.ai_assisted = ai_assisted
        self.phase = phase
        self._clock = clock
        self.step = TrialStep.INITIAL
        self.findings: dict[str, FindingClass | None] = {s: None for s in slots}
        self.boxes: dict[str, Box | None] = {s: None for s in slots}
        self.initial_diagnosis: Diagnosis | None = None
        self.initial_confidence: int | None = None
        self.final_diagnosis: Diagnosis | None = None
        self.final_confidence: int | None = None
        self.start_time = clock()
        self.end_time: float | None = None

    def __repr__(self):
        return f"Trial({self.trial_id!r}, step={self.step.value!r})"

    @property
    def slots(self) -> tuple[str, ...]:
        return tuple(self.findings)

    def _goto(self, step: TrialStep):
        logger.debug("%s: %s -> %s", self.trial_id, self.step.value, step.value)
        self.step = step

    # initial step ------------------------------------------------------

    def can_draw(self, slot: str) -> bool:
        return self.step == TrialStep.INITIAL and self.findings.get(slot) in (
            FindingClass.PRESENT,
            FindingClass.UNCERTAIN,
        )

    def set_finding(self, slot: str, finding: FindingClass) -> bool:
        if self.step != TrialStep.INITIAL or slot not in self.findings:
            return False
        finding = FindingClass(finding)
        self.findings[slot] = finding
        if finding == FindingClass.ABSENT:
            self.boxes[slot] = None
        return True

    def set_box(self, slot: str, box: Box | None) -> bool:
        """Attach (or with None, remove) the box of a slot that allows one."""
        if box is None:
            if self.step != TrialStep.INITIAL or slot not in self.boxes:
                return False
            self.boxes[slot] = None
            return True
        if not self.can_draw(slot) or box.is_degenerate:
            return False
        self.boxes[slot] = box
        return True

    def set_diagnosis(self, diagnosis: Diagnosis) -> bool:
        if self.step != TrialStep.INITIAL:
            return False
        self.initial_diagnosis = Diagnosis(diagnosis)
        return True

    def missing_requirements(self) -> list[str]:
        """Why the current step cannot advance yet (empty when it can)."""
        if self.step != TrialStep.INITIAL:
            return []
        missing = []
        for slot, finding in self.findings.items():
            if finding is None:
                missing.append(f"{slot}: choose a classification")
            elif finding == FindingClass.PRESENT and self.boxes[slot] is None:
                missing.append(f"{slot}: draw a box around the finding")
            elif finding == FindingClass.ABSENT and self.boxes[slot] is not None:
                missing.append(f"{slot}: remove the box")
        if self.initial_diagnosis is None:
            missing.append("choose a diagnosis")
        return missing

    def can_submit_initial(self) -> bool:
        return self.step == TrialStep.INITIAL and not self.missing_requirements()

    def submit_initial(self, confidence: int | None = None) -> bool:
        """
        Leave the initial step.

        AI trials move to PRE_CONFIDENCE and ignore ``confidence``. Trials
        without AI need the confidence here and become READY directly.
        """
        if not self.can_submit_initial():
            return False
        if self.ai_assisted:
            self._goto(TrialStep.PRE_CONFIDENCE)
            return True
        if not valid_confidence(confidence):
            return False
        self.initial_confidence = confidence
        self.final_diagnosis = self.initial_diagnosis
        self.final_confidence = confidence
        self._ready()
        return True

    # AI feedback loop --------------------------------------------------

    def submit_pre_confidence(self, confidence: int) -> bool:
        if self.step != TrialStep.PRE_CONFIDENCE or not valid_confidence(confidence):
            return False
        self.initial_confidence = confidence
        self.final_diagnosis = self.initial_diagnosis
        self._goto(TrialStep.FEEDBACK)
        return True

    def revise_diagnosis(self, diagnosis: Diagnosis) -> bool:
        if self.step != TrialStep.FEEDBACK:
            return False
        self.final_diagnosis = Diagnosis(diagnosis)
        return True

    def continue_from_feedback(self) -> bool:
        if self.step != TrialStep.FEEDBACK:
            return False
        self._goto(TrialStep.POST_CONFIDENCE)
        return True

    def submit_final_confidence(self, confidence: int) -> bool:
        if self.step != TrialStep.POST_CONFIDENCE or not valid_confidence(confidence):
            return False
        self.final_confidence = confidence
        self._ready()
        return True

    def _ready(self):
        # fixed once, so a retried write carries the same timing window
        self.end_time = self._clock()
        self._goto(TrialStep.READY)

    def mark_committed(self):
        if self.step != TrialStep.READY:
            raise RuntimeError(f"{self.trial_id} is not ready to commit")
        self._goto(TrialStep.COMMITTED)

    # derived -----------------------------------------------------------

    @property
    def reverted_decision(self) -> bool:
        return (
            self.final_diagnosis is not None
            and self.initial_diagnosis != self.final_diagnosis
        )

    def drawn_boxes(self) -> dict[str, Box]:
        return {s: b for s, b in self.boxes.items() if b is not None}

    def iou_by_slot(self) -> dict[str, float]:
        """IoU of every drawn box against the AI box, in natural pixels."""
        ai_box = self.prediction.box
        if ai_box is None:
            return {}
        return {s: iou(b, ai_box) for s, b in self.drawn_boxes().items()}

    @property
    def best_iou(self) -> float | None:
        scores = self.iou_by_slot()
        return max(scores.values()) if scores else None

    def build_record(self, participant_id: str) -> TrialRecord:
        """
        Freeze the answers into a ``TrialRecord``.

        Raises
        ------
        RuntimeError
            If the trial is not READY
        """
        if self.step not in (TrialStep.READY, TrialStep.COMMITTED):
            raise RuntimeError(f"{self.trial_id} is still at step {self.step.value}")
        pred = self.prediction
        size = pred.image_size
        boxes = {s: b.to_dict() for s, b in self.drawn_boxes().items()}
        ai = {}
        if self.ai_assisted:
            ai = dict(
                ai_diagnosis=pred.diagnosis.value,
                ai_confidence=pred.confidence,
                ai_box=pred.box.to_dict() if pred.box is not None else None,
                ai_fallback=pred.is_fallback,
                iou=self.iou_by_slot(),
                best_iou=self.best_iou,
            )
        return TrialRecord(
            participant_id=participant_id,
            trial_id=self.trial_id,
            phase=self.phase,
            trial_index=self.index,
            image_id=self.image_id,
            image_name=pred.image_path,
            image_width=size.width if size is not None else None,
            image_height=size.height if size is not None else None,
            start_time=self.start_time,
            end_time=self.end_time,
            duration=round(self.end_time - self.start_time, 3),
            findings={s: f.value for s, f in self.findings.items()},
            boxes=boxes,
            box_drawn=bool(boxes),
            diagnosis=self.final_diagnosis.value,
            confidence=self.final_confidence,
            initial_diagnosis=self.initial_diagnosis.value,
            initial_confidence=self.initial_confidence,
            final_diagnosis=self.final_diagnosis.value,
            final_confidence=self.final_confidence,
            reverted_decision=self.reverted_decision,
            ai_shown=self.ai_assisted,
            ground_truth_raw=pred.ground_truth_raw,
            ground_truth_binary=pred.ground_truth_binary,
            prediction=pred.prediction_raw,
            **ai,
        )
