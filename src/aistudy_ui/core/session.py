"""
Session / Progress Controller
=============================

Drives a participant through the trials of their active phase: works out
where to resume from the persisted completion map, creates one ``Trial`` at
a time, persists finished trials and advances.

Classes
-------
SessionController
    Resume, load, persist and advance
SessionError
    Misuse or inconsistent participant data
PersistenceError
    A trial could not be stored; safe to retry

Functions
---------
trial_id_for
    Deterministic, phase-scoped trial id

Resume Rule
-----------
The completion map is a set of stored trial ids. Trials are committed in
index order, so the number of completed trials is also the index of the
first trial still to do. With ``total_trials = 5`` and
``{"trial_1": True, "trial_2": True}`` the session resumes at index 2, the
third trial. A count at or above ``total_trials`` finishes the session
without showing a trial.

Commit Protocol
---------------
``persist()`` may run on a worker thread: it writes the record, then merges
the trial id into the completion map. On failure it raises
``PersistenceError`` and leaves the trial, its answers and the index as they
were, so the same record can be written again. ``advance()`` runs on the GUI
thread after a successful persist and moves to the next trial or ends the
session. ``commit()`` does both for synchronous callers.

Examples
--------
>>> ctl = SessionController(store, lookup, total_trials=5, on_complete=done)
>>> trial = ctl.start("1-AB3CD")
>>> ctl.index
2
"""

import logging
import time

from .logging_utils import set_log_context
from .participant import COMPLETED_PHASES, PHASES, Participant, is_ai_assisted
from .predictions import PredictionLookup
from .state import TrialStore
from .trial import DEFAULT_SLOTS, Trial, TrialStep

logger = logging.getLogger(__name__)


class SessionError(RuntimeError):
    pass


class PersistenceError(RuntimeError):
    pass


def trial_id_for(phase: str, index: int) -> str:
    """
    Deterministic trial id for a 0-based index.

    >>> trial_id_for("phase1", 0), trial_id_for("phase2", 0)
    ('trial_1', 'p2_trial_1')
    """
    if phase == "phase2":
        return f"p2_trial_{index + 1}"
    return f"trial_{index + 1}"


class SessionController:
    """
    Trial sequencing for one participant and phase.

    Parameters
    ----------
    store : TrialStore
        Participant and trial persistence
    lookup : PredictionLookup
        AI predictions (also resolves image paths for trials without AI)
    total_trials : int
        Number of trials in a phase
    on_complete : callable, optional
        Called once, without arguments, when the phase has no trials left
    slots : sequence of str
        Finding slot ids for every trial
    clock : callable, default=time.time

    Attributes
    ----------
    participant : Participant or None
    phase : str or None
        Active phase
    index : int
        0-based index of the current trial
    trial : Trial or None
        Current trial; replaced as a whole when the index changes
    complete : bool
        True once the phase has no trials left
    """

    def __init__(
        self,
        store: TrialStore,
        lookup: PredictionLookup,
        total_trials: int,
        on_complete=None,
        slots=DEFAULT_SLOTS,
        clock=time.time,
    ):
        if total_trials < 1:
            raise ValueError("total_trials must be positive")
        self.store = store
        self.lookup = lookup
        self.total_trials = total_trials
        self.on_complete = on_complete
        self.slots = tuple(slots)
        self._clock = clock
        self.participant: Participant | None = None
        self.phase: str | None = None
        self.index = 0
        self.trial: Trial | None = None
        self.complete = False
        self._in_flight = False

    @property
    def ai_assisted(self) -> bool:
        return is_ai_assisted(self.participant.treatment_group, self.phase)

    @property
    def completed_count(self) -> int:
        return self.participant.completed_count(self.phase)

    def start(self, user_id: str) -> Trial | None:
        """
        Load the participant and position the session at the resume index.

        Returns
        -------
        Trial or None
            The trial to show, or None when the phase is already finished
            (``on_complete`` has been called in that case).

        Raises
        ------
        KeyError
            Unknown participant
        SessionError
            Unrecognized ``current_phase``
        ValueError
            Unknown treatment group
        """
        self.participant = self.store.read_participant(user_id)
        return self.resume(self.participant)

    def resume(self, participant: Participant) -> Trial | None:
        if participant.current_phase not in PHASES + COMPLETED_PHASES:
            raise SessionError(
                f"{participant.user_id}: unknown phase {participant.current_phase!r}"
            )
        self.participant = participant
        self.phase = participant.active_phase
        self.trial = None
        self.complete = False
        set_log_context(participant.user_id)
        if self.phase is None:
            logger.info(
                "%s: phase %s already finished", participant.user_id, participant.current_phase
            )
            self._finish()
            return None
        done = self.completed_count
        if done >= self.total_trials:
            logger.info("%s: all %d trials of %s done", participant.user_id, done, self.phase)
            self._finish()
            return None
        self.index = done
        logger.info(
            "%s: resuming %s at trial %d/%d (%s)",
            participant.user_id,
            self.phase,
            self.index + 1,
            self.total_trials,
            "AI" if self.ai_assisted else "no AI",
        )
        return self.load_trial()

    def load_trial(self) -> Trial:
        """
        Create a fresh trial for the current index.

        All per-trial answers live on the ``Trial`` object, so replacing it
        resets findings, boxes, diagnoses, confidences and the start time in
        one step.

        Raises
        ------
        SessionError
            If the participant's image sequence has no entry for the index
        """
        sequence = self.participant.sequence_for(self.phase)
        if self.index >= len(sequence):
            raise SessionError(
                f"{self.participant.user_id}: no image assigned to trial "
                f"{self.index + 1} of {self.phase} (sequence has {len(sequence)})"
            )
        image_id = int(sequence[self.index])
        prediction = self.lookup.get(image_id, self.phase)
        self.trial = Trial(
            trial_id_for(self.phase, self.index),
            self.index,
            image_id,
            prediction,
            ai_assisted=self.ai_assisted,
            phase=self.phase,
            slots=self.slots,
            clock=self._clock,
        )
        set_log_context(self.participant.user_id, self.trial.trial_id)
        logger.debug("Loaded %s (image %d)", self.trial.trial_id, image_id)
        return self.trial

    def persist(self):
        """
        Store the current trial and mark it completed.

        Safe to call again after a failure; both writes are keyed by the
        trial id.

        Returns
        -------
        TrialRecord
            The record that was written

        Raises
        ------
        SessionError
            If there is no READY trial or a persist is already running
        PersistenceError
            If the store failed; nothing in the session has changed
        """
        trial = self.trial
        if trial is None or trial.step != TrialStep.READY:
            raise SessionError("No finished trial to persist")
        if self._in_flight:
            raise SessionError(f"{trial.trial_id} is already being saved")
        self._in_flight = True
        try:
            record = trial.build_record(self.participant.user_id)
            try:
                self.store.write_trial(self.participant.user_id, record)
                self.store.mark_completed(
                    self.participant.user_id, self.phase, trial.trial_id
                )
            except Exception as e:
                logger.error(
                    "Saving %s for %s failed", trial.trial_id, self.participant.user_id,
                    exc_info=True,
                )
                raise PersistenceError(f"Could not save {trial.trial_id}: {e}") from e
        finally:
            self._in_flight = False
        logger.info("Saved %s for %s", trial.trial_id, self.participant.user_id)
        return record

    def advance(self) -> Trial | None:
        """
        Move past a persisted trial.

        Returns
        -------
        Trial or None
            The next trial, or None when the phase is finished
        """
        trial = self.trial
        if trial is None or trial.step != TrialStep.READY:
            raise SessionError("Current trial has not been saved")
        trial.mark_committed()
        self.participant.completion_for(self.phase)[trial.trial_id] = True
        self.index += 1
        if self.index >= self.total_trials:
            self._finish()
            return None
        return self.load_trial()

    def commit(self) -> Trial | None:
        self.persist()
        return self.advance()

    def _finish(self):
        if self.complete:
            return
        self.complete = True
        set_log_context(self.participant.user_id if self.participant else None)
        if self.on_complete is not None:
            self.on_complete()
