import pytest

from aistudy_ui.core.geometry import Box
from aistudy_ui.core.participant import Participant
from aistudy_ui.core.predictions import Diagnosis
from aistudy_ui.core.session import (
    PersistenceError,
    SessionController,
    SessionError,
    trial_id_for,
)
from aistudy_ui.core.state import ManifestStore
from aistudy_ui.core.trial import FindingClass, TrialStep


class FlakyStore(ManifestStore):
    """Store whose first ``failures`` trial writes raise."""

    def __init__(self, root, failures=1):
        super().__init__(root)
        self.failures = failures
        self.writes = []

    def write_trial(self, participant_id, record):
        self.writes.append(record)
        if self.failures > 0:
            self.failures -= 1
            raise OSError("disk unavailable")
        super().write_trial(participant_id, record)


class Done:
    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1


def finish_plain(trial, diagnosis=Diagnosis.NO, confidence=3):
    trial.set_finding("finding1", FindingClass.ABSENT)
    trial.set_finding("finding2", FindingClass.ABSENT)
    trial.set_diagnosis(diagnosis)
    assert trial.submit_initial(confidence=confidence)


def finish_ai(trial):
    trial.set_finding("finding1", FindingClass.PRESENT)
    trial.set_box("finding1", Box(10, 10, 50, 50))
    trial.set_finding("finding2", FindingClass.ABSENT)
    trial.set_diagnosis(Diagnosis.YES)
    assert trial.submit_initial()
    assert trial.submit_pre_confidence(5)
    assert trial.continue_from_feedback()
    assert trial.submit_final_confidence(7)


@pytest.fixture
def done():
    return Done()


def controller(store, lookup, done, total=5, clock=None):
    kwargs = {"clock": clock} if clock is not None else {}
    return SessionController(store, lookup, total, on_complete=done, **kwargs)


def test_trial_ids_are_phase_scoped():
    assert trial_id_for("phase1", 0) == "trial_1"
    assert trial_id_for("phase1", 49) == "trial_50"
    assert trial_id_for("phase2", 0) == "p2_trial_1"
    assert trial_id_for("phase1", 3) != trial_id_for("phase2", 3)


def test_resume_at_completed_count(store, lookup, participant, done):
    participant.completed_trials = {"trial_1": True, "trial_2": True}
    store.upsert_participant(participant)
    ctl = controller(store, lookup, done)
    trial = ctl.start(participant.user_id)
    assert ctl.index == 2
    assert trial.trial_id == "trial_3"
    assert trial.image_id == participant.image_sequence[2]
    assert trial.ai_assisted
    assert done.calls == 0


def test_complete_immediately_when_all_done(store, lookup, participant, done):
    participant.completed_trials = {f"trial_{n}": True for n in range(1, 6)}
    store.upsert_participant(participant)
    ctl = controller(store, lookup, done)
    assert ctl.start(participant.user_id) is None
    assert ctl.complete
    assert ctl.trial is None
    assert done.calls == 1


def test_completed_phase_marker_finishes_session(store, lookup, participant, done):
    participant.current_phase = "phase1_completed"
    store.upsert_participant(participant)
    ctl = controller(store, lookup, done)
    assert ctl.start(participant.user_id) is None
    assert done.calls == 1


def test_unknown_participant(store, lookup, done):
    with pytest.raises(KeyError):
        controller(store, lookup, done).start("nobody")


def test_unrecognized_phase_is_rejected(store, lookup, participant, done):
    participant.current_phase = "phase3"
    store.upsert_participant(participant)
    ctl = controller(store, lookup, done)
    with pytest.raises(SessionError, match="phase3"):
        ctl.start(participant.user_id)
    assert done.calls == 0


def test_unknown_group_is_rejected(store, lookup, participant, done):
    participant.treatment_group = "7"
    store.upsert_participant(participant)
    with pytest.raises(ValueError):
        controller(store, lookup, done).start(participant.user_id)


def test_commit_advances_and_persists(store, lookup, participant, done):
    participant.treatment_group = "0"
    store.upsert_participant(participant)
    ctl = controller(store, lookup, done)
    first = ctl.start(participant.user_id)
    assert not first.ai_assisted
    finish_plain(first)
    second = ctl.commit()
    assert first.step == TrialStep.COMMITTED
    assert second is not first
    assert second.trial_id == "trial_2"
    assert second.step == TrialStep.INITIAL
    assert all(f is None for f in second.findings.values())
    assert second.initial_diagnosis is None

    stored = store.read_participant(participant.user_id)
    assert stored.completed_trials == {"trial_1": True}
    trials = store.read_trials(participant.user_id)
    assert list(trials["trial_id"]) == ["trial_1"]
    assert trials.iloc[0]["image_id"] == participant.image_sequence[0]


def test_ai_session_runs_to_completion(store, lookup, participant, done):
    store.upsert_participant(participant)
    ctl = controller(store, lookup, done, total=3)
    trial = ctl.start(participant.user_id)
    for _ in range(3):
        assert done.calls == 0
        finish_ai(trial)
        trial = ctl.commit()
    assert trial is None
    assert ctl.complete
    assert done.calls == 1
    trials = store.read_trials(participant.user_id)
    assert sorted(trials["trial_id"]) == ["trial_1", "trial_2", "trial_3"]
    assert trials["ai_shown"].all()

    # a restarted session sees the phase as finished
    again = Done()
    assert controller(store, lookup, again, total=3).start(participant.user_id) is None
    assert again.calls == 1


def test_phase2_uses_prefixed_ids_and_map(store, lookup, participant, done):
    participant.current_phase = "phase2"
    participant.completed_trials = {f"trial_{n}": True for n in range(1, 6)}
    participant.image_sequence_phase2 = [3, 4, 5, 1, 2]
    store.upsert_participant(participant)
    ctl = controller(store, lookup, done)
    trial = ctl.start(participant.user_id)
    assert ctl.index == 0
    assert trial.trial_id == "p2_trial_1"
    assert not trial.ai_assisted
    # phase-specific dataset row is preferred
    assert trial.prediction.id == "p2_3.png"
    finish_plain(trial)
    ctl.commit()
    stored = store.read_participant(participant.user_id)
    assert stored.completed_trials_phase2 == {"p2_trial_1": True}
    assert len(stored.completed_trials) == 5


def test_failed_persist_keeps_trial_and_retry_is_idempotent(tmp_path, lookup, participant, done, clock):
    store = FlakyStore(tmp_path / "data", failures=1)
    store.upsert_participant(participant)
    ctl = controller(store, lookup, done, clock=clock)
    trial = ctl.start(participant.user_id)
    finish_ai(trial)

    with pytest.raises(PersistenceError) as exc:
        ctl.commit()
    assert isinstance(exc.value.__cause__, OSError)
    assert ctl.trial is trial
    assert ctl.index == 0
    assert trial.step == TrialStep.READY
    assert trial.final_confidence == 7
    assert store.read_participant(participant.user_id).completed_trials == {}

    nxt = ctl.commit()
    assert nxt.trial_id == "trial_2"
    assert store.writes[0] == store.writes[1]
    assert len(store.read_trials(participant.user_id)) == 1


def test_duplicate_persist_targets_same_record(store, lookup, participant, done):
    store.upsert_participant(participant)
    ctl = controller(store, lookup, done)
    trial = ctl.start(participant.user_id)
    finish_ai(trial)
    ctl.persist()
    ctl.persist()
    ctl.advance()
    trials = store.read_trials(participant.user_id)
    assert list(trials["trial_id"]) == ["trial_1"]
    assert store.read_participant(participant.user_id).completed_trials == {"trial_1": True}


def test_persist_requires_ready_trial(store, lookup, participant, done):
    store.upsert_participant(participant)
    ctl = controller(store, lookup, done)
    ctl.start(participant.user_id)
    with pytest.raises(SessionError):
        ctl.persist()
    with pytest.raises(SessionError):
        ctl.advance()
    assert ctl.index == 0


def test_short_image_sequence(store, lookup, done):
    p = Participant("1-SHORT", "1", image_sequence=[1])
    p.completed_trials = {"trial_1": True}
    store.upsert_participant(p)
    with pytest.raises(SessionError):
        controller(store, lookup, done).start("1-SHORT")


def test_missing_prediction_uses_fallback(store, lookup, done):
    p = Participant("1-MISS", "1", image_sequence=[42, 1])
    store.upsert_participant(p)
    trial = controller(store, lookup, done).start("1-MISS")
    assert trial.prediction.is_fallback
    finish_ai(trial)
    record = trial.build_record("1-MISS")
    assert record.ai_fallback is True
    assert record.ai_box is None
    assert record.best_iou is None
