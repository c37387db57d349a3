import json

import pytest

from aistudy_ui.core.geometry import Box, iou
from aistudy_ui.core.predictions import Diagnosis
from aistudy_ui.core.trial import FindingClass, Trial, TrialStep, valid_confidence


@pytest.fixture
def ai_trial(make_prediction, ai_box, clock):
    return Trial("trial_1", 0, 1, make_prediction(box=ai_box), ai_assisted=True, clock=clock)


@pytest.fixture
def plain_trial(make_prediction, clock):
    return Trial("trial_1", 0, 1, make_prediction(), ai_assisted=False, clock=clock)


def test_present_finding_requires_box(ai_trial):
    ai_trial.set_finding("finding1", FindingClass.PRESENT)
    ai_trial.set_finding("finding2", FindingClass.ABSENT)
    ai_trial.set_diagnosis(Diagnosis.YES)
    assert not ai_trial.can_submit_initial()
    assert not ai_trial.submit_initial()
    assert ai_trial.step == TrialStep.INITIAL
    assert any("finding1" in m for m in ai_trial.missing_requirements())

    assert ai_trial.set_box("finding1", Box(10, 10, 50, 50))
    assert ai_trial.submit_initial()
    assert ai_trial.step == TrialStep.PRE_CONFIDENCE


def test_absent_clears_existing_box_and_allows_submit(ai_trial):
    ai_trial.set_finding("finding1", FindingClass.PRESENT)
    ai_trial.set_box("finding1", Box(10, 10, 50, 50))
    ai_trial.set_finding("finding1", FindingClass.ABSENT)
    assert ai_trial.boxes["finding1"] is None
    ai_trial.set_finding("finding2", FindingClass.ABSENT)
    ai_trial.set_diagnosis(Diagnosis.NO)
    assert ai_trial.submit_initial()


def test_uncertain_box_is_optional(ai_trial):
    ai_trial.set_finding("finding1", FindingClass.UNCERTAIN)
    ai_trial.set_finding("finding2", FindingClass.UNCERTAIN)
    ai_trial.set_diagnosis(Diagnosis.NO)
    assert ai_trial.can_submit_initial()


def test_unclassified_slot_and_missing_diagnosis_block(ai_trial):
    ai_trial.set_finding("finding1", FindingClass.ABSENT)
    missing = ai_trial.missing_requirements()
    assert any("finding2" in m for m in missing)
    assert "choose a diagnosis" in missing
    assert not ai_trial.submit_initial()


def test_box_rejected_for_absent_slot_or_degenerate(ai_trial):
    assert not ai_trial.set_box("finding1", Box(0, 0, 10, 10))
    ai_trial.set_finding("finding1", FindingClass.ABSENT)
    assert not ai_trial.can_draw("finding1")
    assert not ai_trial.set_box("finding1", Box(0, 0, 10, 10))
    ai_trial.set_finding("finding1", FindingClass.PRESENT)
    assert not ai_trial.set_box("finding1", Box(0, 0, 0, 10))
    assert not ai_trial.set_finding("finding3", FindingClass.PRESENT)


def test_confidence_must_be_on_scale(ai_trial):
    ai_trial.set_finding("finding1", FindingClass.ABSENT)
    ai_trial.set_finding("finding2", FindingClass.ABSENT)
    ai_trial.set_diagnosis(Diagnosis.NO)
    ai_trial.submit_initial()
    for bad in (0, 8, None, 3.5, True, "5"):
        assert not ai_trial.submit_pre_confidence(bad)
    assert ai_trial.step == TrialStep.PRE_CONFIDENCE
    assert ai_trial.submit_pre_confidence(1)
    assert ai_trial.step == TrialStep.FEEDBACK


def test_valid_confidence():
    assert all(valid_confidence(v) for v in range(1, 8))
    assert not valid_confidence(False)


def test_steps_cannot_be_skipped(ai_trial):
    assert not ai_trial.submit_pre_confidence(5)
    assert not ai_trial.revise_diagnosis(Diagnosis.NO)
    assert not ai_trial.continue_from_feedback()
    assert not ai_trial.submit_final_confidence(5)
    with pytest.raises(RuntimeError):
        ai_trial.build_record("p")
    with pytest.raises(RuntimeError):
        ai_trial.mark_committed()


def test_answers_frozen_after_initial(ai_trial):
    ai_trial.set_finding("finding1", FindingClass.ABSENT)
    ai_trial.set_finding("finding2", FindingClass.ABSENT)
    ai_trial.set_diagnosis(Diagnosis.NO)
    ai_trial.submit_initial()
    assert not ai_trial.set_diagnosis(Diagnosis.YES)
    assert not ai_trial.set_finding("finding1", FindingClass.PRESENT)
    assert not ai_trial.set_box("finding1", None)


def test_ai_assisted_end_to_end(ai_trial, ai_box):
    t = ai_trial
    assert t.set_finding("finding1", FindingClass.PRESENT)
    assert t.set_box("finding1", Box(10, 10, 50, 50))
    assert t.set_finding("finding2", FindingClass.ABSENT)
    assert t.set_diagnosis(Diagnosis.YES)
    assert t.submit_initial()
    assert t.submit_pre_confidence(5)
    assert t.step == TrialStep.FEEDBACK
    assert t.iou_by_slot()["finding1"] == pytest.approx(iou(Box(10, 10, 50, 50), ai_box))
    assert t.best_iou > 0.8
    assert t.continue_from_feedback()
    assert t.submit_final_confidence(7)
    assert t.step == TrialStep.READY

    rec = t.build_record("1-AB3CD")
    assert rec.final_diagnosis == "igen"
    assert rec.initial_diagnosis == "igen"
    assert rec.reverted_decision is False
    assert rec.ai_shown is True
    assert rec.initial_confidence == 5
    assert rec.final_confidence == 7
    assert rec.diagnosis == "igen" and rec.confidence == 7
    assert rec.findings == {"finding1": "tunet", "finding2": "nincsen"}
    assert rec.boxes == {"finding1": {"x": 10, "y": 10, "width": 50, "height": 50}}
    assert rec.box_drawn
    assert rec.ai_diagnosis == "igen"
    assert rec.ai_confidence == pytest.approx(0.9)
    assert rec.ai_box == ai_box.to_dict()
    assert rec.ai_fallback is False
    assert rec.best_iou == pytest.approx(t.best_iou)
    assert rec.duration == pytest.approx(rec.end_time - rec.start_time)
    assert rec.duration > 0


def test_revision_recorded(ai_trial):
    t = ai_trial
    t.set_finding("finding1", FindingClass.ABSENT)
    t.set_finding("finding2", FindingClass.ABSENT)
    t.set_diagnosis(Diagnosis.NO)
    t.submit_initial()
    t.submit_pre_confidence(2)
    assert t.revise_diagnosis(Diagnosis.YES)
    assert t.revise_diagnosis(Diagnosis.NO)
    assert t.revise_diagnosis(Diagnosis.YES)
    t.continue_from_feedback()
    t.submit_final_confidence(6)
    rec = t.build_record("p")
    assert rec.initial_diagnosis == "nem"
    assert rec.final_diagnosis == "igen"
    assert rec.reverted_decision is True
    assert rec.iou == {}
    assert rec.best_iou is None


def test_no_ai_end_to_end(plain_trial):
    t = plain_trial
    t.set_finding("finding1", FindingClass.ABSENT)
    t.set_finding("finding2", FindingClass.ABSENT)
    t.set_diagnosis(Diagnosis.NO)
    assert not t.submit_initial()
    assert t.submit_initial(confidence=3)
    assert t.step == TrialStep.READY
    rec = t.build_record("0-X9J2K")
    assert rec.ai_shown is False
    assert rec.diagnosis == rec.final_diagnosis == rec.initial_diagnosis == "nem"
    assert rec.confidence == rec.final_confidence == rec.initial_confidence == 3
    assert rec.reverted_decision is False
    assert rec.ai_diagnosis is None
    assert rec.ai_box is None
    assert rec.box_drawn is False


def test_record_is_stable_across_rebuilds(plain_trial):
    t = plain_trial
    t.set_finding("finding1", FindingClass.ABSENT)
    t.set_finding("finding2", FindingClass.ABSENT)
    t.set_diagnosis(Diagnosis.NO)
    t.submit_initial(confidence=3)
    assert t.build_record("p") == t.build_record("p")


def test_record_row_encodes_nested_values(ai_trial):
    t = ai_trial
    t.set_finding("finding1", FindingClass.UNCERTAIN)
    t.set_box("finding1", Box(10, 10, 50, 50))
    t.set_finding("finding2", FindingClass.ABSENT)
    t.set_diagnosis(Diagnosis.YES)
    t.submit_initial()
    t.submit_pre_confidence(4)
    t.continue_from_feedback()
    t.submit_final_confidence(4)
    row = t.build_record("p").to_row()
    assert json.loads(row["findings"]) == {"finding1": "bizonytalan", "finding2": "nincsen"}
    assert json.loads(row["boxes"])["finding1"]["width"] == 50
    assert set(json.loads(row["iou"])) == {"finding1"}
