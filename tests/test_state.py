import json

import pytest

from aistudy_ui.core.participant import Participant
from aistudy_ui.core.state import (
    PARTICIPANTS,
    TRIALS,
    read_manifest,
    study_path,
    upsert_manifest,
)


def test_read_missing_manifest_has_schema(tmp_path):
    df = read_manifest(tmp_path, TRIALS, ["a", "b"])
    assert df.empty
    assert list(df.columns) == ["a", "b"]


def test_upsert_manifest_inserts_then_updates(tmp_path):
    cols = ["k", "v", "timestamp"]
    upsert_manifest(tmp_path, "t.xlsx", cols, {"k": "a", "v": "1"}, ["k"])
    upsert_manifest(tmp_path, "t.xlsx", cols, {"k": "b", "v": "2"}, ["k"])
    upsert_manifest(tmp_path, "t.xlsx", cols, {"k": "a", "v": "3"}, ["k"])
    df = read_manifest(tmp_path, "t.xlsx", cols)
    assert len(df) == 2
    assert df.loc[df["k"] == "a", "v"].item() == "3"
    assert df["timestamp"].notna().all()
    assert study_path(tmp_path, "t.xlsx").exists()


def test_participant_round_trip(store):
    p = Participant(
        "0-X9J2K",
        "0",
        current_phase="phase2",
        image_sequence=[4, 1, 3],
        image_sequence_phase2=[3, 4, 1],
        completed_trials={"trial_1": True},
    )
    store.upsert_participant(p)
    back = store.read_participant("0-X9J2K")
    assert back == p
    assert back.treatment_group == "0"


def test_unknown_participant(store):
    with pytest.raises(KeyError):
        store.read_participant("nobody")
    with pytest.raises(KeyError):
        store.mark_completed("nobody", "phase1", "trial_1")


def test_mark_completed_merges_keys(store, participant):
    store.upsert_participant(participant)
    store.mark_completed(participant.user_id, "phase1", "trial_1")
    store.mark_completed(participant.user_id, "phase1", "trial_2")
    store.mark_completed(participant.user_id, "phase1", "trial_1")
    store.mark_completed(participant.user_id, "phase2", "p2_trial_1")
    back = store.read_participant(participant.user_id)
    assert back.completed_trials == {"trial_1": True, "trial_2": True}
    assert back.completed_trials_phase2 == {"p2_trial_1": True}
    assert back.image_sequence == participant.image_sequence


def test_write_trial_upserts_by_trial_id(store, make_prediction, clock):
    from aistudy_ui.core.predictions import Diagnosis
    from aistudy_ui.core.trial import FindingClass, Trial

    def finished(trial_id, confidence):
        t = Trial(trial_id, 0, 1, make_prediction(), ai_assisted=False, clock=clock)
        t.set_finding("finding1", FindingClass.ABSENT)
        t.set_finding("finding2", FindingClass.ABSENT)
        t.set_diagnosis(Diagnosis.NO)
        t.submit_initial(confidence=confidence)
        return t.build_record("u1")

    store.write_trial("u1", finished("trial_1", 3))
    store.write_trial("u1", finished("trial_1", 4))
    store.write_trial("u1", finished("trial_2", 5))
    store.write_trial("u2", finished("trial_1", 6))

    df = store.read_trials("u1")
    assert sorted(df["trial_id"]) == ["trial_1", "trial_2"]
    row = df[df["trial_id"] == "trial_1"].iloc[0]
    assert row["final_confidence"] == 4
    assert json.loads(row["findings"]) == {"finding1": "nincsen", "finding2": "nincsen"}
    assert len(store.read_trials()) == 3


def test_workbooks_live_under_study_dir(store, participant):
    store.upsert_participant(participant)
    assert study_path(store.root, PARTICIPANTS).exists()
