import pytest

from aistudy_ui.core.participant import Participant, is_ai_assisted


def test_crossover_assignment():
    assert is_ai_assisted("1", "phase1")
    assert not is_ai_assisted("1", "phase2")
    assert not is_ai_assisted("0", "phase1")
    assert is_ai_assisted("0", "phase2")
    # each group gets AI in exactly one phase
    for group in ("0", "1"):
        assert sum(is_ai_assisted(group, p) for p in ("phase1", "phase2")) == 1


def test_crossover_rejects_unknown_values():
    with pytest.raises(ValueError):
        is_ai_assisted("2", "phase1")
    with pytest.raises(ValueError):
        is_ai_assisted("1", "phase1_completed")


def test_numeric_group_is_accepted():
    assert is_ai_assisted(1, "phase1")


def test_phase2_sequence_falls_back_to_phase1():
    p = Participant("u", "0", image_sequence=[3, 1, 2])
    assert p.sequence_for("phase2") == [3, 1, 2]
    p.image_sequence_phase2 = [2, 3, 1]
    assert p.sequence_for("phase2") == [2, 3, 1]
    assert p.sequence_for("phase1") == [3, 1, 2]


def test_completed_count_counts_true_entries():
    p = Participant(
        "u",
        "1",
        completed_trials={"trial_1": True, "trial_2": True, "trial_3": False},
        completed_trials_phase2={"p2_trial_1": True},
    )
    assert p.completed_count("phase1") == 2
    assert p.completed_count("phase2") == 1


def test_active_phase():
    p = Participant("u", "1", current_phase="phase1_completed")
    assert p.active_phase is None
    assert not p.ai_assisted
    p.current_phase = "phase2"
    assert p.active_phase == "phase2"
    assert not p.ai_assisted
