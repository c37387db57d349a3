"""
Participant Record
==================

The slice of a participant record the annotation engine consumes: group,
phase, the image order for each phase and the per-phase completion maps.
Enrolment (identity, group assignment, sequence shuffling) happens outside
this package; the engine only reads these fields and merges new keys into
the completion maps.

Phases
------
``phase1`` and ``phase2`` are active phases. ``phase1_completed`` and
``phase2_completed`` mark a finished phase (phase 2 unlocks after the
washout period, which the enrolment layer enforces).

Crossover
---------
Group "1" annotates with AI assistance in phase 1 and without it in phase 2;
group "0" does the reverse. ``is_ai_assisted`` encodes this.
"""

from dataclasses import dataclass, field

PHASES = ("phase1", "phase2")
COMPLETED_PHASES = ("phase1_completed", "phase2_completed")
GROUPS = ("0", "1")


def is_ai_assisted(treatment_group: str, phase: str) -> bool:
    """Whether a group sees AI feedback in the given phase."""
    group = str(treatment_group)
    if group not in GROUPS:
        raise ValueError(f"Unknown treatment group {treatment_group!r}")
    if phase not in PHASES:
        raise ValueError(f"Unknown phase {phase!r}")
    return (group == "1") == (phase == "phase1")


@dataclass
class Participant:
    user_id: str
    treatment_group: str
    current_phase: str = "phase1"
    image_sequence: list[int] = field(default_factory=list)
    image_sequence_phase2: list[int] | None = None
    completed_trials: dict[str, bool] = field(default_factory=dict)
    completed_trials_phase2: dict[str, bool] = field(default_factory=dict)

    @property
    def active_phase(self) -> str | None:
        """The phase being annotated, None when the current phase is done."""
        return self.current_phase if self.current_phase in PHASES else None

    @property
    def ai_assisted(self) -> bool:
        phase = self.active_phase
        return phase is not None and is_ai_assisted(self.treatment_group, phase)

    def sequence_for(self, phase: str) -> list[int]:
        if phase == "phase2":
            # phase 2 reuses the phase 1 order unless enrolment assigned one
            return list(self.image_sequence_phase2 or self.image_sequence)
        return list(self.image_sequence)

    def completion_for(self, phase: str) -> dict[str, bool]:
        """The live completion map of a phase (mutations are kept)."""
        if phase == "phase2":
            return self.completed_trials_phase2
        return self.completed_trials

    def completed_count(self, phase: str) -> int:
        return sum(1 for v in self.completion_for(phase).values() if v)
