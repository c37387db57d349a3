"""
Core Logic of the Annotation Study
==================================

This package contains everything the study needs apart from the widgets:

- **Geometry**: boxes, IoU and coordinate transforms between display,
  natural and normalized image space
- **Box tool**: toolkit-independent model of the bounding-box drawing tool
- **AI predictions**: one-time, thread-safe load of the AI dataset CSV
- **Trials**: the per-trial state machine and the persisted ``TrialRecord``
- **Sessions**: resume, sequencing and commit of trials for a participant
- **State**: Excel workbooks holding participants and trial records
- **Metrics**: outcome measures over stored trials (scikit-learn)

Data Model
----------
The study keeps its state in files:

- **Dataset**: ``<dataset_dir>/predictions.csv`` plus images in ``no_map/``
  and heatmaps in ``map/``
- **Participants**: ``<data_root>/study/participants.xlsx``
- **Trials**: ``<data_root>/study/trials.xlsx``, one row per
  (participant_id, trial_id)

Trial Flow
----------
1. **Initial**: classify each finding slot, draw boxes, pick a diagnosis
2. **Pre-confidence** (AI only): rate confidence 1-7
3. **Feedback** (AI only): see the AI opinion, optionally revise
4. **Post-confidence** (AI only): rate confidence again
5. **Commit**: record written, trial marked completed, next trial loaded

Examples
--------
>>> from pathlib import Path
>>> from aistudy_ui.core import ManifestStore, PredictionLookup, SessionController
>>> store = ManifestStore(Path("data"))
>>> lookup = PredictionLookup("dataset/predictions.csv", "dataset/no_map", "dataset/map")
>>> ctl = SessionController(store, lookup, total_trials=50)
>>> trial = ctl.start("1-AB3CD")

Modules
-------
geometry
    Box, Size, IoU and coordinate transforms
box_tool
    Slots, active slot and drag gesture of the drawing tool
predictions
    AI prediction dataset loading and lookup
participant
    Participant record and crossover assignment
trial
    Trial state machine and TrialRecord
session
    Session controller, SessionError, PersistenceError
state
    Excel-backed participant and trial storage
metrics
    Outcome measures and their text summary
image_io
    Image loading and natural size
config
    Settings from environment / .env (pydantic-settings)
logging_utils
    Root logger setup
tasks
    QThreadPool wrapper for background work (imports PySide6)

See Also
--------
aistudy_ui.ui : PySide6 widgets
"""

from .geometry import Box, Size, iou
from .box_tool import BoxTool
from .predictions import AIPrediction, Diagnosis, PredictionLookup, fallback_prediction
from .participant import Participant, is_ai_assisted
from .trial import FindingClass, Trial, TrialRecord, TrialStep
from .session import PersistenceError, SessionController, SessionError, trial_id_for
from .state import ManifestStore, TrialStore, read_manifest, upsert_manifest
from .metrics import compute_trial_metrics, metrics_to_text

__all__ = [
    "Box",
    "Size",
    "iou",
    "BoxTool",
    "AIPrediction",
    "Diagnosis",
    "PredictionLookup",
    "fallback_prediction",
    "Participant",
    "is_ai_assisted",
    "FindingClass",
    "Trial",
    "TrialRecord",
    "TrialStep",
    "PersistenceError",
    "SessionController",
    "SessionError",
    "trial_id_for",
    "ManifestStore",
    "TrialStore",
    "read_manifest",
    "upsert_manifest",
    "compute_trial_metrics",
    "metrics_to_text",
]
