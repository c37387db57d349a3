"""
Study State Storage
===================

This module persists trial records and participant progress. The study
keeps two Excel workbooks under ``<root>/study/``:

- ``participants.xlsx`` : one row per participant (group, phase, image
  sequences, completion maps)
- ``trials.xlsx`` : one row per completed trial, keyed by
  (participant_id, trial_id)

Classes
-------
TrialStore
    Interface the session controller talks to
ManifestStore
    Excel-backed implementation (pandas + openpyxl)

Functions
---------
study_path
    Construct full path to a study workbook
read_manifest
    Load a workbook as DataFrame (empty with schema if missing)
upsert_manifest
    Insert or update a row by its key columns

Notes
-----
Writes are upserts keyed by deterministic ids, so repeating a write after a
reported failure replaces the earlier row instead of adding a duplicate.
Completion maps are merged one key at a time and never overwritten as a
whole. ``ManifestStore`` serializes its read-modify-write cycles with a
lock because commits run on worker threads.

Lists and maps (image sequences, completion maps, findings, boxes) are
stored as JSON text in their cells.

See Also
--------
aistudy_ui.core.session : Calls write_trial and mark_completed on commit
"""

import json
import threading
from datetime import datetime, timezone
from pathlib import Path

import pandas as pd

from .participant import Participant
from .trial import TrialRecord

STUDY_DIR = "study"
PARTICIPANTS = "participants.xlsx"
TRIALS = "trials.xlsx"

PARTICIPANT_COLUMNS = [
    "user_id",
    "treatment_group",
    "current_phase",
    "image_sequence",
    "image_sequence_phase2",
    "completed_trials",
    "completed_trials_phase2",
    "timestamp",
]
TRIAL_COLUMNS = [f for f in TrialRecord.__dataclass_fields__] + ["timestamp"]


def study_path(root: Path, name: str) -> Path:
    """
    Construct the full path to a study workbook.

    Examples
    --------
    >>> study_path(Path("/data/study1"), TRIALS)
    PosixPath('/data/study1/study/trials.xlsx')
    """
    return Path(root) / STUDY_DIR / name


def read_manifest(root: Path, name: str, columns: list[str]) -> pd.DataFrame:
    """
    Read a study workbook, returning an empty DataFrame if it is missing.

    Parameters
    ----------
    root : Path
        Root directory of the study data
    name : str
        Workbook file name (``PARTICIPANTS`` or ``TRIALS``)
    columns : list of str
        Schema used when the workbook does not exist yet

    Returns
    -------
    pd.DataFrame
        Workbook contents with cells kept as the objects Excel stored (text
        stays text, so ids such as group "0" survive the round trip) and
        empty cells as None.
    """
    p = study_path(root, name)
    if p.exists():
        df = pd.read_excel(p, dtype=object)
        return df.astype(object).where(pd.notna(df), None)
    return pd.DataFrame(columns=columns)


def upsert_manifest(root: Path, name: str, columns: list[str], row: dict, key: list[str]) -> None:
    """
    Insert or update one row of a study workbook.

    Parameters
    ----------
    root : Path
        Root directory of the study data
    name : str
        Workbook file name
    columns : list of str
        Schema for a new workbook
    row : dict
        Row values; must contain every column in ``key``
    key : list of str
        Columns identifying the row

    Notes
    -----
    1. Reads the existing workbook
    2. Looks for a row matching all key columns
    3. Sets ``timestamp`` to the current UTC time
    4. Updates the matching row or appends a new one
    5. Creates the parent directory if needed and writes the workbook back
    """
    df = read_manifest(root, name, columns)
    row = dict(row)
    row["timestamp"] = datetime.now(timezone.utc).isoformat()
    mask = pd.Series(True, index=df.index)
    for k in key:
        mask &= df[k].astype(str) == str(row[k])
    if mask.any():
        for col in row:
            if col not in df.columns:
                df[col] = None
        df.loc[mask, list(row.keys())] = list(row.values())
    else:
        df = pd.concat([df, pd.DataFrame([row])], ignore_index=True)
    p = study_path(root, name)
    p.parent.mkdir(parents=True, exist_ok=True)
    df.to_excel(p, index=False)


def _loads(value, default):
    if value is None or value == "":
        return default
    if isinstance(value, (list, dict)):
        return value
    return json.loads(value)


class TrialStore:
    """
    Persistence interface used by the session controller.

    Implementations must make ``write_trial`` an upsert on
    (participant_id, trial_id) and ``mark_completed`` a merge of a single key
    into the phase's completion map.
    """

    def read_participant(self, user_id: str) -> Participant:
        raise NotImplementedError

    def upsert_participant(self, participant: Participant) -> None:
        raise NotImplementedError

    def write_trial(self, participant_id: str, record: TrialRecord) -> None:
        raise NotImplementedError

    def mark_completed(self, participant_id: str, phase: str, trial_id: str) -> None:
        raise NotImplementedError

    def read_trials(self, participant_id: str | None = None) -> pd.DataFrame:
        raise NotImplementedError


class ManifestStore(TrialStore):
    """
    Excel-backed trial store.

    Parameters
    ----------
    root : Path
        Root directory; workbooks live in ``<root>/study/``

    Examples
    --------
    >>> store = ManifestStore(Path("data"))
    >>> store.upsert_participant(Participant("0-X9J2K", "0", image_sequence=[4, 1, 3]))
    >>> store.mark_completed("0-X9J2K", "phase1", "trial_1")
    >>> store.read_participant("0-X9J2K").completed_trials
    {'trial_1': True}
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self._lock = threading.Lock()

    def _participant_rows(self, user_id):
        df = read_manifest(self.root, PARTICIPANTS, PARTICIPANT_COLUMNS)
        return df[df["user_id"].astype(str) == str(user_id)]

    def read_participant(self, user_id: str) -> Participant:
        """
        Raises
        ------
        KeyError
            If no participant with that id exists
        """
        rows = self._participant_rows(user_id)
        if rows.empty:
            raise KeyError(f"Unknown participant {user_id!r}")
        r = rows.iloc[0]
        seq2 = _loads(r.get("image_sequence_phase2"), None)
        return Participant(
            user_id=str(r["user_id"]),
            treatment_group=str(r["treatment_group"]),
            current_phase=str(r["current_phase"] or "phase1"),
            image_sequence=[int(i) for i in _loads(r.get("image_sequence"), [])],
            image_sequence_phase2=[int(i) for i in seq2] if seq2 is not None else None,
            completed_trials=_loads(r.get("completed_trials"), {}),
            completed_trials_phase2=_loads(r.get("completed_trials_phase2"), {}),
        )

    def upsert_participant(self, participant: Participant) -> None:
        row = {
            "user_id": participant.user_id,
            "treatment_group": str(participant.treatment_group),
            "current_phase": participant.current_phase,
            "image_sequence": json.dumps(list(participant.image_sequence)),
            "image_sequence_phase2": (
                json.dumps(list(participant.image_sequence_phase2))
                if participant.image_sequence_phase2 is not None
                else None
            ),
            "completed_trials": json.dumps(participant.completed_trials),
            "completed_trials_phase2": json.dumps(participant.completed_trials_phase2),
        }
        with self._lock:
            upsert_manifest(
                self.root, PARTICIPANTS, PARTICIPANT_COLUMNS, row, ["user_id"]
            )

    def write_trial(self, participant_id: str, record: TrialRecord) -> None:
        row = record.to_row()
        row["participant_id"] = participant_id
        with self._lock:
            upsert_manifest(
                self.root, TRIALS, TRIAL_COLUMNS, row, ["participant_id", "trial_id"]
            )

    def mark_completed(self, participant_id: str, phase: str, trial_id: str) -> None:
        col = "completed_trials_phase2" if phase == "phase2" else "completed_trials"
        with self._lock:
            rows = self._participant_rows(participant_id)
            if rows.empty:
                raise KeyError(f"Unknown participant {participant_id!r}")
            done = _loads(rows.iloc[0].get(col), {})
            done[trial_id] = True
            upsert_manifest(
                self.root,
                PARTICIPANTS,
                PARTICIPANT_COLUMNS,
                {"user_id": participant_id, col: json.dumps(done)},
                ["user_id"],
            )

    def read_trials(self, participant_id: str | None = None) -> pd.DataFrame:
        df = read_manifest(self.root, TRIALS, TRIAL_COLUMNS)
        if participant_id is not None:
            df = df[df["participant_id"].astype(str) == str(participant_id)]
        return df.reset_index(drop=True)
