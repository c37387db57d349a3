"""
AI Prediction Lookup
====================

This module resolves a trial's image index to the AI's precomputed opinion
about that image: diagnosis, confidence, an optional bounding box and an
optional heatmap. The data comes from a CSV shipped with the study dataset
and is loaded once per process.

Classes
-------
Diagnosis
    Binary diagnosis values used throughout the study ("igen" / "nem")
AIPrediction
    One dataset row in canonical (natural pixel) form
PredictionLookup
    Load-once, thread-safe cache keyed by image filename

Functions
---------
fallback_prediction
    Clearly flagged stand-in record for images missing from the dataset

Dataset Format
--------------
One row per image, header based. Required columns:

- ``image`` : filename key, e.g. ``"12.png"`` (phase 2 may use ``"p2_12.png"``)
- ``ai_confidence`` : model confidence in [0, 1]
- ``prediction`` : 0 or 1, the AI's diagnosis

Optional columns: ``ground_truth_raw``, ``ground_truth_binary``,
``image_width``, ``image_height`` and four box columns. With
``box_units="normalized"`` the box columns are
``bbox_xmin_norm, bbox_ymin_norm, bbox_xmax_norm, bbox_ymax_norm``; with
``box_units="pixel"`` they are ``bbox_xmin, bbox_ymin, bbox_xmax, bbox_ymax``.

Notes
-----
Dataset versions disagree on box units. The unit is declared up front and
boxes are converted to natural image pixels here, at load time, so the trial
engine only ever sees one space. Normalized boxes need the natural image
size, taken from ``image_width``/``image_height`` when present and otherwise
read from the image header.

Malformed rows are skipped with a warning; they never abort the load.

Examples
--------
>>> from aistudy_ui.core.predictions import PredictionLookup
>>> lookup = PredictionLookup("dataset/predictions.csv",
...                           "dataset/no_map", "dataset/map")
>>> pred = lookup.get(12)
>>> pred.diagnosis, pred.confidence
(<Diagnosis.YES: 'igen'>, 0.91)
"""

import logging
import math
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import pandas as pd

from .geometry import Box, Size, normalized_to_natural
from .image_io import image_size

logger = logging.getLogger(__name__)

BOX_COLUMNS = {
    "normalized": ("bbox_xmin_norm", "bbox_ymin_norm", "bbox_xmax_norm", "bbox_ymax_norm"),
    "pixel": ("bbox_xmin", "bbox_ymin", "bbox_xmax", "bbox_ymax"),
}
REQUIRED_COLUMNS = ("image", "ai_confidence", "prediction")
PHASE2_PREFIX = "p2_"


class Diagnosis(str, Enum):
    YES = "igen"
    NO = "nem"


@dataclass(frozen=True)
class AIPrediction:
    """
    The AI's opinion about one dataset image.

    Attributes
    ----------
    id : str
        Dataset key, e.g. ``"12.png"``
    image_path : str
        Path of the plain image shown to the participant
    heatmap_path : str or None
        Path of the saliency heatmap, None when the file does not exist
    diagnosis : Diagnosis
        AI diagnosis
    confidence : float
        AI confidence in [0, 1]
    box : Box or None
        AI region in natural image pixels
    image_size : Size or None
        Natural size of the image, when known
    original_image_name : str
        ``image`` column as written in the CSV
    ground_truth_raw, ground_truth_binary, prediction_raw : int
        Dataset metadata, -1 when absent
    is_fallback : bool
        True for records substituted by ``fallback_prediction``
    """

    id: str
    image_path: str
    heatmap_path: str | None
    diagnosis: Diagnosis
    confidence: float
    box: Box | None = None
    image_size: Size | None = None
    original_image_name: str = ""
    ground_truth_raw: int = -1
    ground_truth_binary: int = -1
    prediction_raw: int = -1
    is_fallback: bool = False


def fallback_prediction(index: int, image_dir: str | Path = "") -> AIPrediction:
    """
    Build the stand-in record used when the dataset has no row for an index.

    The record is negative with zero confidence and no box, and carries
    ``is_fallback=True`` so it is visible in the persisted trial.
    """
    key = f"{index}.png"
    return AIPrediction(
        id=f"fallback_{index}",
        image_path=str(Path(image_dir) / key),
        heatmap_path=None,
        diagnosis=Diagnosis.NO,
        confidence=0.0,
        box=None,
        original_image_name=key,
        is_fallback=True,
    )


def _float(value):
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(f) or math.isinf(f):
        return None
    return f


def _int(value, default=-1):
    f = _float(value)
    if f is None or not f.is_integer():
        return default
    return int(f)


class PredictionLookup:
    """
    Load-once cache of AI predictions keyed by image filename.

    Parameters
    ----------
    csv_path : str or Path
        Predictions CSV
    image_dir : str or Path
        Folder with the plain images (``no_map`` in the study dataset)
    heatmap_dir : str or Path, optional
        Folder with heatmaps named like the images (``map``)
    box_units : {"normalized", "pixel"}, default="normalized"
        Declared unit of the CSV box columns

    Attributes
    ----------
    loaded : bool
        True once a load has completed successfully
    skipped_rows : int
        Rows rejected by the last load

    Notes
    -----
    ``load()`` takes a lock for its whole duration. Concurrent callers block
    until the first load finishes and then see ``loaded=True``, so the cache
    is populated exactly once and read without locking afterwards.

    A missing or unreadable CSV is logged and leaves ``loaded`` False; the
    next ``load()`` tries again and lookups meanwhile return None.
    """

    def __init__(self, csv_path, image_dir, heatmap_dir=None, box_units="normalized"):
        if box_units not in BOX_COLUMNS:
            raise ValueError(f"Unknown box_units {box_units!r}")
        self.csv_path = Path(csv_path)
        self.image_dir = Path(image_dir)
        self.heatmap_dir = Path(heatmap_dir) if heatmap_dir else None
        self.box_units = box_units
        self._records: dict[str, AIPrediction] = {}
        self._lock = threading.Lock()
        self.loaded = False
        self.skipped_rows = 0

    def __len__(self):
        return len(self._records)

    def load(self) -> int:
        """
        Load the CSV into memory if that has not happened yet.

        Returns
        -------
        int
            Number of predictions held after the call
        """
        if self.loaded:
            return len(self._records)
        with self._lock:
            if self.loaded:
                return len(self._records)
            try:
                df = pd.read_csv(self.csv_path, dtype=str, keep_default_na=False)
            except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
                logger.error("Failed to load predictions from %s: %s", self.csv_path, e)
                return 0
            df.columns = [c.strip() for c in df.columns]
            missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
            if missing:
                logger.error(
                    "Predictions file %s lacks columns %s", self.csv_path, missing
                )
                return 0
            box_cols = BOX_COLUMNS[self.box_units]
            has_boxes = all(c in df.columns for c in box_cols)
            if not has_boxes:
                logger.warning(
                    "No %s box columns in %s; predictions carry no boxes",
                    self.box_units,
                    self.csv_path,
                )

            records = {}
            skipped = 0
            for row_no, row in enumerate(df.to_dict("records"), start=2):
                rec = self._parse_row(row, has_boxes, row_no)
                if rec is None:
                    skipped += 1
                    continue
                records[rec.id] = rec
            self._records = records
            self.skipped_rows = skipped
            self.loaded = True
        logger.info(
            "Loaded %d predictions from %s (%d rows skipped)",
            len(records),
            self.csv_path,
            skipped,
        )
        return len(records)

    def _parse_row(self, row: dict, has_boxes: bool, row_no: int):
        key = str(row.get("image", "")).strip()
        if not key:
            logger.warning("Row %d: empty image key, skipped", row_no)
            return None
        conf = _float(row.get("ai_confidence"))
        if conf is None or not 0.0 <= conf <= 1.0:
            logger.warning(
                "Row %d (%s): bad ai_confidence %r, skipped",
                row_no,
                key,
                row.get("ai_confidence"),
            )
            return None
        pred = _int(row.get("prediction"))
        if pred not in (0, 1):
            logger.warning(
                "Row %d (%s): bad prediction %r, skipped",
                row_no,
                key,
                row.get("prediction"),
            )
            return None

        image_path = self.image_dir / key
        heatmap_path = None
        if self.heatmap_dir is not None and (self.heatmap_dir / key).is_file():
            heatmap_path = str(self.heatmap_dir / key)

        size = None
        w, h = _float(row.get("image_width")), _float(row.get("image_height"))
        if w and h and w > 0 and h > 0:
            size = Size(w, h)
        box = None
        if has_boxes:
            if size is None and self.box_units == "normalized":
                size = image_size(image_path)
            box = self._parse_box(row, size, key, row_no)

        return AIPrediction(
            id=key,
            image_path=str(image_path),
            heatmap_path=heatmap_path,
            diagnosis=Diagnosis.YES if pred == 1 else Diagnosis.NO,
            confidence=conf,
            box=box,
            image_size=size,
            original_image_name=key,
            ground_truth_raw=_int(row.get("ground_truth_raw")),
            ground_truth_binary=_int(row.get("ground_truth_binary")),
            prediction_raw=pred,
        )

    def _parse_box(self, row, size, key, row_no):
        vals = [_float(row.get(c)) for c in BOX_COLUMNS[self.box_units]]
        if any(v is None for v in vals):
            return None
        x0, y0, x1, y1 = vals
        if x1 - x0 <= 0 or y1 - y0 <= 0:
            return None
        if self.box_units == "pixel":
            if min(vals) < 0:
                logger.warning("Row %d (%s): negative pixel box, dropped", row_no, key)
                return None
            return Box(x0, y0, x1 - x0, y1 - y0)
        if min(vals) < 0 or max(vals) > 1:
            logger.warning(
                "Row %d (%s): box %s is not normalized, dropped", row_no, key, vals
            )
            return None
        if size is None:
            logger.warning(
                "Row %d (%s): image size unknown, cannot place normalized box",
                row_no,
                key,
            )
            return None
        return normalized_to_natural(Box(x0, y0, x1 - x0, y1 - y0), size)

    @staticmethod
    def key_for(index: int, phase: str = "phase1") -> str:
        """Dataset key for a 1-based image index in the given phase."""
        if phase == "phase2":
            return f"{PHASE2_PREFIX}{index}.png"
        return f"{index}.png"

    def lookup(self, index: int, phase: str = "phase1") -> AIPrediction | None:
        """
        Return the prediction for an image index, or None when there is none.

        Loads the dataset first if needed. Phase-specific keys win over the
        plain ``"{index}.png"`` key. Never raises for a missing key.
        """
        self.load()
        for key in dict.fromkeys((self.key_for(index, phase), self.key_for(index))):
            rec = self._records.get(key)
            if rec is not None:
                return rec
        return None

    def get(self, index: int, phase: str = "phase1") -> AIPrediction:
        """Like ``lookup`` but substitutes ``fallback_prediction`` on a miss."""
        rec = self.lookup(index, phase)
        if rec is None:
            logger.warning(
                "No AI prediction for image %d (%s); using fallback", index, phase
            )
            return fallback_prediction(index, self.image_dir)
        return rec
