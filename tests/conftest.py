from pathlib import Path

import pytest
from PIL import Image

from aistudy_ui.core.geometry import Box, Size
from aistudy_ui.core.participant import Participant
from aistudy_ui.core.predictions import AIPrediction, Diagnosis, PredictionLookup
from aistudy_ui.core.state import ManifestStore

CSV_HEADER = (
    "image,ai_confidence,prediction,ground_truth_raw,ground_truth_binary,"
    "image_width,image_height,"
    "bbox_xmin_norm,bbox_ymin_norm,bbox_xmax_norm,bbox_ymax_norm"
)
CSV_ROWS = [
    "1.png,0.91,1,3,1,200,100,0.1,0.2,0.5,0.6",
    "2.png,0.30,0,0,0,,,,,,",
    "3.png,0.70,1,2,1,,,0.25,0.25,0.75,0.75",
    "p2_3.png,0.80,1,2,1,,,0.0,0.0,0.5,0.5",
    "4.png,0.55,0,1,0,,,,,,",
    "5.png,0.65,1,3,1,,,,,,",
    # malformed rows
    "bad.png,abc,1,0,0,,,,,,",
    ",0.5,1,0,0,,,,,,",
    "6.png,0.5,2,0,0,,,,,,",
    "7.png,1.5,0,0,0,,,,,,",
]


class FakeClock:
    def __init__(self, start=1000.0, step=1.0):
        self.now = start
        self.step = step

    def __call__(self):
        t = self.now
        self.now += self.step
        return t


def make_png(path: Path, width: int, height: int, color=(128, 128, 128)):
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", (width, height), color).save(path)
    return path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dataset(tmp_path):
    root = tmp_path / "dataset"
    make_png(root / "no_map" / "1.png", 200, 100)
    make_png(root / "no_map" / "2.png", 200, 100)
    make_png(root / "no_map" / "3.png", 400, 400)
    make_png(root / "map" / "1.png", 200, 100, color=(255, 0, 0))
    csv = root / "predictions.csv"
    csv.write_text("\n".join([CSV_HEADER] + CSV_ROWS) + "\n")
    return root


@pytest.fixture
def lookup(dataset):
    return PredictionLookup(
        dataset / "predictions.csv", dataset / "no_map", dataset / "map"
    )


@pytest.fixture
def store(tmp_path):
    return ManifestStore(tmp_path / "data")


@pytest.fixture
def make_prediction():
    def _make(
        box=None,
        diagnosis=Diagnosis.YES,
        confidence=0.9,
        ground_truth_binary=1,
        image_size=Size(200, 200),
    ):
        return AIPrediction(
            id="1.png",
            image_path="dataset/no_map/1.png",
            heatmap_path=None,
            diagnosis=diagnosis,
            confidence=confidence,
            box=box,
            image_size=image_size,
            original_image_name="1.png",
            ground_truth_raw=3,
            ground_truth_binary=ground_truth_binary,
            prediction_raw=1 if diagnosis == Diagnosis.YES else 0,
        )

    return _make


@pytest.fixture
def participant():
    return Participant(
        user_id="1-AB3CD",
        treatment_group="1",
        current_phase="phase1",
        image_sequence=[3, 1, 2, 5, 4],
    )


@pytest.fixture
def ai_box():
    return Box(12, 9, 48, 52)
