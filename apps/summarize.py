#!/usr/bin/env python
"""
Write outcome metrics for one participant.

Usage: summarize.py <data_root> <user_id> [--phase phase1|phase2] [--out DIR]

Reads ``<data_root>/study/trials.xlsx`` and writes ``metrics.json`` and
``metrics.txt`` to ``DIR`` (default ``<data_root>/study/<user_id>``).
"""

import argparse
import json
import sys
from pathlib import Path

# Add src to path for development
src_path = Path(__file__).parent.parent / "src"
if src_path.exists():
    sys.path.insert(0, str(src_path))

from aistudy_ui.core.config import settings  # noqa: E402
from aistudy_ui.core.logging_utils import get_logger, setup_logging  # noqa: E402
from aistudy_ui.core.metrics import compute_trial_metrics, metrics_to_text  # noqa: E402
from aistudy_ui.core.state import STUDY_DIR, ManifestStore  # noqa: E402


def main(argv=None):
    ap = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    ap.add_argument("data_root", type=Path)
    ap.add_argument("user_id")
    ap.add_argument("--phase", choices=["phase1", "phase2"], default=None)
    ap.add_argument("--out", type=Path, default=None)
    args = ap.parse_args(argv)

    setup_logging(settings)
    logger = get_logger(__name__)

    df = ManifestStore(args.data_root).read_trials(args.user_id)
    if args.phase is not None:
        df = df[df["phase"] == args.phase]
    if df.empty:
        logger.error("No trials stored for %s", args.user_id)
        return 1

    metrics = compute_trial_metrics(df)
    out = args.out or args.data_root / STUDY_DIR / args.user_id
    out.mkdir(parents=True, exist_ok=True)
    with open(out / "metrics.json", "w") as f:
        json.dump(metrics, f, indent=2)
    text = metrics_to_text(metrics)
    with open(out / "metrics.txt", "w") as f:
        f.write(text)
    logger.info("Wrote metrics for %s to %s", args.user_id, out)
    print(text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
