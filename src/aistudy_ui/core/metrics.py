"""
Study Outcome Metrics
=====================

This module summarizes stored trial records into the outcome measures of the
study: diagnostic accuracy before and after AI feedback, how often the
participant agreed with the AI, how often they revised their diagnosis and
how well their boxes overlapped the AI's.

Functions
---------
compute_trial_metrics
    Compute the outcome measures for a set of trial rows
metrics_to_text
    Format a metrics dictionary as human-readable text

Notes
-----
Accuracy and the confusion matrix use scikit-learn and only count trials
whose image has a binary ground truth (``ground_truth_binary`` of 0 or 1).
A diagnosis of "igen" counts as positive.

Agreement, revision and IoU measures are computed over AI-assisted trials
only. A measure with no eligible trials is None and prints as ``n/a``.

See Also
--------
aistudy_ui.core.state.ManifestStore.read_trials : Source of the rows
"""

import numpy as np
import pandas as pd
from sklearn.metrics import accuracy_score, confusion_matrix

from .predictions import Diagnosis


def _flag(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _mean(values):
    arr = pd.to_numeric(pd.Series(values, dtype=object), errors="coerce").dropna()
    return float(arr.mean()) if len(arr) else None


def _rate(mask):
    mask = np.asarray(mask, dtype=bool)
    return float(mask.mean()) if mask.size else None


def compute_trial_metrics(df: pd.DataFrame) -> dict:
    """
    Compute the study outcome measures from stored trial rows.

    Parameters
    ----------
    df : pd.DataFrame
        Trial rows as returned by ``ManifestStore.read_trials``

    Returns
    -------
    dict
        - 'n' : int, number of trials
        - 'n_ai' : int, number of AI-assisted trials
        - 'n_labeled' : int, trials with binary ground truth
        - 'initial_accuracy', 'final_accuracy' : float or None
        - 'confusion_matrix' : dict with 'tn', 'fp', 'fn', 'tp' for the final
          diagnosis (all zero without labeled trials)
        - 'ai_agreement_initial', 'ai_agreement_final' : float or None,
          share of AI trials whose diagnosis matched the AI's
        - 'revision_rate' : float or None, share of AI trials with a
          changed diagnosis
        - 'switch_to_ai_rate' : float or None, among AI trials that started
          out disagreeing with the AI, the share that ended up agreeing
        - 'mean_initial_confidence', 'mean_final_confidence' : float or None
        - 'mean_best_iou' : float or None, fraction in [0, 1]

    Examples
    --------
    >>> m = compute_trial_metrics(store.read_trials("1-AB3CD"))
    >>> m["n"], m["revision_rate"]
    (50, 0.12)
    """
    n = len(df)
    if n:
        ai_mask = df["ai_shown"].map(_flag).to_numpy(dtype=bool)
    else:
        ai_mask = np.zeros(0, dtype=bool)
    ai = df[ai_mask]

    if "ground_truth_binary" in df:
        gt = pd.to_numeric(df["ground_truth_binary"], errors="coerce")
    else:
        gt = pd.Series(np.nan, index=df.index)
    has_gt = gt.isin([0, 1]).to_numpy(dtype=bool)
    labeled = df[has_gt]
    y_true = gt[has_gt].astype(int).to_numpy()

    initial_accuracy = final_accuracy = None
    tn = fp = fn = tp = 0
    if len(labeled):
        y_init = (labeled["initial_diagnosis"] == Diagnosis.YES.value).astype(int).to_numpy()
        y_final = (labeled["final_diagnosis"] == Diagnosis.YES.value).astype(int).to_numpy()
        initial_accuracy = float(accuracy_score(y_true, y_init))
        final_accuracy = float(accuracy_score(y_true, y_final))
        tn, fp, fn, tp = confusion_matrix(y_true, y_final, labels=[0, 1]).ravel()

    agree_initial = agree_final = revision = switch = None
    mean_best_iou = None
    if len(ai):
        ai_dx = ai["ai_diagnosis"].to_numpy(dtype=object)
        init_dx = ai["initial_diagnosis"].to_numpy(dtype=object)
        final_dx = ai["final_diagnosis"].to_numpy(dtype=object)
        agree_initial = _rate(init_dx == ai_dx)
        agree_final = _rate(final_dx == ai_dx)
        revision = _rate(ai["reverted_decision"].map(_flag).to_numpy(dtype=bool))
        disagreed = init_dx != ai_dx
        switch = _rate((final_dx == ai_dx)[disagreed])
        mean_best_iou = _mean(ai["best_iou"]) if "best_iou" in ai else None

    return {
        "n": int(n),
        "n_ai": int(len(ai)),
        "n_labeled": int(len(labeled)),
        "initial_accuracy": initial_accuracy,
        "final_accuracy": final_accuracy,
        "confusion_matrix": {"tn": int(tn), "fp": int(fp), "fn": int(fn), "tp": int(tp)},
        "ai_agreement_initial": agree_initial,
        "ai_agreement_final": agree_final,
        "revision_rate": revision,
        "switch_to_ai_rate": switch,
        "mean_initial_confidence": _mean(df["initial_confidence"]) if n else None,
        "mean_final_confidence": _mean(df["final_confidence"]) if n else None,
        "mean_best_iou": mean_best_iou,
    }


def _fmt(value, fmt=".4f"):
    return "n/a" if value is None else format(value, fmt)


def metrics_to_text(metrics):
    """
    Format a metrics dictionary as a text summary.

    Examples
    --------
    >>> print(metrics_to_text(m))
    Trials: 50 (AI-assisted: 50, with ground truth: 48)
    <BLANKLINE>
    Initial accuracy: 0.7500
    Final accuracy: 0.8333
    ...
    """
    lines = []
    lines.append(
        f"Trials: {metrics['n']} (AI-assisted: {metrics['n_ai']}, "
        f"with ground truth: {metrics['n_labeled']})"
    )
    lines.append("")
    lines.append(f"Initial accuracy: {_fmt(metrics['initial_accuracy'])}")
    lines.append(f"Final accuracy: {_fmt(metrics['final_accuracy'])}")
    lines.append("")
    lines.append(f"AI agreement (initial): {_fmt(metrics['ai_agreement_initial'])}")
    lines.append(f"AI agreement (final): {_fmt(metrics['ai_agreement_final'])}")
    lines.append(f"Revision rate: {_fmt(metrics['revision_rate'])}")
    lines.append(f"Switch-to-AI rate: {_fmt(metrics['switch_to_ai_rate'])}")
    lines.append("")
    lines.append(f"Mean initial confidence: {_fmt(metrics['mean_initial_confidence'], '.2f')}")
    lines.append(f"Mean final confidence: {_fmt(metrics['mean_final_confidence'], '.2f')}")
    lines.append(f"Mean best IoU: {_fmt(metrics['mean_best_iou'], '.4f')}")
    lines.append("")
    cm = metrics["confusion_matrix"]
    lines.append("Confusion Matrix (final diagnosis):")
    lines.append(f"  TN: {cm['tn']}  FP: {cm['fp']}")
    lines.append(f"  FN: {cm['fn']}  TP: {cm['tp']}")
    return "\n".join(lines)
