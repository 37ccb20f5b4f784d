"""
Classification and regression metrics for the RBF classifier.

This module implements:
- `confusion_counts`: TP/FP/TN/FN from positive-class probabilities.
- `compute_metrics_from_probs`: accuracy/precision/recall/F1 at a threshold.
- `roc_auc`: trapezoidal ROC-AUC from a descending-score sweep.
- `tune_threshold`: grid search for the decision threshold (accuracy, F1,
  or Youden's J).
- `mean_std`: sample mean and sample standard deviation of fold scores.
- `regression_metrics`: MAE / RMSE / range-normalized RMSE / R2.

Notes
-----
- Classification targets are binary {0, 1}.
- Every ratio is defined as 0 when its denominator is 0; no epsilons are
  folded into the formulas.
"""

import math
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, Tuple

import numpy as np

from ..rbf_from_scratch import InputShapeError


def _paired(proba, y) -> Tuple[np.ndarray, np.ndarray]:
    proba = np.asarray(proba, dtype=float).ravel()
    y = np.asarray(y, dtype=float).ravel()
    if proba.size != y.size:
        raise InputShapeError(f"{proba.size} scores but {y.size} labels.")
    return proba, y


def _ratio(num: float, den: float) -> float:
    return float(num / den) if den > 0 else 0.0


def confusion_counts(proba, y, thr: float = 0.5) -> Dict[str, int]:
    """Confusion-matrix counts after binarizing `proba` at `thr` (>= is positive)."""
    proba, y = _paired(proba, y)
    yhat = (proba >= thr).astype(int)
    y = y.astype(int)
    return {
        "tp": int(np.sum((yhat == 1) & (y == 1))),
        "fp": int(np.sum((yhat == 1) & (y == 0))),
        "tn": int(np.sum((yhat == 0) & (y == 0))),
        "fn": int(np.sum((yhat == 0) & (y == 1))),
    }


def compute_metrics_from_probs(proba, y, thr: float = 0.5) -> Dict[str, float]:
    """Compute accuracy, precision, recall, and F1 at a fixed threshold.

    Args
    ----
    proba:
        Positive-class probabilities, shape (N,) or (N, 1).
    y:
        Ground-truth binary labels (0/1), same length as `proba`.
    thr:
        Decision threshold applied to `proba` (default: 0.5).

    Returns
    -------
    dict
        Keys ``accuracy``, ``precision``, ``recall``, ``f1`` plus the raw
        counts ``tp``, ``fp``, ``tn``, ``fn``.
    """
    c = confusion_counts(proba, y, thr)
    tp, fp, tn, fn = c["tp"], c["fp"], c["tn"], c["fn"]

    acc = _ratio(tp + tn, tp + tn + fp + fn)
    prec = _ratio(tp, tp + fp)
    rec = _ratio(tp, tp + fn)
    f1 = _ratio(2 * prec * rec, prec + rec)

    out: Dict[str, float] = {"accuracy": acc, "precision": prec, "recall": rec, "f1": f1}
    out.update({k: float(v) for k, v in c.items()})
    return out


def roc_auc(y_true, y_score) -> float:
    """Compute ROC-AUC with the trapezoidal rule.

    Scores are sorted in descending order (stable, so equal scores keep their
    input order). Walking the list, each positive moves the curve up and each
    negative moves it right; the area between consecutive points is
    ``dFPR * (TPR + prev_TPR) / 2``.

    Returns
    -------
    float
        Area under the ROC curve, or exactly 0.5 when only one class is
        present (AUC is undefined there).
    """
    y_score, y_true = _paired(y_score, y_true)
    labels = y_true.astype(int)
    pos_count = int(np.sum(labels == 1))
    neg_count = labels.size - pos_count
    if pos_count == 0 or neg_count == 0:
        return 0.5

    order = np.argsort(-y_score, kind="stable")
    auc = 0.0
    prev_tpr = prev_fpr = 0.0
    cur_pos = cur_neg = 0
    for label in labels[order]:
        if label == 1:
            cur_pos += 1
        else:
            cur_neg += 1
        tpr = cur_pos / pos_count
        fpr = cur_neg / neg_count
        auc += (fpr - prev_fpr) * (tpr + prev_tpr) / 2.0
        prev_tpr, prev_fpr = tpr, fpr
    return float(auc)


def tune_threshold(y_true, y_score, strategy: str = "accuracy") -> Tuple[float, float]:
    """Grid-search the decision threshold to maximize a chosen criterion.

    Args
    ----
    y_true:
        Binary labels {0,1}.
    y_score:
        Positive-class scores/probabilities.
    strategy:
        ``"accuracy"`` (default), ``"f1"`` or ``"youden"`` (TPR - FPR).

    Returns
    -------
    tuple[float, float]
        (best_threshold, best_value). Ties keep the smaller threshold.

    Notes
    -----
    - ``accuracy`` sweeps 0.05, 0.10, ..., 0.90; the other strategies sweep
      [0.01, 0.99] in 99 steps.
    """
    if strategy == "accuracy":
        grid = np.round(np.arange(1, 19) * 0.05, 2)
    elif strategy in ("f1", "youden"):
        grid = np.linspace(0.01, 0.99, 99)
    else:
        raise ValueError(f"Unknown strategy: {strategy!r}")

    def _score(thr: float) -> float:
        m = compute_metrics_from_probs(y_score, y_true, thr)
        if strategy == "youden":
            tpr = _ratio(m["tp"], m["tp"] + m["fn"])
            fpr = _ratio(m["fp"], m["fp"] + m["tn"])
            return tpr - fpr
        return m[strategy]

    best_thr, best_val = 0.5, -math.inf
    for thr in grid:
        val = _score(float(thr))
        if val > best_val:
            best_val, best_thr = val, float(thr)
    return best_thr, float(best_val)


@dataclass(frozen=True)
class MetricSummary:
    """Mean ± sample standard deviation of one metric across folds."""
    mean: float
    std: float

    def __str__(self) -> str:
        return f"{self.mean:.4f} ± {self.std:.4f}"


def mean_std(values: Iterable[float]) -> MetricSummary:
    """Sample mean and sample standard deviation (divides by N - 1).

    Empty input gives (0, 0); a single value has std 0.
    """
    vals = np.asarray(list(values), dtype=float)
    if vals.size == 0:
        return MetricSummary(0.0, 0.0)
    if np.all(vals == vals[0]):
        # rounding in the mean must not leak into the spread of equal values
        return MetricSummary(float(vals[0]), 0.0)
    mean = float(vals.mean())
    sum_sq = float(np.sum((vals - mean) ** 2))
    return MetricSummary(mean, math.sqrt(sum_sq / (vals.size - 1)))


@dataclass(frozen=True)
class RegressionMetrics:
    """Standard regression errors; ``nrmse`` is RMSE divided by the target range."""
    mae: float
    rmse: float
    nrmse: float
    r2: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    def __str__(self) -> str:
        return (
            f"MAE:   {self.mae:.4f}\n"
            f"RMSE:  {self.rmse:.4f}\n"
            f"NRMSE: {self.nrmse:.2%}\n"
            f"R2:    {self.r2:.4f}"
        )


def regression_metrics(predictions, actuals) -> RegressionMetrics:
    """Compute MAE, RMSE, NRMSE and R2.

    Raises
    ------
    InputShapeError
        If the inputs are empty or differ in length.

    Notes
    -----
    - NRMSE is 0 when all actual values are equal (zero range).
    - R2 is 0 when the total sum of squares is 0 (constant targets).
    """
    pred, act = _paired(predictions, actuals)
    if pred.size == 0:
        raise InputShapeError("predictions and actuals must be non-empty.")

    err = pred - act
    mae = float(np.mean(np.abs(err)))
    sum_sq_error = float(np.sum(err ** 2))
    rmse = math.sqrt(sum_sq_error / pred.size)

    value_range = float(act.max() - act.min())
    nrmse = rmse / value_range if value_range > 0 else 0.0

    ss_tot = float(np.sum((act - act.mean()) ** 2))
    r2 = 1.0 - sum_sq_error / ss_tot if ss_tot > 0 else 0.0
    return RegressionMetrics(mae=mae, rmse=rmse, nrmse=nrmse, r2=r2)
