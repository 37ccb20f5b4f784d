"""
K-fold cross-validation and grid search over the RBF hidden-unit count.

Workflow of ``grid_search``:
    1) Z-score the raw inputs once (or per training fold when
       ``fold_normalization=True``).
    2) Draw one shuffled permutation per neuron count from a single RNG, in
       scan order, before any training starts.
    3) For each configuration and fold: the fold's contiguous window of the
       permutation is the test set, the rest is training data. A fresh
       ``RbfTrainer`` is fit and scored at threshold 0.5 (accuracy,
       precision, recall, F1) plus ROC-AUC.
    4) Each metric is summarized as sample mean ± sample std over the folds.
    5) The configuration with the highest mean accuracy wins (strict ``>``,
       so the smallest neuron count wins ties).

Folds never share mutable state, so ``n_jobs > 1`` (thread pool) produces the
same numbers as a sequential run.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..rbf_from_scratch import (
    InputShapeError,
    RbfTrainer,
    as_matrix,
    as_vector,
    compute_zscore_stats,
    make_rng,
)
from .artifacts import ModelBundle
from .metrics import MetricSummary, compute_metrics_from_probs, mean_std, roc_auc, tune_threshold

logger = logging.getLogger(__name__)

METRIC_NAMES = ("accuracy", "precision", "recall", "f1", "auc")


# -----------------
# Fold partitioning
# -----------------

def fold_windows(n: int, k: int) -> List[Tuple[int, int]]:
    """Contiguous ``[start, end)`` test windows of size n // k.

    The last window runs to ``n`` so the windows cover every index once.
    """
    if k < 2:
        raise ValueError("k_folds must be >= 2.")
    if n < k:
        raise ValueError(f"Need at least k_folds={k} records, got {n}.")
    size = n // k
    return [(f * size, n if f == k - 1 else (f + 1) * size) for f in range(k)]


def split_fold(permutation: np.ndarray, fold: int, k: int) -> Tuple[np.ndarray, np.ndarray]:
    """(train_idx, test_idx) for one fold of a shuffled index permutation."""
    start, end = fold_windows(len(permutation), k)[fold]
    test_idx = permutation[start:end]
    train_idx = np.concatenate([permutation[:start], permutation[end:]])
    return train_idx, test_idx


# -----------------
# Result containers
# -----------------

@dataclass(frozen=True)
class FoldMetrics:
    fold: int
    accuracy: float
    precision: float
    recall: float
    f1: float
    auc: float
    n_test: int

    def as_dict(self) -> Dict[str, float]:
        return {m: getattr(self, m) for m in METRIC_NAMES}


@dataclass
class ConfigSummary:
    """Cross-validated performance of one hidden-unit count."""
    hidden_count: int
    folds: List[FoldMetrics] = field(default_factory=list)

    def metric(self, name: str) -> MetricSummary:
        if name not in METRIC_NAMES:
            raise KeyError(name)
        return mean_std(getattr(f, name) for f in self.folds)

    @property
    def accuracy(self) -> MetricSummary:
        return self.metric("accuracy")

    @property
    def precision(self) -> MetricSummary:
        return self.metric("precision")

    @property
    def recall(self) -> MetricSummary:
        return self.metric("recall")

    @property
    def f1(self) -> MetricSummary:
        return self.metric("f1")

    @property
    def auc(self) -> MetricSummary:
        return self.metric("auc")

    def to_dict(self) -> Dict[str, object]:
        out: Dict[str, object] = {"hidden_count": self.hidden_count, "n_folds": len(self.folds)}
        for name in METRIC_NAMES:
            s = self.metric(name)
            out[name] = {"mean": s.mean, "std": s.std}
        return out


@dataclass
class GridSearchResult:
    summaries: List[ConfigSummary]
    best: Optional[ConfigSummary]

    @property
    def best_hidden_count(self) -> Optional[int]:
        return self.best.hidden_count if self.best else None

    def to_dict(self) -> Dict[str, object]:
        return {
            "summaries": [s.to_dict() for s in self.summaries],
            "best_hidden_count": self.best_hidden_count,
            "best_mean_accuracy": self.best.accuracy.mean if self.best else None,
        }


def format_summary(summary: ConfigSummary) -> str:
    """Multi-line ``Metric: mean ± std`` report of one configuration."""
    lines = [f"Configuration: {summary.hidden_count} Neurons"]
    for label, name in (("Accuracy:", "accuracy"), ("Precision:", "precision"),
                        ("Recall:", "recall"), ("F-Measure:", "f1")):
        s = summary.metric(name)
        lines.append(f"{label:<12} {s.mean:8.2%} ± {s.std:6.2%}")
    s = summary.auc
    lines.append(f"{'AUC-ROC:':<12} {s.mean:8.4f} ± {s.std:6.4f}")
    return "\n".join(lines)


# -----------------
# Fold evaluation
# -----------------

def evaluate_fold(network, test_inputs: np.ndarray, test_targets: np.ndarray, fold: int = 0) -> FoldMetrics:
    """Score a trained network on one held-out fold at threshold 0.5."""
    proba = np.array([network.forward(row) for row in test_inputs])
    m = compute_metrics_from_probs(proba, test_targets, thr=0.5)
    return FoldMetrics(
        fold=fold,
        accuracy=m["accuracy"],
        precision=m["precision"],
        recall=m["recall"],
        f1=m["f1"],
        auc=roc_auc(test_targets, proba),
        n_test=int(test_targets.size),
    )


def _run_fold(
    X: np.ndarray,
    y: np.ndarray,
    permutation: np.ndarray,
    fold: int,
    k_folds: int,
    hidden_count: int,
    epochs: int,
    learning_rate: float,
    seed: int,
    fold_normalization: bool,
) -> FoldMetrics:
    train_idx, test_idx = split_fold(permutation, fold, k_folds)
    X_train, X_test = X[train_idx], X[test_idx]
    if fold_normalization:
        stats = compute_zscore_stats(X_train)
        X_train, X_test = stats.normalize_rows(X_train), stats.normalize_rows(X_test)

    trainer = RbfTrainer(seed=seed, log_every=0)
    network = trainer.train(X_train, y[train_idx], hidden_count, epochs, learning_rate)
    return evaluate_fold(network, X_test, y[test_idx], fold=fold)


def _validate_inputs(inputs, targets) -> Tuple[np.ndarray, np.ndarray]:
    X = as_matrix(inputs)
    y = as_vector(targets)
    if y.size != X.shape[0]:
        raise InputShapeError(f"{X.shape[0]} input rows but {y.size} targets.")
    return X, y


def cross_validate(
    inputs,
    targets,
    hidden_count: int,
    k_folds: int = 5,
    epochs: int = 100,
    learning_rate: float = 0.01,
    seed: int = 42,
    permutation: Optional[Sequence[int]] = None,
    n_jobs: int = 1,
    fold_normalization: bool = False,
) -> ConfigSummary:
    """K-fold cross-validation of one hidden-unit count.

    ``inputs`` are used as given (normalize them first, or pass
    ``fold_normalization=True`` to fit stats on each training fold). When
    ``permutation`` is None, one is drawn from ``seed``.
    """
    X, y = _validate_inputs(inputs, targets)
    fold_windows(X.shape[0], k_folds)
    if permutation is None:
        permutation = make_rng(seed).permutation(X.shape[0])
    permutation = np.asarray(permutation, dtype=int)
    if permutation.size != X.shape[0] or np.unique(permutation).size != X.shape[0]:
        raise InputShapeError("permutation must list every record index exactly once.")

    def run(fold: int) -> FoldMetrics:
        return _run_fold(X, y, permutation, fold, k_folds, hidden_count,
                         epochs, learning_rate, seed, fold_normalization)

    if n_jobs is None or n_jobs <= 1:
        folds = [run(f) for f in range(k_folds)]
    else:
        with ThreadPoolExecutor(max_workers=n_jobs) as pool:
            folds = list(pool.map(run, range(k_folds)))
    return ConfigSummary(hidden_count=hidden_count, folds=folds)


def grid_search(
    inputs,
    targets,
    k_folds: int,
    start_neurons: int,
    end_neurons: int,
    step: int = 1,
    epochs: int = 100,
    learning_rate: float = 0.01,
    seed: int = 42,
    n_jobs: int = 1,
    fold_normalization: bool = False,
) -> GridSearchResult:
    """Grid search over ``range(start_neurons, end_neurons + 1, step)``.

    Args:
        inputs: RAW feature rows.
        targets: 0/1 labels.
        k_folds: Number of folds (>= 2, <= number of records).
        start_neurons, end_neurons, step: Hidden-unit range (inclusive).
        epochs, learning_rate: Passed to every fold's trainer.
        seed: Seeds both the per-configuration shuffles and each trainer.
        n_jobs: Worker threads for the folds of a configuration.
        fold_normalization: Fit Z-score stats on each training fold instead
            of once on the whole dataset.

    Returns:
        ``GridSearchResult`` with one summary per configuration, in scan order.
    """
    X, y = _validate_inputs(inputs, targets)
    if start_neurons < 1:
        raise ValueError("start_neurons must be >= 1.")
    if end_neurons < start_neurons:
        raise ValueError("end_neurons must be >= start_neurons.")
    if step < 1:
        raise ValueError("step must be >= 1.")
    if epochs < 1:
        raise ValueError("epochs must be >= 1.")
    if not learning_rate > 0:
        raise ValueError("learning_rate must be > 0.")
    fold_windows(X.shape[0], k_folds)

    if not fold_normalization:
        X = compute_zscore_stats(X).normalize_rows(X)

    neuron_counts = list(range(start_neurons, end_neurons + 1, step))
    rng = make_rng(seed)
    permutations = [rng.permutation(X.shape[0]) for _ in neuron_counts]

    logger.info(
        "Grid search: %d-fold CV, neurons %d-%d step %d, %d epochs, lr=%g",
        k_folds, start_neurons, end_neurons, step, epochs, learning_rate,
    )

    summaries: List[ConfigSummary] = []
    best: Optional[ConfigSummary] = None
    for hidden_count, perm in zip(neuron_counts, permutations):
        summary = cross_validate(
            X, y, hidden_count, k_folds=k_folds, epochs=epochs,
            learning_rate=learning_rate, seed=seed, permutation=perm,
            n_jobs=n_jobs, fold_normalization=fold_normalization,
        )
        summaries.append(summary)
        logger.info("%s", format_summary(summary))
        if best is None or summary.accuracy.mean > best.accuracy.mean:
            best = summary

    logger.info("BEST: %d Neurons (Acc: %.2f%%)", best.hidden_count, 100 * best.accuracy.mean)
    return GridSearchResult(summaries=summaries, best=best)


# -----------------------------
# Held-out evaluation of models
# -----------------------------

def evaluate_bundle(bundle: ModelBundle, raw_inputs, targets, tune: bool = True) -> Dict[str, object]:
    """Evaluate a stored model on RAW labelled data.

    Inputs are normalized with the bundle's training-time stats (never
    recomputed here). Reports metrics at 0.5, ROC-AUC, and, when ``tune`` is
    set, the accuracy-maximizing threshold with its metrics.
    """
    X, y = _validate_inputs(raw_inputs, targets)
    proba = bundle.predict_proba(X)
    result: Dict[str, object] = {
        "n_records": int(y.size),
        "metrics_at_default": compute_metrics_from_probs(proba, y, thr=0.5),
        "auc_roc": roc_auc(y, proba),
    }
    if tune:
        thr, _ = tune_threshold(y, proba, strategy="accuracy")
        result["threshold_used"] = thr
        result["metrics_at_optimal"] = compute_metrics_from_probs(proba, y, thr=thr)
    return result
