"""
Shapley-value explanations for the RBF classifier.

This module provides two attribution primitives and their dataset-level
aggregation:

1) Exact Shapley values (``exact_shapley``)
   - For every feature j, enumerates all 2^(n-1) coalitions S of the other
     features with a bit mask. Both probes start from the background vector;
     features in S take the instance's values, and j is either set to its
     actual value ("present") or left at the background ("absent").
   - Weighted by |S|! (n - |S| - 1)! / n!, the marginal contributions sum to
     f(instance) - f(background) (efficiency).
   - Costs O(n * 2^n) model evaluations, so it is limited to small feature
     counts. Larger inputs raise instead of silently switching to sampling.

2) Value replacement (``replacement_shapley``)
   - Interventional leave-one-out: f(x) - f(x with feature i := background[i]).
     Linear in n, but not efficient in the Shapley sense.

Global importance averages |attribution| over the rows of a dataset. Rows
are independent; with ``n_jobs > 1`` they are explained in a thread pool and
collected in submission order.

Notes
-----
- ``model`` is any object exposing ``forward(x) -> float``: an ``RbfNetwork``
  (normalized inputs) or a ``ModelBundle`` (raw inputs). A batched
  ``predict_proba(X)`` is used when available.
- The background is conventionally the Z-score mean of a reference dataset
  (``background_from``), in the same space as the instances.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict

import numpy as np

from ..rbf_from_scratch import InputShapeError, as_matrix, compute_zscore_stats

logger = logging.getLogger(__name__)

MAX_EXACT_FEATURES = 16


def _predict_rows(model, X: np.ndarray) -> np.ndarray:
    if hasattr(model, "predict_proba"):
        return np.asarray(model.predict_proba(X), dtype=float).ravel()
    return np.array([float(model.forward(row)) for row in X])


def _check_pair(instance, background):
    x = np.asarray(instance, dtype=float).ravel()
    b = np.asarray(background, dtype=float).ravel()
    if x.size == 0:
        raise InputShapeError("instance is empty.")
    if x.size != b.size:
        raise InputShapeError(f"instance has {x.size} features, background has {b.size}.")
    return x, b


def background_from(dataset) -> np.ndarray:
    """Per-feature mean of ``dataset``, used as the "feature absent" baseline."""
    stats = compute_zscore_stats(dataset)
    if stats.is_empty:
        raise InputShapeError("Cannot derive a background from an empty dataset.")
    return stats.mean


def coalition_weights(n: int) -> np.ndarray:
    """``w[s] = s! (n - s - 1)! / n!`` for coalition sizes s = 0..n-1."""
    fact = [math.factorial(i) for i in range(n + 1)]
    return np.array([fact[s] * fact[n - s - 1] / fact[n] for s in range(n)])


def exact_shapley(model, instance, background, max_features: int = MAX_EXACT_FEATURES) -> np.ndarray:
    """Exact Shapley values of one instance by coalition enumeration.

    Args
    ----
    model:
        Object exposing ``forward(x) -> float``.
    instance:
        Feature vector of length n to explain.
    background:
        Baseline vector of length n standing in for absent features.
    max_features:
        Refuse inputs with more features than this.

    Returns
    -------
    np.ndarray
        Shape (n,); sums to f(instance) - f(background) up to rounding.

    Raises
    ------
    InputShapeError
        If instance and background lengths differ.
    ValueError
        If n exceeds ``max_features``.
    """
    x, b = _check_pair(instance, background)
    n = x.size
    if n > max_features:
        raise ValueError(
            f"Exact Shapley needs {n} * 2^{n - 1} probe pairs; limit is {max_features} features."
        )

    weights = coalition_weights(n)
    n_subsets = 1 << (n - 1)
    masks = np.arange(n_subsets)
    bits = ((masks[:, None] >> np.arange(n - 1)[None, :]) & 1).astype(bool)
    sizes = bits.sum(axis=1)
    w = weights[sizes]

    shap = np.zeros(n)
    for j in range(n):
        others = np.array([i for i in range(n) if i != j], dtype=int)

        present = np.tile(b, (n_subsets, 1))
        if others.size:
            in_s = np.zeros((n_subsets, n), dtype=bool)
            in_s[:, others] = bits
            present = np.where(in_s, x, present)
        absent = present.copy()
        present[:, j] = x[j]
        absent[:, j] = b[j]

        delta = _predict_rows(model, present) - _predict_rows(model, absent)
        shap[j] = float(np.sum(w * delta))
    return shap


def replacement_shapley(model, instance, background) -> np.ndarray:
    """Value-replacement attribution: f(x) - f(x with x_i set to background_i)."""
    x, b = _check_pair(instance, background)
    n = x.size
    probes = np.tile(x, (n + 1, 1))
    probes[np.arange(1, n + 1), np.arange(n)] = b
    preds = _predict_rows(model, probes)
    return preds[0] - preds[1:]


METHODS: Dict[str, Callable] = {
    "exact": exact_shapley,
    "replacement": replacement_shapley,
}


def explain_rows(model, rows, background, method: str = "exact", n_jobs: int = 1) -> np.ndarray:
    """Attribution for every row, shape (N, n), rows in input order."""
    if method not in METHODS:
        raise ValueError(f"Unknown method {method!r}; choose from {sorted(METHODS)}.")
    X = as_matrix(rows, name="dataset")
    explain = METHODS[method]
    b = np.asarray(background, dtype=float).ravel()

    if n_jobs is None or n_jobs <= 1 or X.shape[0] == 1:
        results = [explain(model, row, b) for row in X]
    else:
        with ThreadPoolExecutor(max_workers=n_jobs) as pool:
            results = list(pool.map(lambda row: explain(model, row, b), X))
    return np.vstack(results)


def global_importance(model, dataset, background, method: str = "exact", n_jobs: int = 1) -> np.ndarray:
    """Mean absolute attribution per feature over ``dataset`` (all >= 0)."""
    per_row = explain_rows(model, dataset, background, method=method, n_jobs=n_jobs)
    logger.info("Explained %d rows with %s Shapley values", per_row.shape[0], method)
    return np.mean(np.abs(per_row), axis=0)


def ranked_importance(feature_names, importances):
    """Pair names with scores, highest first (for charts / top-k lists)."""
    imps = np.asarray(importances, dtype=float).ravel()
    if len(feature_names) != imps.size:
        raise InputShapeError(f"{len(feature_names)} names for {imps.size} scores.")
    order = np.argsort(-imps, kind="stable")
    return [(feature_names[i], float(imps[i])) for i in order]
