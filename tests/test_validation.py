import numpy as np
import pytest

from rbfnet.rbf_from_scratch import InputShapeError, compute_zscore_stats
from rbfnet.services.validation import (
    ConfigSummary,
    FoldMetrics,
    cross_validate,
    evaluate_bundle,
    fold_windows,
    format_summary,
    grid_search,
    split_fold,
)


@pytest.mark.parametrize("n", [2, 3, 7, 10, 23, 50])
def test_fold_windows_cover_every_index_once(n):
    for k in range(2, n + 1):
        covered = [i for start, end in fold_windows(n, k) for i in range(start, end)]
        assert covered == list(range(n))


def test_last_fold_absorbs_remainder():
    assert fold_windows(11, 3) == [(0, 3), (3, 6), (6, 11)]


def test_split_fold_partitions_permutation():
    perm = np.random.default_rng(0).permutation(17)
    seen = []
    for fold in range(4):
        train_idx, test_idx = split_fold(perm, fold, 4)
        assert sorted(np.concatenate([train_idx, test_idx]).tolist()) == list(range(17))
        seen.extend(test_idx.tolist())
    assert sorted(seen) == list(range(17))


def test_fold_windows_argument_checks():
    with pytest.raises(ValueError):
        fold_windows(10, 1)
    with pytest.raises(ValueError):
        fold_windows(3, 4)


def test_grid_search_single_configuration(blobs):
    X, y = blobs
    result = grid_search(X, y, k_folds=5, start_neurons=5, end_neurons=5, step=1,
                         epochs=5, learning_rate=0.01)
    assert len(result.summaries) == 1
    summary = result.summaries[0]
    assert summary.hidden_count == 5
    assert len(summary.folds) == 5
    assert sum(f.n_test for f in summary.folds) == len(y)
    acc = summary.accuracy
    assert acc.mean == pytest.approx(np.mean([f.accuracy for f in summary.folds]))
    assert acc.std >= 0
    assert result.best is summary


def test_grid_search_scans_range_in_order(blobs):
    X, y = blobs
    result = grid_search(X, y, k_folds=3, start_neurons=2, end_neurons=7, step=2,
                         epochs=3, learning_rate=0.01)
    assert [s.hidden_count for s in result.summaries] == [2, 4, 6]
    best_acc = max(s.accuracy.mean for s in result.summaries)
    first_best = next(s for s in result.summaries if s.accuracy.mean == best_acc)
    assert result.best is first_best


def test_grid_search_learns_separable_data(blobs):
    X, y = blobs
    result = grid_search(X, y, k_folds=4, start_neurons=4, end_neurons=4,
                         epochs=60, learning_rate=0.01)
    summary = result.best
    assert summary.accuracy.mean >= 0.9
    assert summary.auc.mean >= 0.9


def test_grid_search_is_reproducible_and_thread_safe(blobs):
    X, y = blobs
    kwargs = dict(k_folds=4, start_neurons=3, end_neurons=5, step=2, epochs=4, learning_rate=0.02, seed=9)
    seq = grid_search(X, y, n_jobs=1, **kwargs)
    par = grid_search(X, y, n_jobs=4, **kwargs)
    assert [s.folds for s in seq.summaries] == [s.folds for s in par.summaries]


def test_grid_search_fold_normalization(blobs):
    X, y = blobs
    result = grid_search(X, y, k_folds=4, start_neurons=4, end_neurons=4,
                         epochs=20, learning_rate=0.01, fold_normalization=True)
    assert len(result.summaries[0].folds) == 4


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(k_folds=1, start_neurons=2, end_neurons=2),
        dict(k_folds=3, start_neurons=0, end_neurons=2),
        dict(k_folds=3, start_neurons=4, end_neurons=2),
        dict(k_folds=3, start_neurons=2, end_neurons=4, step=0),
        dict(k_folds=3, start_neurons=2, end_neurons=2, learning_rate=-1.0),
        dict(k_folds=200, start_neurons=2, end_neurons=2),
    ],
)
def test_grid_search_argument_checks(blobs, kwargs):
    X, y = blobs
    with pytest.raises(ValueError):
        grid_search(X, y, epochs=1, **kwargs)


def test_grid_search_target_mismatch(blobs):
    X, y = blobs
    with pytest.raises(InputShapeError):
        grid_search(X, y[:-1], k_folds=3, start_neurons=2, end_neurons=2, epochs=1)


def test_cross_validate_rejects_bad_permutation(normalized_blobs):
    X, y, _ = normalized_blobs
    with pytest.raises(InputShapeError):
        cross_validate(X, y, 3, k_folds=3, epochs=1, permutation=np.zeros(len(y), dtype=int))


def test_single_class_fold_auc_is_half():
    X = np.array([[0.0], [0.1], [0.2], [0.3], [1.0], [1.1]])
    y = np.array([0.0, 0.0, 0.0, 1.0, 1.0, 1.0])
    # identity permutation: the first fold only holds negatives
    summary = cross_validate(X, y, 2, k_folds=2, epochs=2, permutation=np.arange(6))
    assert summary.folds[0].auc == 0.5


def test_config_summary_report_and_dict():
    folds = [FoldMetrics(fold=i, accuracy=0.9, precision=0.8, recall=0.7, f1=0.75, auc=0.95, n_test=10)
             for i in range(3)]
    summary = ConfigSummary(hidden_count=6, folds=folds)
    assert summary.accuracy.std == 0.0
    d = summary.to_dict()
    assert d["hidden_count"] == 6
    assert d["n_folds"] == 3
    assert d["f1"]["mean"] == pytest.approx(0.75)
    report = format_summary(summary)
    assert report.splitlines()[0] == "Configuration: 6 Neurons"
    assert "AUC-ROC:" in report


def test_evaluate_bundle_uses_stored_stats(blobs, trained_bundle):
    X, y = blobs
    result = evaluate_bundle(trained_bundle, X, y)
    assert result["n_records"] == len(y)
    assert result["metrics_at_default"]["accuracy"] >= 0.95
    assert result["auc_roc"] >= 0.95
    assert 0.05 <= result["threshold_used"] <= 0.9

    # stats are replayed, not recomputed: shifting the data changes the scores
    shifted = evaluate_bundle(trained_bundle, X + compute_zscore_stats(X).stddev * 5, y, tune=False)
    assert "threshold_used" not in shifted
    assert shifted["metrics_at_default"] != result["metrics_at_default"]
