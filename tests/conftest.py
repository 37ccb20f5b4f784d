import logging

import numpy as np
import pytest

from rbfnet.rbf_from_scratch import RbfTrainer, compute_zscore_stats
from rbfnet.services.artifacts import ModelBundle


@pytest.fixture(autouse=True)
def quiet_logs(caplog):
    caplog.set_level(logging.WARNING, logger="rbfnet")
    yield


def make_blobs(n_per_class: int = 40, seed: int = 0):
    """Two well-separated raw (un-normalized) clusters, rows interleaved by class."""
    rng = np.random.default_rng(seed)
    neg = rng.normal([10.0, 200.0, 5.0], [1.0, 10.0, 0.5], size=(n_per_class, 3))
    pos = rng.normal([18.0, 120.0, 9.0], [1.0, 10.0, 0.5], size=(n_per_class, 3))
    X = np.empty((2 * n_per_class, 3))
    X[0::2] = neg
    X[1::2] = pos
    y = np.tile([0.0, 1.0], n_per_class)
    return X, y


@pytest.fixture
def blobs():
    return make_blobs()


@pytest.fixture
def normalized_blobs(blobs):
    X, y = blobs
    stats = compute_zscore_stats(X)
    return stats.normalize_rows(X), y, stats


@pytest.fixture
def trained_bundle(normalized_blobs):
    X, y, stats = normalized_blobs
    network = RbfTrainer(seed=7).train(X, y, hidden_count=4, epochs=60, learning_rate=0.01)
    return ModelBundle(
        network,
        stats,
        feature_names=["energy", "sugar", "salt"],
        target_name="is_healthy",
        name="blobs_model",
    )
