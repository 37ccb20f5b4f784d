"""RBF network classifier with exact Shapley explanations and k-fold grid search."""

from .rbf_from_scratch import (
    InputShapeError,
    NormalizationStats,
    RbfNetwork,
    RbfTrainer,
    compute_zscore_stats,
    kmeans,
    knn_sigmas,
    train_rbf_network,
)
from .services.artifacts import ModelBundle, ModelNotFoundError, ModelStore
from .services.explain import exact_shapley, global_importance, replacement_shapley
from .services.metrics import regression_metrics, roc_auc
from .services.validation import cross_validate, grid_search

__version__ = "0.1.0"
