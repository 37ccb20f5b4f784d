"""
From-scratch RBF network components: preprocessing, centroid discovery,
width estimation, inference, and the supervised training loop.

This module intentionally avoids external ML frameworks to keep every step
transparent for learning and auditing. It includes:

- Data utilities:
    * `as_matrix`: validated conversion of row lists into a 2D float array.
    * `split_features_target`: schema-driven split of a DataFrame.
    * `NormalizationStats` / `compute_zscore_stats`: Z-score standardization.

- Hidden layer construction:
    * `kmeans`: Lloyd's algorithm with empty-cluster relocation.
    * `knn_sigmas`: density-adaptive Gaussian widths.

- Model & training:
    * `RbfNetwork`: Gaussian hidden layer + logistic output unit.
    * `RbfTrainer` / `train_rbf_network`: online gradient descent with
      momentum and learning-rate decay on the BCE gradient.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Tuple, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

SeedLike = Union[int, np.random.Generator, None]

STD_EPS = 1e-12
KMEANS_MAX_ITER = 100
SIGMA_MIN = 0.1
SIGMA_MAX = 3.0
DEFAULT_SIGMA = 1.0
MOMENTUM = 0.9
LR_DECAY = 0.01


class InputShapeError(ValueError):
    """Raised when input data is empty or has inconsistent dimensions."""


def make_rng(seed: SeedLike = None) -> np.random.Generator:
    """Return `seed` if it already is a Generator, else a fresh seeded one."""
    if isinstance(seed, np.random.Generator):
        return seed
    return np.random.default_rng(seed)


# ---------------------------
# Data utilities
# ---------------------------

def as_matrix(rows, name: str = "inputs") -> np.ndarray:
    """Convert a sequence of feature vectors into a 2D float array.

    Dimensionality is taken from the first row; every other row must match.

    Raises:
        InputShapeError: if `rows` is empty, ragged, or has zero columns.
    """
    if isinstance(rows, pd.DataFrame):
        rows = rows.to_numpy(dtype=float)
    if isinstance(rows, np.ndarray):
        if rows.ndim != 2 or rows.shape[0] == 0:
            raise InputShapeError(f"{name} must be a non-empty 2D array, got shape {rows.shape}.")
        matrix = rows.astype(float)
    else:
        rows = list(rows)
        if len(rows) == 0:
            raise InputShapeError(f"{name} is empty.")
        dim = len(rows[0])
        for i, row in enumerate(rows):
            if len(row) != dim:
                raise InputShapeError(
                    f"{name}[{i}] has {len(row)} features, expected {dim} (from the first row)."
                )
        matrix = np.asarray(rows, dtype=float)
    if matrix.shape[1] == 0:
        raise InputShapeError(f"{name} rows have no features.")
    return matrix


def as_vector(values, name: str = "targets") -> np.ndarray:
    """Convert scalar targets into a 1D float array."""
    vec = np.asarray(values, dtype=float).ravel()
    if vec.size == 0:
        raise InputShapeError(f"{name} is empty.")
    return vec


def parse_schema(schema: str) -> List[str]:
    """Split a `;`-separated schema (`feat1;feat2;...;target`) into names."""
    names = [s.strip() for s in schema.split(";") if s.strip()]
    if len(names) < 2:
        raise ValueError("Schema needs at least one feature and a target column.")
    return names


def split_features_target(df: pd.DataFrame, schema: str) -> Tuple[np.ndarray, np.ndarray]:
    """Split a DataFrame into (inputs, targets) following `schema`.

    The last schema entry is the target; the others are the features, in order.

    Raises:
        ValueError: if a schema column is missing or holds non-numeric values.
    """
    names = parse_schema(schema)
    missing = [c for c in names if c not in df.columns]
    if missing:
        raise ValueError(f"Columns missing from data: {missing}")

    numeric = df[names].apply(pd.to_numeric, errors="coerce")
    if numeric.isna().any().any():
        bad = [c for c in names if numeric[c].isna().any()]
        raise ValueError(f"Non-numeric or missing values in columns: {bad}")

    inputs = as_matrix(numeric[names[:-1]].to_numpy(dtype=float))
    targets = numeric[names[-1]].to_numpy(dtype=float)
    return inputs, targets


@dataclass(frozen=True)
class NormalizationStats:
    """Per-column Z-score statistics (population mean and std).

    Attributes:
        mean: shape (d,)
        stddev: shape (d,), strictly positive (near-zero std clamped to 1.0)
    """
    mean: np.ndarray
    stddev: np.ndarray

    @classmethod
    def empty(cls) -> "NormalizationStats":
        """Explicit result for an empty dataset."""
        return cls(np.zeros(0), np.zeros(0))

    @classmethod
    def from_arrays(cls, mean, stddev) -> "NormalizationStats":
        """Rebuild stats (e.g. from storage), enforcing the invariants."""
        mean = np.asarray(mean, dtype=float).ravel()
        stddev = np.asarray(stddev, dtype=float).ravel()
        if mean.shape != stddev.shape:
            raise InputShapeError(
                f"mean has {mean.size} entries but stddev has {stddev.size}."
            )
        if np.any(~np.isfinite(stddev)) or np.any(stddev <= 0):
            raise ValueError("stddev entries must be finite and > 0.")
        return cls(mean, stddev)

    @property
    def is_empty(self) -> bool:
        return self.mean.size == 0

    @property
    def dim(self) -> int:
        return int(self.mean.size)

    def _check(self, x: np.ndarray) -> None:
        if self.is_empty:
            raise ValueError("Cannot apply empty normalization stats.")
        if x.shape[-1] != self.dim:
            raise InputShapeError(f"Expected {self.dim} features, got {x.shape[-1]}.")

    def normalize(self, row) -> np.ndarray:
        """Apply (x - mean) / stddev to a single row."""
        x = np.asarray(row, dtype=float)
        self._check(x)
        return (x - self.mean) / self.stddev

    def normalize_rows(self, rows) -> np.ndarray:
        """Apply `normalize` to every row of a 2D input."""
        X = as_matrix(rows)
        self._check(X)
        return (X - self.mean) / self.stddev

    def denormalize(self, row) -> np.ndarray:
        """Inverse transform: x * stddev + mean."""
        x = np.asarray(row, dtype=float)
        self._check(x)
        return x * self.stddev + self.mean


def compute_zscore_stats(data) -> NormalizationStats:
    """Compute population mean/std per column for Z-score normalization.

    Use this on the RAW background (training) data only; the resulting stats
    must be replayed as-is on any evaluation data.

    Returns:
        `NormalizationStats.empty()` for an empty dataset, otherwise stats
        whose stddev entries are all > 0.
    """
    if data is None or len(data) == 0:
        logger.warning("compute_zscore_stats called on an empty dataset")
        return NormalizationStats.empty()
    X = as_matrix(data, name="data")
    mean = X.mean(axis=0)
    stddev = np.sqrt(((X - mean) ** 2).mean(axis=0))
    # constant columns
    stddev[stddev < STD_EPS] = 1.0
    return NormalizationStats(mean, stddev)


# -------------------------------
# Hidden layer: centers & widths
# -------------------------------

def squared_distances(X: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    """Squared Euclidean distances, shape (len(X), len(centroids))."""
    diff = X[:, None, :] - centroids[None, :, :]
    return np.sum(diff * diff, axis=2)


def kmeans(
    data,
    k: int,
    seed: SeedLike = 42,
    max_iter: int = KMEANS_MAX_ITER,
) -> Tuple[np.ndarray, np.ndarray]:
    """Lloyd's K-Means used to place RBF centers.

    Args:
        data: 2D feature matrix (already normalized).
        k: Number of centroids; may exceed the number of rows.
        seed: Seed or Generator; draws are made in a fixed order
            (initial picks, then relocations) so runs are reproducible.
        max_iter: Iteration cap.

    Returns:
        (centroids, assignments) with shapes (k, d) and (N,).

    Notes:
        - Initial centroids are `k` rows drawn with replacement, so
          duplicates are possible.
        - Ties in the assignment step go to the lowest centroid index.
        - A centroid that receives no points is moved onto a random data
          point. A relocation counts as a change, so the loop only reports
          convergence once the assignments are stable for the final centers.
          This is stricter than stopping as soon as no point changes
          assignment: with more clusters than distinct points some cluster
          stays empty, every pass relocates it, and the loop runs to
          `max_iter` (drawing one extra index per relocation).
    """
    X = as_matrix(data, name="data")
    if k < 1:
        raise ValueError("k must be >= 1.")
    rng = make_rng(seed)
    n = X.shape[0]

    centroids = X[rng.integers(0, n, size=k)].copy()
    assignments = np.full(n, -1, dtype=int)

    changed = True
    n_iter = 0
    while changed and n_iter < max_iter:
        n_iter += 1
        new_assignments = np.argmin(squared_distances(X, centroids), axis=1)
        changed = bool(np.any(new_assignments != assignments))
        assignments = new_assignments

        counts = np.bincount(assignments, minlength=k)
        for c in range(k):
            if counts[c] > 0:
                centroids[c] = X[assignments == c].mean(axis=0)
            else:
                centroids[c] = X[rng.integers(0, n)]
                changed = True

    logger.debug("kmeans: k=%d converged=%s after %d iterations", k, not changed, n_iter)
    return centroids, assignments


def knn_sigmas(centroids, k_neighbors: int = 2) -> np.ndarray:
    """Gaussian widths from the mean distance to the nearest centroids.

    Dense regions get narrow kernels, isolated centers get wide ones. Widths
    are clipped to [0.1, 3.0], a range suited to Z-scored inputs. A single
    centroid has no neighbours and gets a width of 1.0.
    """
    C = as_matrix(centroids, name="centroids")
    h = C.shape[0]
    if h == 1:
        return np.array([DEFAULT_SIGMA])
    if k_neighbors < 1:
        raise ValueError("k_neighbors must be >= 1.")

    dist = np.sqrt(squared_distances(C, C))
    sigmas = np.empty(h)
    for i in range(h):
        others = np.sort(np.delete(dist[i], i))
        sigmas[i] = others[:k_neighbors].mean()
    return np.clip(sigmas, SIGMA_MIN, SIGMA_MAX)


# -----------------
# Model definition
# -----------------

def sigmoid(z):
    """Numerically stable logistic function."""
    z = np.asarray(z, dtype=float)
    out = np.empty_like(z)
    pos = z >= 0
    out[pos] = 1.0 / (1.0 + np.exp(-z[pos]))
    ez = np.exp(z[~pos])
    out[~pos] = ez / (1.0 + ez)
    return out


def _frozen(a: np.ndarray) -> np.ndarray:
    view = a.view()
    view.setflags(write=False)
    return view


class RbfNetwork:
    """Radial basis function network with a single logistic output.

    Architecture:
        [Input d] -> Gaussian(h) : exp(-||x - c_h||^2 / (2 sigma_h^2))
                  -> weighted sum + bias -> Sigmoid

    Instances are built by `RbfTrainer` or `from_parameters` and are not
    mutated afterwards, so `forward` is safe to call from several threads.
    The parameter properties return read-only views for visualizers.
    """

    def __init__(self, input_dim: int, hidden_count: int) -> None:
        self._input_dim = int(input_dim)
        self._hidden_count = int(hidden_count)
        self._centroids = np.zeros((hidden_count, input_dim))
        self._sigmas = np.ones(hidden_count)
        self._weights = np.zeros(hidden_count)
        self._bias = 0.0

    @classmethod
    def from_parameters(cls, centroids, sigmas, weights, bias: float) -> "RbfNetwork":
        """Build a network from trained (or deserialized) parameters.

        Raises:
            InputShapeError: if the arrays disagree on the hidden count.
            ValueError: if any sigma is not strictly positive.
        """
        C = as_matrix(centroids, name="centroids")
        s = np.asarray(sigmas, dtype=float).ravel()
        w = np.asarray(weights, dtype=float).ravel()
        h, d = C.shape
        if s.size != h or w.size != h:
            raise InputShapeError(
                f"{h} centroids but {s.size} sigmas and {w.size} weights."
            )
        if np.any(~np.isfinite(s)) or np.any(s <= 0):
            raise ValueError("sigmas must be finite and > 0.")

        net = cls(d, h)
        net._centroids = C.copy()
        net._sigmas = s.copy()
        net._weights = w.copy()
        net._bias = float(bias)
        return net

    @property
    def input_dim(self) -> int:
        return self._input_dim

    @property
    def hidden_count(self) -> int:
        return self._hidden_count

    @property
    def centroids(self) -> np.ndarray:
        return _frozen(self._centroids)

    @property
    def sigmas(self) -> np.ndarray:
        return _frozen(self._sigmas)

    @property
    def weights(self) -> np.ndarray:
        return _frozen(self._weights)

    @property
    def bias(self) -> float:
        return self._bias

    def hidden_activations(self, x) -> np.ndarray:
        """Gaussian activations of every hidden unit for one input row."""
        x = np.asarray(x, dtype=float).ravel()
        if x.size != self._input_dim:
            raise InputShapeError(f"Expected {self._input_dim} features, got {x.size}.")
        diff = self._centroids - x
        dist_sq = np.sum(diff * diff, axis=1)
        return np.exp(-dist_sq / (2.0 * self._sigmas ** 2))

    def forward_with_activations(self, x) -> Tuple[float, np.ndarray]:
        """Forward pass that also returns the hidden activations."""
        act = self.hidden_activations(x)
        z = self._bias + float(act @ self._weights)
        return float(sigmoid(np.array([z]))[0]), act

    def forward(self, x) -> float:
        """Probability of the positive class for one (normalized) row."""
        return self.forward_with_activations(x)[0]

    def predict_proba(self, X) -> np.ndarray:
        """Batched forward pass, shape (N,)."""
        X = as_matrix(X)
        if X.shape[1] != self._input_dim:
            raise InputShapeError(f"Expected {self._input_dim} features, got {X.shape[1]}.")
        act = np.exp(-squared_distances(X, self._centroids) / (2.0 * self._sigmas ** 2))
        return sigmoid(act @ self._weights + self._bias)

    def to_dict(self) -> Dict[str, object]:
        """Plain-Python description of the parameters (for visualizers / JSON)."""
        return {
            "input_dim": self._input_dim,
            "hidden_count": self._hidden_count,
            "centroids": self._centroids.tolist(),
            "sigmas": self._sigmas.tolist(),
            "weights": self._weights.tolist(),
            "bias": self._bias,
        }

    def __repr__(self) -> str:
        return f"RbfNetwork(input_dim={self._input_dim}, hidden_count={self._hidden_count})"


# ----------------
# Training loop
# ----------------

def bce_loss(pred: np.ndarray, target: np.ndarray, eps: float = 1e-8) -> float:
    """Binary cross-entropy loss with epsilon clamping for stability."""
    pred_clamped = np.clip(pred, eps, 1 - eps)
    return float(-np.mean(
        target * np.log(pred_clamped) + (1 - target) * np.log(1 - pred_clamped)
    ))


class RbfTrainer:
    """Hybrid RBF trainer.

    1) K-Means places the centers (unsupervised).
    2) A KNN heuristic sets the widths.
    3) Online gradient descent with momentum fits the output weights and bias.

    Args:
        seed: Seed or Generator shared by clustering and weight init.
        momentum: Velocity smoothing coefficient.
        lr_decay: Decay factor in lr_t = lr0 / (1 + lr_decay * epoch).
        k_neighbors: Neighbours averaged by the width heuristic.
        log_every: Emit a DEBUG line every `log_every` epochs (0 disables).

    Attributes:
        loss_history: mean BCE of the online predictions, one per epoch.
    """

    def __init__(
        self,
        seed: SeedLike = 42,
        momentum: float = MOMENTUM,
        lr_decay: float = LR_DECAY,
        k_neighbors: int = 2,
        log_every: int = 10,
    ) -> None:
        self.rng = make_rng(seed)
        self.momentum = momentum
        self.lr_decay = lr_decay
        self.k_neighbors = k_neighbors
        self.log_every = log_every
        self.loss_history: List[float] = []

    def train(
        self,
        inputs,
        targets,
        hidden_count: int,
        epochs: int,
        learning_rate: float,
    ) -> RbfNetwork:
        """Train a network on already-normalized inputs.

        Args:
            inputs: (N, d) feature rows; d is inferred from the first row.
            targets: N scalars, 0.0 / 1.0 for classification.
            hidden_count: Number of RBF units (> 0).
            epochs: Full passes over the data (> 0).
            learning_rate: Initial step size (> 0).

        Returns:
            A populated `RbfNetwork`.

        Raises:
            InputShapeError: empty/ragged inputs or a target count mismatch.
            ValueError: non-positive hyperparameters.
        """
        X = as_matrix(inputs)
        y = as_vector(targets)
        if y.size != X.shape[0]:
            raise InputShapeError(f"{X.shape[0]} input rows but {y.size} targets.")
        if hidden_count < 1:
            raise ValueError("hidden_count must be > 0.")
        if epochs < 1:
            raise ValueError("epochs must be > 0.")
        if not learning_rate > 0:
            raise ValueError("learning_rate must be > 0.")

        n, input_dim = X.shape

        # Phase 1: centers
        centroids, _ = kmeans(X, hidden_count, seed=self.rng)
        # Phase 2: widths
        sigmas = knn_sigmas(centroids, k_neighbors=self.k_neighbors)
        # Phase 3: output layer, Xavier/Glorot uniform
        init_range = math.sqrt(6.0 / (input_dim + hidden_count))
        weights = self.rng.uniform(-1.0, 1.0, size=hidden_count) * init_range
        bias = 0.0

        logger.info(
            "Training RBF network: %d rows, %d features, %d hidden units, %d epochs, lr=%g",
            n, input_dim, hidden_count, epochs, learning_rate,
        )

        # Activations depend only on the fixed centers and widths.
        activations = np.exp(-squared_distances(X, centroids) / (2.0 * sigmas ** 2))

        weight_velocity = np.zeros(hidden_count)
        bias_velocity = 0.0
        self.loss_history = []

        for epoch in range(epochs):
            current_lr = learning_rate / (1.0 + self.lr_decay * epoch)
            outputs = np.empty(n)

            for i in range(n):
                act = activations[i]
                z = bias + float(act @ weights)
                output = float(sigmoid(np.array([z]))[0])
                outputs[i] = output

                # d(BCE)/dz = output - target; the sign is flipped so updates are added
                error_gradient = y[i] - output

                weight_velocity = current_lr * error_gradient * act + self.momentum * weight_velocity
                weights = weights + weight_velocity

                bias_velocity = current_lr * error_gradient + self.momentum * bias_velocity
                bias += bias_velocity

            epoch_loss = bce_loss(outputs, y)
            self.loss_history.append(epoch_loss)
            if self.log_every and (epoch + 1) % self.log_every == 0:
                logger.debug(
                    "Epoch [%d/%d] lr=%.6f loss=%.4f", epoch + 1, epochs, current_lr, epoch_loss
                )

        logger.info("Training finished: final loss=%.4f", self.loss_history[-1])
        return RbfNetwork.from_parameters(centroids, sigmas, weights, bias)


def train_rbf_network(
    inputs,
    targets,
    hidden_count: int,
    epochs: int,
    learning_rate: float,
    seed: SeedLike = 42,
) -> RbfNetwork:
    """Convenience wrapper: `RbfTrainer(seed).train(...)`."""
    return RbfTrainer(seed=seed).train(inputs, targets, hidden_count, epochs, learning_rate)
