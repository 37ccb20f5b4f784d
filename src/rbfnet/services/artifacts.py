"""
Model bundles and their on-disk store.

This module is responsible for:
- Pairing a trained ``RbfNetwork`` with the ``NormalizationStats`` it was
  trained with and the column schema (``ModelBundle``). The bundle takes
  RAW rows and normalizes them with the stored stats before inference.
- Flattening a bundle into a record of plain numbers/strings and back
  (``to_record`` / ``from_record``); loading re-validates every invariant.
- Persisting records as **pickle** files keyed by model name (``ModelStore``).

Record layout
-------------
- ``weights``, ``sigmas``, ``means``, ``stddevs``: ``;``-joined floats
- ``centroids``: rows joined by ``|``, values within a row by ``,``
- ``input_count``, ``hidden_count``, ``bias``, ``schema``, ``name``,
  ``created_at`` (ISO timestamp)

Directory layout
----------------
<model_dir>/
  ├─ <name>.pkl
  └─ ...
"""

import logging
import pickle
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from ..rbf_from_scratch import (
    InputShapeError,
    NormalizationStats,
    RbfNetwork,
    as_matrix,
    parse_schema,
)

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


class ModelNotFoundError(FileNotFoundError):
    """Raised when no stored model matches the requested name."""


# -----------------------------
# Flat array (de)serialization
# -----------------------------

def serialize_array(values) -> str:
    """``[1.0, 2.5] -> "1.0;2.5"`` using ``repr`` so floats round-trip exactly."""
    return ";".join(repr(float(v)) for v in np.asarray(values, dtype=float).ravel())


def deserialize_array(data: Optional[str]) -> np.ndarray:
    """Inverse of ``serialize_array``; blank input gives an empty array."""
    if data is None or not data.strip():
        return np.zeros(0)
    return np.array([float(x) for x in data.split(";")])


def serialize_centroids(centroids) -> str:
    return "|".join(",".join(repr(float(v)) for v in row) for row in np.asarray(centroids))


def deserialize_centroids(data: str) -> np.ndarray:
    rows = [[float(v) for v in r.split(",")] for r in data.split("|")]
    return as_matrix(rows, name="centroids")


class ModelBundle:
    """Container for a trained network and the preprocessing it expects.

    Attributes
    ----------
    network : RbfNetwork
        The trained model; consumes normalized rows.
    stats : NormalizationStats
        Training-time Z-score statistics, replayed on every raw input.
    feature_names : list[str]
        Input column order expected by ``predict_frame``.
    target_name : str
        Name of the label column (last entry of the schema).
    name : str
        Key under which the bundle is stored.
    created_at : str
        ISO-8601 creation timestamp (UTC).
    """

    def __init__(
        self,
        network: RbfNetwork,
        stats: NormalizationStats,
        feature_names: Optional[List[str]] = None,
        target_name: str = "target",
        name: str = "model",
        created_at: Optional[str] = None,
    ) -> None:
        if stats.is_empty:
            raise ValueError("A model bundle needs non-empty normalization stats.")
        if stats.dim != network.input_dim:
            raise InputShapeError(
                f"Stats cover {stats.dim} features but the network expects {network.input_dim}."
            )
        if feature_names is None:
            feature_names = [f"x{i}" for i in range(network.input_dim)]
        if len(feature_names) != network.input_dim:
            raise InputShapeError(
                f"{len(feature_names)} feature names for {network.input_dim} inputs."
            )
        self.network = network
        self.stats = stats
        self.feature_names = list(feature_names)
        self.target_name = target_name
        self.name = name
        self.created_at = created_at or datetime.now(timezone.utc).isoformat()

    @property
    def schema(self) -> str:
        """``feat1;feat2;...;target``"""
        return ";".join(self.feature_names + [self.target_name])

    @property
    def input_dim(self) -> int:
        return self.network.input_dim

    def forward(self, raw_row) -> float:
        """Normalize a RAW row with the stored stats, then run the network."""
        return self.network.forward(self.stats.normalize(raw_row))

    def predict_proba(self, raw_rows) -> np.ndarray:
        """Batched ``forward`` on raw rows, shape (N,)."""
        return self.network.predict_proba(self.stats.normalize_rows(raw_rows))

    def align_columns(self, df: pd.DataFrame) -> pd.DataFrame:
        """Select ``feature_names`` in order and coerce them to numeric.

        Unlike a permissive fill, missing columns or non-numeric cells are
        rejected: the model never sees padded inputs.
        """
        missing = [c for c in self.feature_names if c not in df.columns]
        if missing:
            raise InputShapeError(f"Missing feature columns: {missing}")
        aligned = df[self.feature_names].apply(pd.to_numeric, errors="coerce")
        if aligned.isna().any().any():
            raise ValueError("Feature columns contain non-numeric or missing values.")
        return aligned

    def predict_frame(self, df: pd.DataFrame) -> np.ndarray:
        """Predict on a DataFrame holding (at least) the feature columns."""
        return self.predict_proba(self.align_columns(df).to_numpy(dtype=float))

    def to_record(self) -> Dict[str, Any]:
        net = self.network
        return {
            "name": self.name,
            "created_at": self.created_at,
            "schema": self.schema,
            "input_count": net.input_dim,
            "hidden_count": net.hidden_count,
            "bias": float(net.bias),
            "weights": serialize_array(net.weights),
            "sigmas": serialize_array(net.sigmas),
            "centroids": serialize_centroids(net.centroids),
            "means": serialize_array(self.stats.mean),
            "stddevs": serialize_array(self.stats.stddev),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ModelBundle":
        """Rebuild a bundle; raises if the record breaks any invariant."""
        try:
            network = RbfNetwork.from_parameters(
                deserialize_centroids(record["centroids"]),
                deserialize_array(record["sigmas"]),
                deserialize_array(record["weights"]),
                float(record["bias"]),
            )
            if network.input_dim != int(record["input_count"]) or \
                    network.hidden_count != int(record["hidden_count"]):
                raise InputShapeError("Stored counts do not match the stored arrays.")
            stats = NormalizationStats.from_arrays(
                deserialize_array(record["means"]), deserialize_array(record["stddevs"])
            )
            names = parse_schema(record["schema"])
        except KeyError as e:
            raise ValueError(f"Model record is missing field {e}") from e

        return cls(
            network,
            stats,
            feature_names=names[:-1],
            target_name=names[-1],
            name=record.get("name", "model"),
            created_at=record.get("created_at"),
        )

    def __repr__(self) -> str:
        return f"ModelBundle(name={self.name!r}, network={self.network!r})"


class ModelStore:
    """Pickle-backed store of model records keyed by model name.

    Saving under an existing name replaces the previous record, so ``load``
    always returns the most recently saved model for that name.
    """

    def __init__(self, model_dir) -> None:
        self.model_dir = Path(model_dir)

    def _path(self, name: str) -> Path:
        if not _NAME_RE.match(name):
            raise ValueError(f"Invalid model name: {name!r}")
        return self.model_dir / f"{name}.pkl"

    def exists(self, name: str) -> bool:
        return self._path(name).exists()

    def save(self, bundle: ModelBundle) -> Path:
        path = self._path(bundle.name)
        self.model_dir.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            pickle.dump(bundle.to_record(), f)
        logger.info("Saved model %r to %s", bundle.name, path)
        return path

    def load(self, name: str) -> ModelBundle:
        """Load a bundle by name.

        Raises
        ------
        ModelNotFoundError
            If nothing is stored under ``name``.
        """
        path = self._path(name)
        if not path.exists():
            raise ModelNotFoundError(f"Model {name!r} not found. Please train it first.")
        with open(path, "rb") as f:
            record = pickle.load(f)
        return ModelBundle.from_record(record)

    def list_models(self) -> List[str]:
        if not self.model_dir.exists():
            return []
        return sorted(p.stem for p in self.model_dir.glob("*.pkl"))

    def delete(self, name: str) -> None:
        path = self._path(name)
        if not path.exists():
            raise ModelNotFoundError(f"Model {name!r} not found.")
        path.unlink()
        logger.info("Deleted model %r", name)

    def clear(self) -> int:
        """Delete every stored model; returns how many were removed."""
        names = self.list_models()
        for name in names:
            self._path(name).unlink()
        return len(names)
