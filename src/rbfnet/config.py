"""
Configuration models and logging setup.

- ``TrainingConfig`` / ``GridSearchConfig`` / ``ExplainConfig``: validated
  hyperparameter sets shared by the API and library callers.
- ``Settings``: runtime settings read from ``RBFNET_*`` environment variables.
- ``setup_logging``: one-time stream handler for the ``rbfnet`` loggers.
"""

import logging
import os
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TrainingConfig(BaseModel):
    hidden_count: int = Field(default=10, ge=1)
    epochs: int = Field(default=100, ge=1)
    learning_rate: float = Field(default=0.01, gt=0.0)
    seed: int = 42


class GridSearchConfig(BaseModel):
    k_folds: int = Field(default=5, ge=2)
    start_neurons: int = Field(default=5, ge=1)
    end_neurons: int = Field(default=20, ge=1)
    step: int = Field(default=5, ge=1)
    epochs: int = Field(default=100, ge=1)
    learning_rate: float = Field(default=0.01, gt=0.0)
    seed: int = 42
    n_jobs: int = Field(default=1, ge=1)
    fold_normalization: bool = False

    @model_validator(mode="after")
    def _check_range(self) -> "GridSearchConfig":
        if self.end_neurons < self.start_neurons:
            raise ValueError("end_neurons must be >= start_neurons")
        return self


class ExplainConfig(BaseModel):
    method: Literal["exact", "replacement"] = "exact"
    n_jobs: int = Field(default=1, ge=1)
    max_features: int = Field(default=16, ge=1)


class Settings(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_dir: str = "model"
    default_model_name: str = "RbfClassifier_V1"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ``RBFNET_MODEL_DIR``, ``RBFNET_MODEL_NAME``, ``RBFNET_LOG_LEVEL``."""
        defaults = cls()
        return cls(
            model_dir=os.environ.get("RBFNET_MODEL_DIR", defaults.model_dir),
            default_model_name=os.environ.get("RBFNET_MODEL_NAME", defaults.default_model_name),
            log_level=os.environ.get("RBFNET_LOG_LEVEL", defaults.log_level),
        )


_LOGGING_CONFIGURED = False


def setup_logging(level: Optional[str] = None) -> None:
    """Attach a stream handler to the ``rbfnet`` logger (only once)."""
    global _LOGGING_CONFIGURED
    root = logging.getLogger("rbfnet")
    root.setLevel((level or "INFO").upper())
    if _LOGGING_CONFIGURED:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    root.addHandler(handler)
    _LOGGING_CONFIGURED = True
