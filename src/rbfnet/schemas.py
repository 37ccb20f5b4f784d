"""
Request/response schemas for the RBF classifier API.

Rows are plain lists of RAW feature values in the model's schema order;
the API normalizes them with the stored training statistics.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from .config import ExplainConfig, GridSearchConfig, TrainingConfig


class TrainRequest(BaseModel):
    """Training payload.

    ``name`` defaults to the configured model name, ``feature_names`` to
    x0..x{d-1}.
    """
    name: Optional[str] = Field(default=None, pattern=r"^[A-Za-z0-9_.\-]+$")
    inputs: List[List[float]] = Field(min_length=1)
    targets: List[float] = Field(min_length=1)
    feature_names: Optional[List[str]] = None
    target_name: str = "target"
    config: TrainingConfig = TrainingConfig()


class TrainResponse(BaseModel):
    name: str
    created_at: str
    input_dim: int
    hidden_count: int
    final_loss: float
    feature_schema: str


class PredictRequest(BaseModel):
    name: Optional[str] = None
    rows: List[List[float]] = Field(min_length=1)
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class EvaluateRequest(BaseModel):
    """Labelled rows for held-out evaluation of a stored model."""
    name: Optional[str] = None
    inputs: List[List[float]] = Field(min_length=1)
    targets: List[float] = Field(min_length=1)
    tune: bool = True


class RegressionRequest(BaseModel):
    predictions: List[float]
    actuals: List[float]


class ShapRequest(BaseModel):
    """Explain one raw instance.

    Background precedence: ``background`` > mean of ``background_data`` >
    the training means stored with the model.
    """
    name: Optional[str] = None
    instance: List[float] = Field(min_length=1)
    background: Optional[List[float]] = None
    background_data: Optional[List[List[float]]] = None
    explain: ExplainConfig = ExplainConfig()


class ShapResponse(BaseModel):
    feature_names: List[str]
    values: List[float]
    prediction: float
    base_value: float


class GlobalShapRequest(BaseModel):
    """Global importance over ``data``; background defaults to its own mean."""
    name: Optional[str] = None
    data: List[List[float]] = Field(min_length=1)
    background: Optional[List[float]] = None
    explain: ExplainConfig = ExplainConfig()
    top_k: Optional[int] = Field(default=None, ge=1)


class TopItem(BaseModel):
    feature: str
    importance: float


class GlobalShapResponse(BaseModel):
    feature_names: List[str]
    importances: List[float]
    top: Optional[List[TopItem]] = None


class GridSearchRequest(BaseModel):
    inputs: List[List[float]] = Field(min_length=2)
    targets: List[float] = Field(min_length=2)
    config: GridSearchConfig = GridSearchConfig()
