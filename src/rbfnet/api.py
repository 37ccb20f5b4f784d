"""
RBF Classifier API.

This module exposes a FastAPI application around the RBF network engine.
Models are trained through the API, stored as pickle records keyed by name
(see ``services.artifacts``), and reloaded for every request.

Endpoints
---------
- GET    `/`                       : Liveness/health check.
- GET    `/version`                : App version and model directory.
- GET    `/models`                 : Names of stored models.
- GET    `/models/{name}`          : Network parameters + schema (for visualizers).
- DELETE `/models/{name}`          : Remove a stored model.
- POST   `/train`                  : Normalize, train and store a model.
- POST   `/predict`                : Probabilities (and optional labels).
- POST   `/metrics`                : Held-out evaluation of a stored model.
- POST   `/metrics/regression`     : MAE / RMSE / NRMSE / R2.
- POST   `/explain/shap`           : Per-instance Shapley values.
- POST   `/explain/global`         : Mean |Shapley| over a dataset.
- POST   `/cv/grid-search`         : K-fold grid search over neuron counts.

Notes
-----
- Unknown model names return 404; invalid inputs return 400.
- No business logic lives here; the API delegates to the service layer.
"""

import logging
from typing import Optional

import numpy as np
from fastapi import FastAPI, HTTPException

from . import __version__
from .config import Settings, setup_logging
from .rbf_from_scratch import RbfTrainer, compute_zscore_stats
from .schemas import (
    EvaluateRequest,
    GlobalShapRequest,
    GlobalShapResponse,
    GridSearchRequest,
    PredictRequest,
    RegressionRequest,
    ShapRequest,
    ShapResponse,
    TopItem,
    TrainRequest,
    TrainResponse,
)
from .services.artifacts import ModelBundle, ModelNotFoundError, ModelStore
from .services.explain import background_from, explain_rows, exact_shapley, ranked_importance
from .services.metrics import regression_metrics
from .services.validation import evaluate_bundle, grid_search

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application; ``settings`` default to ``Settings.from_env()``."""
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)
    store = ModelStore(settings.model_dir)

    app = FastAPI(
        title="RBF Classifier API",
        version=__version__,
        description="Train, explain and cross-validate a from-scratch RBF network classifier",
    )
    app.state.settings = settings
    app.state.store = store

    def _load(name: Optional[str]) -> ModelBundle:
        try:
            return store.load(name or settings.default_model_name)
        except ModelNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.get("/")
    async def health_check():
        return {"version": __version__, "status": "OK"}

    @app.get("/version")
    async def version():
        return {"app_version": __version__, "model_dir": settings.model_dir}

    @app.get("/models")
    def list_models():
        return {"models": store.list_models()}

    @app.get("/models/{name}")
    def describe_model(name: str):
        """Expose the network parameters and schema of a stored model."""
        bundle = _load(name)
        return {
            "name": bundle.name,
            "created_at": bundle.created_at,
            "feature_names": bundle.feature_names,
            "target_name": bundle.target_name,
            "normalization": {
                "mean": bundle.stats.mean.tolist(),
                "stddev": bundle.stats.stddev.tolist(),
            },
            "network": bundle.network.to_dict(),
        }

    @app.delete("/models/{name}")
    def delete_model(name: str):
        try:
            store.delete(name)
        except ModelNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"deleted": name}

    @app.post("/train", response_model=TrainResponse)
    def train(payload: TrainRequest):
        """Fit Z-score stats on the raw inputs, train, and store the bundle."""
        try:
            stats = compute_zscore_stats(payload.inputs)
            X = stats.normalize_rows(payload.inputs)
            cfg = payload.config
            trainer = RbfTrainer(seed=cfg.seed)
            network = trainer.train(X, payload.targets, cfg.hidden_count, cfg.epochs, cfg.learning_rate)
            bundle = ModelBundle(
                network,
                stats,
                feature_names=payload.feature_names,
                target_name=payload.target_name,
                name=payload.name or settings.default_model_name,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Error during training: {e}")

        store.save(bundle)
        return TrainResponse(
            name=bundle.name,
            created_at=bundle.created_at,
            input_dim=network.input_dim,
            hidden_count=network.hidden_count,
            final_loss=trainer.loss_history[-1],
            feature_schema=bundle.schema,
        )

    @app.post("/predict")
    def predict(payload: PredictRequest):
        bundle = _load(payload.name)
        try:
            proba = bundle.predict_proba(payload.rows)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Error during prediction: {e}")

        if payload.threshold is None:
            return {"predictions": proba.tolist()}
        labels = (proba >= payload.threshold).astype(int).tolist()
        return {"predictions": proba.tolist(), "labels": labels, "threshold": payload.threshold}

    @app.post("/metrics")
    def metrics(payload: EvaluateRequest):
        bundle = _load(payload.name)
        try:
            return evaluate_bundle(bundle, payload.inputs, payload.targets, tune=payload.tune)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Error during metrics: {e}")

    @app.post("/metrics/regression")
    def metrics_regression(payload: RegressionRequest):
        try:
            return regression_metrics(payload.predictions, payload.actuals).to_dict()
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Error during metrics: {e}")

    @app.post("/explain/shap", response_model=ShapResponse)
    def explain_shap(payload: ShapRequest):
        bundle = _load(payload.name)
        try:
            if payload.background is not None:
                background = np.asarray(payload.background, dtype=float)
            elif payload.background_data:
                background = background_from(payload.background_data)
            else:
                background = bundle.stats.mean

            cfg = payload.explain
            if cfg.method == "exact":
                values = exact_shapley(bundle, payload.instance, background, max_features=cfg.max_features)
            else:
                values = explain_rows(bundle, [payload.instance], background, method=cfg.method)[0]
            prediction = bundle.forward(payload.instance)
            base_value = bundle.forward(background)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Error in Shapley explanation: {e}")

        return ShapResponse(
            feature_names=bundle.feature_names,
            values=[float(v) for v in values],
            prediction=prediction,
            base_value=base_value,
        )

    @app.post("/explain/global", response_model=GlobalShapResponse)
    def explain_global(payload: GlobalShapRequest):
        bundle = _load(payload.name)
        try:
            background = (
                np.asarray(payload.background, dtype=float)
                if payload.background is not None
                else background_from(payload.data)
            )
            cfg = payload.explain
            if cfg.method == "exact" and bundle.input_dim > cfg.max_features:
                raise ValueError(
                    f"{bundle.input_dim} features exceed the exact Shapley limit of {cfg.max_features}."
                )
            per_row = explain_rows(bundle, payload.data, background, method=cfg.method, n_jobs=cfg.n_jobs)
            importances = np.mean(np.abs(per_row), axis=0)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Error in global explanation: {e}")

        top = None
        if payload.top_k:
            ranked = ranked_importance(bundle.feature_names, importances)[: payload.top_k]
            top = [TopItem(feature=f, importance=v) for f, v in ranked]
        return GlobalShapResponse(
            feature_names=bundle.feature_names,
            importances=[float(v) for v in importances],
            top=top,
        )

    @app.post("/cv/grid-search")
    def cv_grid_search(payload: GridSearchRequest):
        cfg = payload.config
        try:
            result = grid_search(
                payload.inputs,
                payload.targets,
                k_folds=cfg.k_folds,
                start_neurons=cfg.start_neurons,
                end_neurons=cfg.end_neurons,
                step=cfg.step,
                epochs=cfg.epochs,
                learning_rate=cfg.learning_rate,
                seed=cfg.seed,
                n_jobs=cfg.n_jobs,
                fold_normalization=cfg.fold_normalization,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Error in grid search: {e}")
        return result.to_dict()

    return app


app = create_app()
