import pytest
from fastapi.testclient import TestClient

from rbfnet.api import create_app
from rbfnet.config import Settings


@pytest.fixture
def client(tmp_path):
    settings = Settings(model_dir=str(tmp_path / "models"), default_model_name="default_rbf")
    with TestClient(create_app(settings)) as c:
        yield c


@pytest.fixture
def trained(client, blobs):
    X, y = blobs
    resp = client.post(
        "/train",
        json={
            "name": "blobs",
            "inputs": X.tolist(),
            "targets": y.tolist(),
            "feature_names": ["energy", "sugar", "salt"],
            "target_name": "is_healthy",
            "config": {"hidden_count": 4, "epochs": 60, "learning_rate": 0.01, "seed": 7},
        },
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_health_and_version(client):
    assert client.get("/").json()["status"] == "OK"
    assert "model_dir" in client.get("/version").json()


def test_train_stores_model(client, trained):
    assert trained["name"] == "blobs"
    assert trained["input_dim"] == 3
    assert trained["hidden_count"] == 4
    assert trained["feature_schema"] == "energy;sugar;salt;is_healthy"
    assert client.get("/models").json() == {"models": ["blobs"]}


def test_train_uses_default_name(client, blobs):
    X, y = blobs
    resp = client.post("/train", json={"inputs": X.tolist(), "targets": y.tolist(),
                                       "config": {"hidden_count": 2, "epochs": 2}})
    assert resp.status_code == 200
    assert resp.json()["name"] == "default_rbf"
    assert resp.json()["feature_schema"] == "x0;x1;x2;target"


def test_describe_model(client, trained):
    body = client.get("/models/blobs").json()
    assert body["feature_names"] == ["energy", "sugar", "salt"]
    net = body["network"]
    assert len(net["centroids"]) == 4
    assert len(net["sigmas"]) == 4
    assert all(0.1 <= s <= 3.0 for s in net["sigmas"])
    assert len(body["normalization"]["stddev"]) == 3


def test_predict_raw_rows(client, trained, blobs):
    X, y = blobs
    resp = client.post("/predict", json={"name": "blobs", "rows": X[:10].tolist(), "threshold": 0.5})
    assert resp.status_code == 200
    body = resp.json()
    assert len(body["predictions"]) == 10
    assert body["threshold"] == 0.5
    hits = sum(label == int(t) for label, t in zip(body["labels"], y[:10]))
    assert hits >= 9


def test_unknown_model_is_404(client):
    assert client.post("/predict", json={"name": "ghost", "rows": [[1.0, 2.0, 3.0]]}).status_code == 404
    assert client.get("/models/ghost").status_code == 404
    assert client.delete("/models/ghost").status_code == 404


def test_malformed_model_name_is_400(client):
    assert client.post("/predict", json={"name": "bad name", "rows": [[1.0, 2.0, 3.0]]}).status_code == 400
    assert client.post("/metrics", json={"name": "bad name", "inputs": [[1.0]], "targets": [1.0]}).status_code == 400
    assert client.post("/explain/shap", json={"name": "bad name", "instance": [1.0]}).status_code == 400
    assert client.get("/models/bad name").status_code == 400
    assert client.delete("/models/bad name").status_code == 400


def test_wrong_width_is_400(client, trained):
    resp = client.post("/predict", json={"name": "blobs", "rows": [[1.0, 2.0]]})
    assert resp.status_code == 400


def test_ragged_training_input_is_400(client):
    resp = client.post("/train", json={"name": "bad", "inputs": [[1.0, 2.0], [3.0]], "targets": [0, 1]})
    assert resp.status_code == 400
    assert client.get("/models").json() == {"models": []}


def test_metrics_endpoint(client, trained, blobs):
    X, y = blobs
    body = client.post("/metrics", json={"name": "blobs", "inputs": X.tolist(), "targets": y.tolist()}).json()
    assert body["n_records"] == len(y)
    assert body["auc_roc"] >= 0.95
    assert set(body["metrics_at_default"]) >= {"accuracy", "precision", "recall", "f1"}
    assert "threshold_used" in body


def test_regression_metrics_endpoint(client):
    body = client.post("/metrics/regression", json={"predictions": [2.0, 4.0, 6.0],
                                                   "actuals": [1.0, 4.0, 7.0]}).json()
    assert body["mae"] == pytest.approx(2.0 / 3.0)
    assert body["r2"] == pytest.approx(1.0 - 2.0 / 18.0)
    assert client.post("/metrics/regression", json={"predictions": [1.0],
                                                    "actuals": [1.0, 2.0]}).status_code == 400


def test_shap_values_sum_to_prediction_gap(client, trained, blobs):
    X, _ = blobs
    resp = client.post("/explain/shap", json={"name": "blobs", "instance": X[1].tolist()})
    assert resp.status_code == 200
    body = resp.json()
    assert body["feature_names"] == ["energy", "sugar", "salt"]
    assert sum(body["values"]) == pytest.approx(body["prediction"] - body["base_value"], abs=1e-9)


def test_shap_explicit_background(client, trained, blobs):
    X, _ = blobs
    resp = client.post("/explain/shap", json={"name": "blobs", "instance": X[0].tolist(),
                                              "background": X[1].tolist()})
    body = resp.json()
    assert sum(body["values"]) == pytest.approx(body["prediction"] - body["base_value"], abs=1e-9)

    bad = client.post("/explain/shap", json={"name": "blobs", "instance": X[0].tolist(), "background": [0.0]})
    assert bad.status_code == 400


def test_shap_feature_limit(client, trained, blobs):
    X, _ = blobs
    resp = client.post("/explain/shap", json={"name": "blobs", "instance": X[0].tolist(),
                                              "explain": {"max_features": 2}})
    assert resp.status_code == 400


def test_global_importance_endpoint(client, trained, blobs):
    X, _ = blobs
    resp = client.post("/explain/global", json={"name": "blobs", "data": X[:20].tolist(), "top_k": 2,
                                                "explain": {"n_jobs": 2}})
    assert resp.status_code == 200
    body = resp.json()
    assert len(body["importances"]) == 3
    assert all(v >= 0 for v in body["importances"])
    assert len(body["top"]) == 2
    assert body["top"][0]["importance"] >= body["top"][1]["importance"]


def test_grid_search_endpoint(client, blobs):
    X, y = blobs
    resp = client.post("/cv/grid-search", json={
        "inputs": X.tolist(),
        "targets": y.tolist(),
        "config": {"k_folds": 3, "start_neurons": 2, "end_neurons": 4, "step": 2, "epochs": 3},
    })
    assert resp.status_code == 200
    body = resp.json()
    assert [s["hidden_count"] for s in body["summaries"]] == [2, 4]
    assert body["best_hidden_count"] in (2, 4)
    assert body["summaries"][0]["n_folds"] == 3


def test_grid_search_rejects_inverted_range(client, blobs):
    X, y = blobs
    resp = client.post("/cv/grid-search", json={
        "inputs": X.tolist(), "targets": y.tolist(),
        "config": {"start_neurons": 5, "end_neurons": 2},
    })
    assert resp.status_code == 422


def test_delete_model(client, trained):
    assert client.delete("/models/blobs").json() == {"deleted": "blobs"}
    assert client.get("/models").json() == {"models": []}
