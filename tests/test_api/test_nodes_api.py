"""
Tests for the node / metrics / opportunity API endpoints
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from nodescore.api.deps import get_account_id, get_db
from nodescore.application.opportunity_engine import OpportunityEngine
from nodescore.domain.errors import OpportunityConflictError
from nodescore.main import app


SEARCH_METRIC = {
    "impressions": 50000,
    "ctr": 0.02,
    "position": 8,
    "revenue": 2000,
}


@pytest.fixture
def client(db_engine, sample_account_id):
    """Test client for FastAPI bound to the in-memory database, logged in as sample account"""
    SessionLocal = sessionmaker(bind=db_engine)

    def _get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_account_id] = lambda: sample_account_id
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def node_id(client):
    response = client.post("/api/v1/nodes/", json={"title": "Running shoes", "path": "/shoes/running"})
    assert response.status_code == 201
    return response.json()["node_id"]


def _push(client, node_id, timestamp, measures, source="gsc"):
    return client.post(
        f"/api/v1/nodes/{node_id}/metrics",
        json={"timestamp": timestamp, "measures": measures, "source": source},
    )


def test_health():
    assert TestClient(app).get("/health").text == "ok"


def test_requires_login():
    response = TestClient(app).get("/api/v1/nodes/1")
    assert response.status_code == 401


def test_create_and_get_node(client, node_id):
    response = client.get(f"/api/v1/nodes/{node_id}")
    assert response.status_code == 200
    data = response.json()
    assert data["title"] == "Running shoes"
    assert data["optimization_status"] == "unscored"
    assert data["opportunity"] is None


def test_create_child_and_list(client, node_id):
    response = client.post(
        "/api/v1/nodes/",
        json={"title": "Trail", "path": "/shoes/running/trail", "parent_id": node_id},
    )
    assert response.status_code == 201
    assert response.json()["depth"] == 1

    children = client.get(f"/api/v1/nodes/{node_id}/children").json()
    assert [c["title"] for c in children] == ["Trail"]


def test_create_node_validation(client):
    assert client.post("/api/v1/nodes/", json={"title": " ", "path": "/x"}).status_code == 422
    assert client.post("/api/v1/nodes/", json={"title": "X", "path": "/x", "parent_id": 999}).status_code == 404


def test_unknown_node(client):
    assert client.get("/api/v1/nodes/999").status_code == 404
    assert _push(client, 999, "2025-01-01T00:00:00Z", {"x": 1}).status_code == 404
    assert client.post("/api/v1/nodes/999/rescore").status_code == 404


def test_push_and_list_metrics(client, node_id):
    assert _push(client, node_id, "2025-01-02T00:00:00Z", {"x": 7}).status_code == 201
    response = _push(client, node_id, "2025-01-01T00:00:00Z", {"x": 5})
    assert response.status_code == 201
    assert response.json()["measures"] == {"x": 5.0}

    metrics = client.get(f"/api/v1/nodes/{node_id}/metrics").json()
    assert [m["measures"]["x"] for m in metrics] == [5.0, 7.0]

    since = client.get(f"/api/v1/nodes/{node_id}/metrics", params={"since": "2025-01-02T00:00:00Z"}).json()
    assert [m["measures"]["x"] for m in since] == [7.0]


@pytest.mark.parametrize("measures", [{}, {"x": "abc"}, {"x": None}, {"x": 10 ** 400}])
def test_push_invalid_measures(client, node_id, measures):
    assert _push(client, node_id, "2025-01-01T00:00:00Z", measures).status_code == 422


def test_push_unknown_source(client, node_id):
    assert _push(client, node_id, "2025-01-01T00:00:00Z", {"x": 1}, source="bing").status_code == 422


def test_rescore_then_stale(client, node_id):
    _push(client, node_id, "2025-01-01T00:00:00Z", SEARCH_METRIC)

    first = client.post(f"/api/v1/nodes/{node_id}/rescore")
    assert first.status_code == 200
    assert first.json()["status"] == "scored"
    node = first.json()["node"]
    assert node["opportunity"] is not None
    assert node["opportunity_score"] == node["opportunity"]["score"]
    assert node["last_scored_at"] is not None
    assert 1 <= node["opportunity"]["priority"] <= 5

    second = client.post(f"/api/v1/nodes/{node_id}/rescore")
    assert second.status_code == 200
    assert second.json()["status"] == "stale"
    assert second.json()["node"]["opportunity"]["computed_at"] == node["opportunity"]["computed_at"]


def test_rescore_policy_error(client, node_id):
    _push(client, node_id, "2025-01-01T00:00:00Z", {"traffic": 5})
    assert client.post(f"/api/v1/nodes/{node_id}/rescore").status_code == 422


def test_rescore_conflict_is_409(client, node_id, monkeypatch):
    def _conflict(self, node_id, account_id=None):
        raise OpportunityConflictError(f"Opportunity for node #{node_id} was written concurrently")

    monkeypatch.setattr(OpportunityEngine, "rescore_node", _conflict)
    response = client.post(f"/api/v1/nodes/{node_id}/rescore")
    assert response.status_code == 409
    assert "concurrently" in response.json()["detail"]


def test_batch_rescore_reports_per_node(client, node_id):
    other = client.post("/api/v1/nodes/", json={"title": "Boots", "path": "/shoes/boots"}).json()["node_id"]
    _push(client, node_id, "2025-01-01T00:00:00Z", SEARCH_METRIC)
    _push(client, other, "2025-01-01T00:00:00Z", {"traffic": 5})

    response = client.post("/api/v1/opportunities/rescore", json={"node_ids": [node_id, other, 999]})
    assert response.status_code == 200
    data = response.json()
    assert data["summary"] == {"total": 3, "scored": 1, "stale": 0, "failed": 2}
    by_node = {o["node_id"]: o for o in data["outcomes"]}
    assert by_node[node_id]["status"] == "scored"
    assert by_node[other]["status"] == "failed"
    assert by_node[999]["error"]


def test_batch_rescore_pending(client, node_id):
    _push(client, node_id, "2025-01-01T00:00:00Z", SEARCH_METRIC)

    first = client.post("/api/v1/opportunities/rescore", json={}).json()
    assert first["summary"]["scored"] == 1
    second = client.post("/api/v1/opportunities/rescore", json={}).json()
    assert second["summary"]["total"] == 0


def test_top_opportunities(client, node_id):
    weak = client.post("/api/v1/nodes/", json={"title": "Socks", "path": "/socks"}).json()["node_id"]
    _push(client, node_id, "2025-01-01T00:00:00Z", SEARCH_METRIC)
    _push(client, weak, "2025-01-01T00:00:00Z", {"revenue": 1})
    client.post("/api/v1/opportunities/rescore", json={})

    top = client.get("/api/v1/opportunities/").json()
    assert [n["node_id"] for n in top] == [node_id, weak]
    assert len(client.get("/api/v1/opportunities/", params={"limit": 1}).json()) == 1
    assert client.get("/api/v1/opportunities/", params={"status": "bogus"}).status_code == 422


def test_delete_node(client, node_id):
    _push(client, node_id, "2025-01-01T00:00:00Z", SEARCH_METRIC)
    client.post(f"/api/v1/nodes/{node_id}/rescore")

    assert client.delete(f"/api/v1/nodes/{node_id}").status_code == 204
    assert client.get(f"/api/v1/nodes/{node_id}").status_code == 404
    assert client.get(f"/api/v1/nodes/{node_id}/metrics").status_code == 404
    assert client.get("/api/v1/opportunities/").json() == []


def test_other_account_cannot_see_node(client, node_id, sample_account_id):
    app.dependency_overrides[get_account_id] = lambda: sample_account_id + 1
    assert client.get(f"/api/v1/nodes/{node_id}").status_code == 404
    assert client.delete(f"/api/v1/nodes/{node_id}").status_code == 404
    assert _push(client, node_id, "2025-01-01T00:00:00Z", {"x": 1}).status_code == 404
