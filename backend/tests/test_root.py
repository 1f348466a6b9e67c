"""
Tests for the root and health endpoints.
"""
from tests.mock_helpers import MockNeo4jRecord, MockNeo4jResult


def test_read_root(client):
    """Test the root health check endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "Mind Mesh backend is running" in data["message"]


def test_health(client):
    response = client.get("/health/")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_neo4j_health_reports_counts(client, mock_neo4j_session, monkeypatch):
    import api_health
    monkeypatch.setattr(api_health, "get_connection_health_info", lambda: {"status": "healthy", "uri": "bolt://localhost:7687"})
    mock_neo4j_session.run.return_value = MockNeo4jResult(MockNeo4jRecord({"nodes": 4, "connections": 2}))

    response = client.get("/health/neo4j")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["nodes"] == 4
    assert data["connections"] == 2
    assert data["connection"]["uri"].startswith("bolt://")


def test_neo4j_health_reports_failure(client, mock_neo4j_session):
    mock_neo4j_session.run.side_effect = RuntimeError("connection refused")

    response = client.get("/health/neo4j")

    assert response.status_code == 200
    assert response.json()["status"] == "unhealthy"
