"""
Pytest configuration and fixtures for testing the Mind Mesh API.

This module provides:
- Test client fixture for the FastAPI app
- A mock Neo4j session so no test ever opens a real connection
- In-memory repository and recording broadcaster fakes wired into the app
- Sample node payloads
"""
import os
import pytest
from unittest.mock import MagicMock
from fastapi.testclient import TestClient

from tests.mock_helpers import FakeMindNodeRepository, MockNeo4jResult, RecordingBroadcaster

# Override environment variables to prevent real connections
os.environ.setdefault("NEO4J_URI", "bolt://localhost:7687")
os.environ.setdefault("NEO4J_USER", "neo4j")
os.environ.setdefault("NEO4J_PASSWORD", "test-password")
os.environ.setdefault("WS_KEEPALIVE_SECONDS", "30")

# Import app after env vars are set
from main import app  # noqa: E402


@pytest.fixture
def test_app():
    return app


@pytest.fixture
def client(test_app):
    """
    Create a test client for the FastAPI app.

    raise_server_exceptions=False so that exceptions are caught by the
    exception handlers and returned as responses, matching production.
    """
    return TestClient(test_app, raise_server_exceptions=False)


@pytest.fixture
def mock_neo4j_session():
    """
    MagicMock session whose run() returns an empty MockNeo4jResult by default.

    Usage in tests:
        mock_neo4j_session.run.return_value = MockNeo4jResult(node_record(7))
        mock_neo4j_session.run.return_value = MockNeo4jResult(records=[...])
    """
    session = MagicMock()
    session.run.return_value = MockNeo4jResult(record=None)
    # Managed transactions run their work against the same mock
    session.execute_read.side_effect = lambda work, *args, **kwargs: work(session, *args, **kwargs)
    session.execute_write.side_effect = lambda work, *args, **kwargs: work(session, *args, **kwargs)
    return session


@pytest.fixture(autouse=True)
def override_neo4j_dependency(test_app, mock_neo4j_session):
    """
    Route every get_neo4j_session dependency to the mock session.

    This fixture is autouse=True, so no test reaches a real Neo4j driver.
    """
    from db_neo4j import get_neo4j_session

    def get_mock_session():
        yield mock_neo4j_session

    test_app.dependency_overrides[get_neo4j_session] = get_mock_session
    yield
    test_app.dependency_overrides.pop(get_neo4j_session, None)


@pytest.fixture
def fake_repository():
    return FakeMindNodeRepository()


@pytest.fixture
def recording_broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def node_service(fake_repository, recording_broadcaster):
    from services_mind_nodes import MindNodeService
    return MindNodeService(fake_repository, recording_broadcaster)


@pytest.fixture
def api_service(test_app, node_service):
    """Serve API requests from the in-memory service."""
    from api_nodes import get_mind_node_service

    test_app.dependency_overrides[get_mind_node_service] = lambda: node_service
    yield node_service
    test_app.dependency_overrides.pop(get_mind_node_service, None)


@pytest.fixture
def live_service(test_app, fake_repository):
    """In-memory storage, but broadcasts go through the real WebSocket hub."""
    from contextlib import nullcontext

    from api_nodes import get_mind_node_service, get_mind_node_service_factory
    from services_broadcast import broadcaster
    from services_mind_nodes import MindNodeService

    service = MindNodeService(fake_repository, broadcaster)
    test_app.dependency_overrides[get_mind_node_service] = lambda: service
    test_app.dependency_overrides[get_mind_node_service_factory] = lambda: (lambda: nullcontext(service))
    yield service
    test_app.dependency_overrides.pop(get_mind_node_service, None)
    test_app.dependency_overrides.pop(get_mind_node_service_factory, None)


@pytest.fixture
def sample_node_data():
    return {
        "title": "Main Idea",
        "description": "This is the central concept",
        "x": 100.0,
        "y": 200.0,
        "color": "#FF5733",
        "type": "IDEA",
    }
