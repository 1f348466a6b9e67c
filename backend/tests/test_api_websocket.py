"""
Tests for the /ws endpoint: subscriptions, broadcasts and the connect message.

Each test does a ping/pong round trip first so the socket is registered
with the broadcaster before anything is published.
"""
from unittest.mock import MagicMock

import pytest
from starlette.websockets import WebSocketDisconnect

from services_broadcast import GRAPH_CHANNEL, NODES_CHANNEL, broadcaster
from tests.mock_helpers import MockNeo4jResult


def _ready(ws):
    ws.send_text("ping")
    assert ws.receive_text() == "pong"


def _create(client, title):
    response = client.post("/api/nodes", json={"title": title, "x": 0, "y": 0, "type": "IDEA"})
    assert response.status_code == 200
    return response.json()


def test_http_create_is_broadcast_on_nodes_channel(client, live_service):
    with client.websocket_connect("/ws") as ws:
        _ready(ws)

        created = _create(client, "Root")
        frame = ws.receive_json()

    assert frame["channel"] == NODES_CHANNEL
    assert frame["payload"]["id"] == created["id"]
    assert frame["payload"]["title"] == "Root"


def test_http_delete_is_broadcast_as_tombstone(client, live_service):
    created = _create(client, "Doomed")

    with client.websocket_connect("/ws") as ws:
        _ready(ws)
        assert client.delete(f"/api/nodes/{created['id']}").status_code == 204
        frame = ws.receive_json()

    assert frame == {"channel": NODES_CHANNEL, "payload": {"deleted": str(created["id"])}}


def test_connect_message_broadcasts_graph(client, live_service, fake_repository):
    a = _create(client, "A")
    b = _create(client, "B")

    with client.websocket_connect(f"/ws?channels={GRAPH_CHANNEL}") as ws:
        _ready(ws)
        ws.send_json({"sourceId": str(a["id"]), "targetId": b["id"]})
        frame = ws.receive_json()

    assert frame["channel"] == GRAPH_CHANNEL
    nodes = {n["id"]: n for n in frame["payload"]}
    assert nodes[a["id"]]["connectionIds"] == [b["id"]]
    assert nodes[b["id"]]["connectionIds"] == [a["id"]]
    assert fake_repository.connect_calls == [(a["id"], b["id"])]


def test_subscription_is_limited_to_requested_channels(client, live_service):
    a = _create(client, "A")
    b = _create(client, "B")

    with client.websocket_connect(f"/ws?channels={GRAPH_CHANNEL}") as ws:
        _ready(ws)
        # Not subscribed to /topic/nodes, so the first frame must be the graph
        _create(client, "C")
        connect = client.post("/api/nodes/connect", json={"sourceId": a["id"], "targetId": b["id"]})
        assert connect.json()["applied"] is True
        frame = ws.receive_json()

    assert frame["channel"] == GRAPH_CHANNEL
    assert len(frame["payload"]) == 3


def test_malformed_message_gets_error_frame(client, live_service):
    with client.websocket_connect("/ws") as ws:
        _ready(ws)
        ws.send_text("not json")
        frame = ws.receive_json()

        # The socket stays usable afterwards
        _ready(ws)

    assert frame["type"] == "error"


def test_blank_id_gets_error_frame(client, live_service):
    with client.websocket_connect("/ws") as ws:
        _ready(ws)
        ws.send_json({"sourceId": " ", "targetId": "1"})
        frame = ws.receive_json()

    assert frame == {"type": "error", "detail": {"sourceId": "Source ID cannot be blank"}}


def test_non_numeric_id_gets_error_frame(client, live_service):
    with client.websocket_connect("/ws") as ws:
        _ready(ws)
        ws.send_json({"sourceId": "abc", "targetId": "1"})
        frame = ws.receive_json()

    assert frame == {"type": "error", "detail": "Invalid node ID: abc"}


def test_unknown_channel_is_rejected(client, live_service):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/ws?channels=/topic/secrets") as ws:
            ws.receive_text()
    assert exc_info.value.code == 1008


def test_disconnect_unsubscribes(client, live_service):
    with client.websocket_connect("/ws") as ws:
        _ready(ws)
        assert broadcaster.subscriber_count(NODES_CHANNEL) == 1

    assert broadcaster.subscriber_count(NODES_CHANNEL) == 0


def _driver_with_session():
    session = MagicMock()
    session.run.return_value = MockNeo4jResult(record=None)
    session.execute_write.side_effect = lambda work, *args, **kwargs: work(session, *args, **kwargs)
    driver = MagicMock()
    driver.session.return_value.__enter__.return_value = session
    return driver, session


def test_connect_messages_survive_a_driver_reset(client, monkeypatch):
    import api_nodes

    first_driver, first_session = _driver_with_session()
    second_driver, second_session = _driver_with_session()
    current = {"driver": first_driver}
    monkeypatch.setattr(api_nodes, "get_driver", lambda: current["driver"])

    with client.websocket_connect("/ws") as ws:
        _ready(ws)
        ws.send_json({"sourceId": "1", "targetId": "2"})
        # Unknown nodes are not an error, so no frame comes back
        _ready(ws)

        # The driver is replaced while the socket stays open
        first_driver.close()
        current["driver"] = second_driver

        ws.send_json({"sourceId": "1", "targetId": "2"})
        _ready(ws)

    for driver, session in ((first_driver, first_session), (second_driver, second_session)):
        driver.session.assert_called_once()
        driver.session.return_value.__exit__.assert_called_once()
        session.execute_write.assert_called_once()
