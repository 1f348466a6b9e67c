"""
Structured logging helpers.

Every record the service writes about a request or a graph change is a single
compact JSON line so it can be grepped and shipped without a custom parser.
"""
import json
from datetime import datetime
from typing import Any, Dict


def structured_log_line(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def node_event_line(event: str, node_id: Any, **fields: Any) -> str:
    """
    Build the log line for a node-level change.

    Args:
        event: Event name (e.g. "node_created", "nodes_connected")
        node_id: Identifier of the primary node involved
        **fields: Extra keys to include (None values are dropped)
    """
    payload: Dict[str, Any] = {
        "event": event,
        "node_id": node_id,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }
    payload.update({k: v for k, v in fields.items() if v is not None})
    return structured_log_line(payload)
