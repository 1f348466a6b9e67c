"""
Neo4j connectivity helpers used by the health endpoints and startup.
"""

import logging
import socket
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


def neo4j_host_port(uri: str):
    """Split a bolt/neo4j URI into (host, port), defaulting to localhost:7687."""
    parsed = urlparse(uri)
    return parsed.hostname or "localhost", parsed.port or 7687


def is_tcp_reachable(host: str, port: int, timeout_s: float = 0.4) -> bool:
    """
    Best-effort reachability check to avoid noisy startup failures when Neo4j
    isn't running locally.
    """
    try:
        with socket.create_connection((host, port), timeout=timeout_s):
            return True
    except OSError:
        return False


def get_connection_health_info():
    """
    Get information about Neo4j connection health.
    Useful for debugging and monitoring.
    """
    from db_neo4j import get_driver
    from config import NEO4J_URI

    try:
        driver = get_driver()
        driver.verify_connectivity()
        return {
            "status": "healthy",
            "uri": NEO4J_URI,
            "database": "connected",
        }
    except Exception as e:
        logger.error(f"Neo4j connectivity check failed: {e}")
        return {
            "status": "unhealthy",
            "error": str(e),
            "message": "Failed to connect to Neo4j",
        }
