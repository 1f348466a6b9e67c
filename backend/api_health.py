"""
Health check endpoints for monitoring system status.
"""

from fastapi import APIRouter, Depends
from neo4j import Session

from db_neo4j import get_neo4j_session
from neo4j_utils import get_connection_health_info
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/")
def health_check():
    """Basic health check endpoint."""
    return {"status": "ok", "service": "mind-mesh-backend"}


@router.get("/neo4j")
def neo4j_health_check(session: Session = Depends(get_neo4j_session)):
    """Check Neo4j database connectivity and count what the mind map holds."""
    try:
        record = session.run(
            """
            OPTIONAL MATCH (n:MindNode)
            WITH count(n) AS nodes
            OPTIONAL MATCH (:MindNode)-[r:CONNECTED_TO]->(:MindNode)
            RETURN nodes, count(r) AS connections
            """
        ).single()

        return {
            "status": "healthy",
            "database": "neo4j",
            "connection": get_connection_health_info(),
            "query_test": "passed",
            "nodes": record["nodes"] if record else 0,
            "connections": record["connections"] if record else 0,
        }
    except Exception as e:
        logger.error(f"Neo4j health check failed: {e}")
        return {
            "status": "unhealthy",
            "database": "neo4j",
            "error": str(e),
            "query_test": "failed",
        }
