from neo4j import GraphDatabase, Driver  # type: ignore[reportMissingImports]
from typing import Generator, Optional
import logging

from config import NEO4J_URI, NEO4J_USER, NEO4J_PASSWORD, NEO4J_DATABASE

logger = logging.getLogger("mind_mesh")

# Lazy driver initialization - only create when first needed
_driver: Optional[Driver] = None


def _create_driver() -> Driver:
    return GraphDatabase.driver(
        NEO4J_URI,
        auth=(NEO4J_USER, NEO4J_PASSWORD),
        max_connection_lifetime=3600,  # 1 hour
        max_connection_pool_size=50,
        connection_acquisition_timeout=30,
        keep_alive=True,
    )


def _get_driver() -> Driver:
    """Get or create the Neo4j driver, with lazy validation."""
    global _driver
    if _driver is None:
        if not NEO4J_PASSWORD:
            raise ValueError(
                "NEO4J_PASSWORD environment variable is required. "
                "Please set it in your .env.local file."
            )
        _driver = _create_driver()
    # Verify driver is still healthy, recreate if needed
    try:
        _driver.verify_connectivity()
    except Exception as e:
        logger.warning(f"Neo4j driver unhealthy, recreating: {e}")
        try:
            _driver.close()
        except Exception:
            pass
        _driver = _create_driver()
    return _driver


def _reset_driver() -> None:
    global _driver
    try:
        if _driver:
            _driver.close()
    except Exception:
        pass
    _driver = None


def get_neo4j_session() -> Generator:
    """
    FastAPI dependency that yields a Neo4j session.

    The session is always closed. If anything fails while the session is in
    use, the driver is dropped so the next request builds a fresh one.
    """
    driver = _get_driver()
    session = None
    try:
        session = driver.session(database=NEO4J_DATABASE)
        yield session
    except Exception:
        _reset_driver()
        # Re-raise so FastAPI's exception handlers see the original error
        raise
    finally:
        if session:
            try:
                session.close()
            except Exception:
                # Ignore errors during cleanup to prevent masking the original error
                pass


def get_driver() -> Driver:
    """Get the Neo4j driver (for startup tasks that run outside a request)."""
    return _get_driver()


def close_driver() -> None:
    """Close the shared driver on application shutdown."""
    _reset_driver()
