"""
Mind nodes API - CRUD and connect endpoints under /api/nodes.
"""
from contextlib import contextmanager
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response
from typing import Any, Callable, ContextManager, Dict, Iterator, List, Optional

from config import NEO4J_DATABASE
from db_neo4j import get_driver, get_neo4j_session
from models import ConnectNodesRequest, ConnectResult, MindNode, MindNodeCreate, NodeType, normalize_node_type
from services_broadcast import broadcaster
from services_graph import Neo4jMindNodeRepository
from services_mind_nodes import MindNodeService

router = APIRouter(prefix="/api/nodes", tags=["nodes"])


def get_mind_node_service(session=Depends(get_neo4j_session)) -> MindNodeService:
    """FastAPI dependency: a service bound to this request's Neo4j session."""
    return MindNodeService(Neo4jMindNodeRepository(session), broadcaster)


@contextmanager
def open_mind_node_service() -> Iterator[MindNodeService]:
    """A service on its own short-lived Neo4j session, closed on exit."""
    with get_driver().session(database=NEO4J_DATABASE) as session:
        yield MindNodeService(Neo4jMindNodeRepository(session), broadcaster)


ServiceFactory = Callable[[], ContextManager[MindNodeService]]


def get_mind_node_service_factory() -> ServiceFactory:
    """
    FastAPI dependency for long-lived connections (WebSockets).

    A socket can outlive the driver it started with, so instead of one
    session for its whole lifetime it opens a fresh one per unit of work.
    """
    return open_mind_node_service


def _found(node: Optional[MindNode]):
    # Not-found carries no body
    if node is None:
        return Response(status_code=404)
    return node


@router.get("", response_model=List[MindNode])
def list_nodes_endpoint(
    type: Optional[str] = Query(None, description="Only return nodes of this type (case-insensitive)"),
    service: MindNodeService = Depends(get_mind_node_service),
):
    """
    List every node in the mind map.

    Each node carries `connectionIds`, the ids of all nodes it shares an edge
    with regardless of which side created the edge.
    """
    node_type = None
    if type:
        try:
            node_type = NodeType(normalize_node_type(type))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid node type: {type}")
    return service.list_nodes(node_type)


@router.get("/{node_id}", response_model=MindNode)
def get_node_endpoint(node_id: str, service: MindNodeService = Depends(get_mind_node_service)):
    return _found(service.get_node(node_id))


@router.post("", response_model=MindNode)
def create_node_endpoint(payload: MindNodeCreate, service: MindNodeService = Depends(get_mind_node_service)):
    """
    Create a node.

    The database assigns the id and both timestamps. Subscribers of
    /topic/nodes receive the created node.

    EXAMPLE:
    POST /api/nodes
    Body: {"title": "Main Idea", "x": 100, "y": 200, "type": "IDEA", "color": "#FF5733"}
    """
    return service.create_node(payload)


@router.put("/{node_id}", response_model=MindNode)
def update_node_endpoint(
    node_id: str,
    payload: MindNodeCreate,
    service: MindNodeService = Depends(get_mind_node_service),
):
    """
    Replace every mutable field of a node.

    Optional fields left out of the body (description, color) are cleared.
    Use PATCH to change a subset.
    """
    return _found(service.update_node(node_id, payload))


@router.patch("/{node_id}", response_model=MindNode)
def patch_node_endpoint(
    node_id: str,
    updates: Dict[str, Any] = Body(...),
    service: MindNodeService = Depends(get_mind_node_service),
):
    """
    Partially update a node.

    Only keys present in the body are written; everything else stays as it
    was. A `null` value also leaves the field unchanged.

    EXAMPLE:
    PATCH /api/nodes/42
    Body: {"color": "#00FF00"}
    """
    return _found(service.patch_node(node_id, updates))


@router.delete("/{node_id}", status_code=204)
def delete_node_endpoint(node_id: str, service: MindNodeService = Depends(get_mind_node_service)):
    """Delete a node and every edge touching it."""
    if not service.delete_node(node_id):
        return Response(status_code=404)
    return Response(status_code=204)


@router.post("/connect", response_model=ConnectResult)
def connect_nodes_endpoint(
    payload: ConnectNodesRequest,
    service: MindNodeService = Depends(get_mind_node_service),
):
    """
    Connect two nodes with an undirected edge.

    Always answers 200 for well-formed ids. `applied` is false when either
    node is missing or the pair is already connected; `reason` says which.
    Connecting a node to itself makes a self-loop. Only an applied connect broadcasts the full graph on
    /topic/graph.
    """
    return service.connect_nodes(payload)
