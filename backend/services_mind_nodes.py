"""
Mind node service: all the branching logic behind the HTTP and WebSocket
controllers.

The service is handed its storage (a MindNodeRepository) and its
Broadcaster; it never reaches for a global. Each operation runs in a single
repository transaction and publishes only after that transaction has
committed. Reads log at DEBUG, writes at INFO, and negative outcomes (missing
node, already connected) at WARNING.
"""
from typing import Any, Dict, List, Optional
import logging
import re

from models import (
    ConnectNodesRequest,
    ConnectOutcome,
    ConnectResult,
    MindNode,
    MindNodeCreate,
    MindNodePatch,
    NodeType,
)
from services_broadcast import Broadcaster, GRAPH_CHANNEL, NODES_CHANNEL
from services_graph import MindNodeRepository
from services_logging import node_event_line

logger = logging.getLogger("mind_mesh")

# Neo4j ids are signed 64-bit integers
NODE_ID_MIN = -(2 ** 63)
NODE_ID_MAX = 2 ** 63 - 1

_NODE_ID_PATTERN = re.compile(r"-?[0-9]+")


class InvalidNodeIdError(ValueError):
    """Raised when a node identifier is not a 64-bit integer."""

    def __init__(self, node_id: Any):
        self.node_id = node_id
        super().__init__(f"Invalid node ID: {node_id}")


def parse_node_id(node_id: Any) -> int:
    """
    Parse a node id given as an int or a plain decimal string.

    Whitespace, underscores, signs other than a leading minus and values
    outside the 64-bit range are all rejected.
    """
    if isinstance(node_id, bool):
        raise InvalidNodeIdError(node_id)
    if isinstance(node_id, int):
        value = node_id
    elif isinstance(node_id, str) and _NODE_ID_PATTERN.fullmatch(node_id):
        value = int(node_id)
    else:
        logger.warning(f"Invalid node ID format: {node_id!r}")
        raise InvalidNodeIdError(node_id)

    if not NODE_ID_MIN <= value <= NODE_ID_MAX:
        logger.warning(f"Node ID out of range: {node_id!r}")
        raise InvalidNodeIdError(node_id)
    return value


def _wire(node: MindNode) -> Dict[str, Any]:
    return node.model_dump(mode="json", by_alias=True)


class MindNodeService:
    def __init__(self, repository: MindNodeRepository, broadcaster: Broadcaster):
        self.repository = repository
        self.broadcaster = broadcaster

    def list_nodes(self, node_type: Optional[NodeType] = None) -> List[MindNode]:
        """Every node, each carrying the ids of its direct neighbours."""
        type_value = node_type.value if node_type else None
        nodes = self.repository.read_transaction(lambda repo: repo.find_all(type_value))
        logger.debug(f"Retrieved {len(nodes)} nodes (type={type_value})")
        return nodes

    def get_node(self, node_id: Any) -> Optional[MindNode]:
        nid = parse_node_id(node_id)
        node = self.repository.read_transaction(lambda repo: repo.find_by_id(nid))
        if node is None:
            logger.warning(f"Node not found: {nid}")
        return node

    def create_node(self, payload: MindNodeCreate) -> MindNode:
        fields = payload.model_dump()
        node = self.repository.write_transaction(lambda repo: repo.create(fields))
        logger.info(node_event_line("node_created", node.id, title=node.title, type=node.type.value))
        self.broadcaster.publish(NODES_CHANNEL, _wire(node))
        return node

    def update_node(self, node_id: Any, payload: MindNodeCreate) -> Optional[MindNode]:
        """Full replacement of the mutable fields."""
        nid = parse_node_id(node_id)
        fields = payload.model_dump()
        node = self.repository.write_transaction(lambda repo: repo.replace(nid, fields))
        if node is None:
            logger.warning(f"Node not found for update: {nid}")
            return None
        logger.info(node_event_line("node_updated", nid))
        self.broadcaster.publish(NODES_CHANNEL, _wire(node))
        return node

    def patch_node(self, node_id: Any, updates: Dict[str, Any]) -> Optional[MindNode]:
        """
        Apply only the keys present in `updates` with a non-null value.

        A null value keeps the stored one. Raises pydantic.ValidationError for
        present keys with bad values and InvalidNodeIdError for a malformed id.
        Returns None if the node does not exist.
        """
        nid = parse_node_id(node_id)
        fields = MindNodePatch.model_validate(updates).model_dump(exclude_none=True)

        if not fields:
            # Nothing applicable; report the current state without broadcasting
            node = self.repository.read_transaction(lambda repo: repo.find_by_id(nid))
            if node is None:
                logger.warning(f"Node not found for patch: {nid}")
            return node

        node = self.repository.write_transaction(lambda repo: repo.update_fields(nid, fields))
        if node is None:
            logger.warning(f"Node not found for patch: {nid}")
            return None
        logger.info(node_event_line("node_patched", nid, fields=sorted(fields)))
        self.broadcaster.publish(NODES_CHANNEL, _wire(node))
        return node

    def delete_node(self, node_id: Any) -> bool:
        nid = parse_node_id(node_id)
        if not self.repository.write_transaction(lambda repo: repo.delete_by_id(nid)):
            logger.warning(f"Node not found for deletion: {nid}")
            return False
        logger.info(node_event_line("node_deleted", nid))
        self.broadcaster.publish(NODES_CHANNEL, {"deleted": str(nid)})
        return True

    def connect_nodes(self, request: ConnectNodesRequest) -> ConnectResult:
        """
        Create an undirected edge between two nodes.

        A missing node and an existing edge (either direction) are normal
        outcomes reported through ConnectResult.applied. The existence checks,
        the write and the graph snapshot that gets broadcast share one
        transaction.
        """
        source_id = parse_node_id(request.source_id)
        target_id = parse_node_id(request.target_id)

        def connect(repo: MindNodeRepository):
            if repo.find_by_id(source_id) is None or repo.find_by_id(target_id) is None:
                return ConnectOutcome.NODE_NOT_FOUND, None
            if target_id in repo.find_connected_ids(source_id):
                return ConnectOutcome.ALREADY_CONNECTED, None
            repo.connect(source_id, target_id)
            return ConnectOutcome.CONNECTED, repo.find_all()

        reason, snapshot = self.repository.write_transaction(connect)

        if reason is ConnectOutcome.NODE_NOT_FOUND:
            logger.warning(f"One or both nodes not found for connection: {source_id} -> {target_id}")
        elif reason is ConnectOutcome.ALREADY_CONNECTED:
            logger.warning(f"Nodes already connected: {source_id} -> {target_id}")
        else:
            logger.info(node_event_line("nodes_connected", source_id, target_id=target_id))
            self.broadcaster.publish(GRAPH_CHANNEL, [_wire(n) for n in snapshot])

        return ConnectResult(
            applied=reason is ConnectOutcome.CONNECTED,
            reason=reason,
            source_id=source_id,
            target_id=target_id,
        )
