"""
Mind node persistence.

MindNodeRepository is the narrow storage contract the service depends on.
Neo4jMindNodeRepository implements it with Cypher. The service wraps each of
its operations in read_transaction/write_transaction, so every query an
operation issues runs in one Neo4j managed transaction.

Graph shape:
- (:MindNode {title, description, x, y, color, type, created_at, updated_at})
- (:MindNode)-[:CONNECTED_TO]->(:MindNode), read as undirected
"""
from typing import Any, Callable, Dict, List, Optional, Protocol, TypeVar, Union
import logging

from neo4j import ManagedTransaction, Session

from models import MindNode

logger = logging.getLogger("mind_mesh")

T = TypeVar("T")

# Properties the service is allowed to write
MUTABLE_FIELDS = ("title", "description", "x", "y", "color", "type")

_SCHEMA_INITIALIZED = False

# Shared tail for every query that returns full nodes: expects `n` bound.
_NODE_PROJECTION = """
OPTIONAL MATCH (n)-[:CONNECTED_TO]-(m:MindNode)
RETURN id(n) AS id,
       n.title AS title,
       n.description AS description,
       n.x AS x,
       n.y AS y,
       n.color AS color,
       n.type AS type,
       n.created_at AS created_at,
       n.updated_at AS updated_at,
       collect(DISTINCT id(m)) AS connection_ids
"""


class MindNodeRepository(Protocol):
    def find_all(self, node_type: Optional[str] = None) -> List[MindNode]: ...

    def find_by_id(self, node_id: int) -> Optional[MindNode]: ...

    def create(self, fields: Dict[str, Any]) -> MindNode: ...

    def replace(self, node_id: int, fields: Dict[str, Any]) -> Optional[MindNode]: ...

    def update_fields(self, node_id: int, fields: Dict[str, Any]) -> Optional[MindNode]: ...

    def delete_by_id(self, node_id: int) -> bool: ...

    def find_connected_ids(self, node_id: int) -> List[int]: ...

    def connect(self, source_id: int, target_id: int) -> None: ...

    def read_transaction(self, work: Callable[["MindNodeRepository"], T]) -> T: ...

    def write_transaction(self, work: Callable[["MindNodeRepository"], T]) -> T: ...


def _to_native(value: Any) -> Any:
    # neo4j.time.DateTime -> datetime.datetime
    to_native = getattr(value, "to_native", None)
    return to_native() if callable(to_native) else value


def _node_from_record(record_data: Dict[str, Any]) -> MindNode:
    data = dict(record_data)
    data["created_at"] = _to_native(data.get("created_at"))
    data["updated_at"] = _to_native(data.get("updated_at"))
    data["connection_ids"] = sorted(i for i in (data.get("connection_ids") or []) if i is not None)
    return MindNode(**data)


def _writable(fields: Dict[str, Any]) -> Dict[str, Any]:
    params = {k: v for k, v in fields.items() if k in MUTABLE_FIELDS}
    # Store the enum's plain value
    if params.get("type") is not None:
        params["type"] = getattr(params["type"], "value", params["type"])
    return params


class Neo4jMindNodeRepository:
    """
    MindNodeRepository backed by a Neo4j session or managed transaction.

    Query methods run on whatever `session` is. read_transaction and
    write_transaction hand `work` a repository bound to one managed
    transaction; the driver may retry `work` on transient errors, so it
    must not have side effects outside the database.
    """

    def __init__(self, session: Union[Session, ManagedTransaction]):
        self.session = session

    def read_transaction(self, work: Callable[[MindNodeRepository], T]) -> T:
        return self.session.execute_read(lambda tx: work(Neo4jMindNodeRepository(tx)))

    def write_transaction(self, work: Callable[[MindNodeRepository], T]) -> T:
        return self.session.execute_write(lambda tx: work(Neo4jMindNodeRepository(tx)))

    def find_all(self, node_type: Optional[str] = None) -> List[MindNode]:
        query = """
        MATCH (n:MindNode)
        WHERE $type IS NULL OR n.type = $type
        """ + _NODE_PROJECTION + """
        ORDER BY id
        """
        result = self.session.run(query, type=node_type)
        return [_node_from_record(record.data()) for record in result]

    def find_by_id(self, node_id: int) -> Optional[MindNode]:
        query = """
        MATCH (n:MindNode)
        WHERE id(n) = $node_id
        """ + _NODE_PROJECTION
        record = self.session.run(query, node_id=node_id).single()
        if not record:
            return None
        return _node_from_record(record.data())

    def create(self, fields: Dict[str, Any]) -> MindNode:
        params = {name: None for name in MUTABLE_FIELDS}
        params.update(_writable(fields))
        query = """
        CREATE (n:MindNode {
            title: $title,
            description: $description,
            x: $x,
            y: $y,
            color: $color,
            type: $type,
            created_at: datetime(),
            updated_at: datetime()
        })
        WITH n
        """ + _NODE_PROJECTION
        record = self.session.run(query, **params).single()
        return _node_from_record(record.data())

    def replace(self, node_id: int, fields: Dict[str, Any]) -> Optional[MindNode]:
        """Overwrite every mutable property; omitted optional fields become null."""
        params = {name: None for name in MUTABLE_FIELDS}
        params.update(_writable(fields))
        return self._set(node_id, params)

    def update_fields(self, node_id: int, fields: Dict[str, Any]) -> Optional[MindNode]:
        """Set only the given properties. An empty update just reads the node."""
        params = _writable(fields)
        if not params:
            return self.find_by_id(node_id)
        return self._set(node_id, params)

    def _set(self, node_id: int, params: Dict[str, Any]) -> Optional[MindNode]:
        set_clauses = [f"n.{name} = ${name}" for name in params]
        set_clauses.append("n.updated_at = datetime()")
        query = f"""
        MATCH (n:MindNode)
        WHERE id(n) = $node_id
        SET {', '.join(set_clauses)}
        WITH n
        """ + _NODE_PROJECTION
        record = self.session.run(query, node_id=node_id, **params).single()
        if not record:
            return None
        return _node_from_record(record.data())

    def delete_by_id(self, node_id: int) -> bool:
        """
        Deletes a node and all its relationships.
        Returns True if deleted, False if not found.
        """
        query = """
        MATCH (n:MindNode)
        WHERE id(n) = $node_id
        DETACH DELETE n
        RETURN count(n) AS deleted
        """
        record = self.session.run(query, node_id=node_id).single()
        return bool(record and record["deleted"] > 0)

    def find_connected_ids(self, node_id: int) -> List[int]:
        query = """
        MATCH (n:MindNode)-[:CONNECTED_TO]-(m:MindNode)
        WHERE id(n) = $node_id
        RETURN DISTINCT id(m) AS id
        """
        result = self.session.run(query, node_id=node_id)
        return [record["id"] for record in result]

    def connect(self, source_id: int, target_id: int) -> None:
        # MERGE keeps a concurrent duplicate connect from adding a second edge
        query = """
        MATCH (s:MindNode), (t:MindNode)
        WHERE id(s) = $source_id AND id(t) = $target_id
        MERGE (s)-[:CONNECTED_TO]-(t)
        """
        self.session.run(query, source_id=source_id, target_id=target_id).consume()


def ensure_schema_initialized(session: Session) -> None:
    """
    Best-effort index creation for MindNode lookups.

    Safe to call repeatedly; it caches per-process and uses IF NOT EXISTS.
    """
    global _SCHEMA_INITIALIZED
    if _SCHEMA_INITIALIZED:
        return

    try:
        session.run(
            "CREATE INDEX mind_node_type_index IF NOT EXISTS "
            "FOR (n:MindNode) ON (n.type)"
        ).consume()
        _SCHEMA_INITIALIZED = True
    except Exception as e:
        logger.warning(f"[mind_node_schema] Failed to ensure Neo4j schema: {e}")
