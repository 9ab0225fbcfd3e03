"""
Hierarchy resolver: region -> area -> field -> well subtree closure.
The closure is computed inside Postgres with one recursive query, so the number
of round trips does not grow with tree depth.
"""
import logging
from typing import Any

import psycopg

from .config import settings

logger = logging.getLogger(__name__)

# depth guards against a corrupted parent chain; UNION drops repeated (id, depth) pairs
SUBTREE_SQL = """
    WITH RECURSIVE subtree(id, depth) AS (
        SELECT h.id, 0
        FROM hierarchy h
        WHERE h.id = %(root_id)s
        UNION
        SELECT c.id, s.depth + 1
        FROM hierarchy c
        JOIN subtree s ON c.parent_id = s.id
        WHERE s.depth < %(max_depth)s
    )
    SELECT DISTINCT id FROM subtree
"""


def coerce_node_id(value: Any) -> int | None:
    """Integer node id, or None for anything that cannot name a node."""
    if value is None or isinstance(value, bool):
        return None
    try:
        node_id = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return node_id if node_id >= 0 else None


def resolve_subtree(conn: psycopg.Connection, root_id: Any, max_depth: int | None = None) -> set[int]:
    """Ids of root_id and all of its descendants; empty when root_id matches no node."""
    node_id = coerce_node_id(root_id)
    if node_id is None:
        logger.debug(f"Hierarchy id {root_id!r} is not a valid node id")
        return set()
    depth = max_depth if max_depth is not None else settings.max_hierarchy_depth
    cur = conn.execute(SUBTREE_SQL, {"root_id": node_id, "max_depth": depth})
    ids = {r["id"] for r in cur.fetchall()}
    logger.debug(f"Hierarchy {node_id} resolves to {len(ids)} node(s)")
    return ids
