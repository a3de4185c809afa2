"""Graph serialization.

Persisted form:

    {
        "nodes": [{"id", "type", "position": {"x", "y"}, "config"}],
        "connections": [{"fromNode", "fromPort", "toNode", "toPort"}],
    }

The autosave envelope wraps it with a version and a timestamp.
"""

from __future__ import annotations

import json
import time
from typing import TYPE_CHECKING, Any, Dict, Optional

from nodeflow import log
from nodeflow.nodegraph.geometry import Point
from nodeflow.nodegraph.graph_data import Connection

if TYPE_CHECKING:
    from nodeflow.nodegraph.graph import NodeGraph
    from nodeflow.nodegraph.persistence import PersistenceStore

AUTOSAVE_VERSION = 1
AUTOSAVE_KEY = "graph"
MAX_AUTOSAVE_BYTES = 5 * 1024 * 1024


class AutosaveTooLarge(ValueError):
    pass


def _json_safe(value: Any) -> Any:
    """Copy through JSON so the snapshot shares nothing with live config."""
    return json.loads(json.dumps(value, default=str))


def serialize_graph(graph: "NodeGraph") -> dict:
    """Snapshot of the graph in the persisted format."""
    return {
        "nodes": [_json_safe(node.to_dict()) for node in graph.nodes.values()],
        "connections": [connection.to_dict() for connection in graph.connections],
    }


def deserialize_graph(data: dict, graph: "NodeGraph") -> Dict[str, int]:
    """
    Replace graph contents with `data`.

    Nodes of unknown type and connections whose endpoints or ports are
    gone are dropped. The id counter continues after the highest
    restored id suffix. The graph is clean afterwards.

    Returns:
        Counts of restored and skipped items.
    """
    graph.clear(mark_dirty=False)
    stats = {"nodes": 0, "connections": 0, "skipped_nodes": 0, "skipped_connections": 0}

    for node_data in (data or {}).get("nodes") or []:
        if not isinstance(node_data, dict):
            stats["skipped_nodes"] += 1
            continue
        node_id = node_data.get("id")
        definition = graph.library.get(node_data.get("type"))
        if not node_id or definition is None or node_id in graph.nodes:
            log.debug(f"Skipping persisted node {node_id!r} of type {node_data.get('type')!r}")
            stats["skipped_nodes"] += 1
            continue
        config = node_data.get("config")
        graph.restore_node(
            str(node_id),
            definition,
            Point.from_dict(node_data.get("position")),
            dict(config) if isinstance(config, dict) else {},
        )
        stats["nodes"] += 1

    for connection_data in (data or {}).get("connections") or []:
        try:
            connection = Connection.from_dict(connection_data)
        except (KeyError, TypeError):
            stats["skipped_connections"] += 1
            continue
        if not _restore_connection(graph, connection):
            stats["skipped_connections"] += 1
            continue
        stats["connections"] += 1

    graph.redraw_nodes()
    graph.clear_dirty()
    graph.selection.clear()
    return stats


def _restore_connection(graph: "NodeGraph", connection: Connection) -> bool:
    source = graph.nodes.get(connection.from_node)
    target = graph.nodes.get(connection.to_node)
    if source is None or target is None:
        return False
    if connection.from_port not in source.definition.outputs:
        return False
    if connection.to_port not in target.definition.inputs:
        return False
    existing = graph.connection_into(connection.to_node, connection.to_port)
    if existing is not None:
        graph.connections.remove(existing)
    graph.connections.append(connection)
    return True


def wrap_autosave(graph_data: dict, updated_at: Optional[int] = None) -> dict:
    return {
        "version": AUTOSAVE_VERSION,
        "updatedAt": int(time.time() * 1000) if updated_at is None else updated_at,
        "graph": graph_data,
    }


def unwrap_autosave(payload: Any) -> Optional[dict]:
    """Graph data from an autosave envelope (a bare graph dict is accepted too)."""
    if not isinstance(payload, dict):
        return None
    if "graph" in payload:
        graph_data = payload.get("graph")
        return graph_data if isinstance(graph_data, dict) else None
    if "nodes" in payload:
        return payload
    return None


class GraphAutosave:
    """Autosave envelope stored under one key of a PersistenceStore."""

    def __init__(self, store: "PersistenceStore", key: str = AUTOSAVE_KEY, max_bytes: int = MAX_AUTOSAVE_BYTES):
        self.store = store
        self.key = key
        self.max_bytes = max_bytes

    def save(self, graph_data: dict) -> bool:
        payload = wrap_autosave(graph_data)
        size = len(json.dumps(payload).encode("utf-8"))
        if size > self.max_bytes:
            raise AutosaveTooLarge(f"Autosave payload is {size} bytes, limit is {self.max_bytes}")
        return self.store.save(self.key, payload) is not False

    def load(self) -> Optional[dict]:
        return unwrap_autosave(self.store.load(self.key))

    def clear(self) -> None:
        self.store.clear(self.key)
