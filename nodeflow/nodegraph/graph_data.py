"""Pure data structures for node graph representation.

These classes contain no Qt dependencies and are shared by the
graph model, the compiler and serialization.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from nodeflow import log
from nodeflow.nodegraph.definition import NodeDefinition
from nodeflow.nodegraph.geometry import Point

_ID_SUFFIX_RE = re.compile(r"_(\d+)$")


class RenderHandle:
    """
    Disposer returned by a render hook.

    dispose() runs the teardown at most once; failures are logged.
    """

    def __init__(self, node_id: str, disposer: Optional[Callable[[], None]] = None):
        self.node_id = node_id
        self._disposer = disposer
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        disposer, self._disposer = self._disposer, None
        if disposer is None:
            return
        try:
            disposer()
        except Exception as e:
            log.warn(e, f"Failed to tear down UI of node '{self.node_id}'")


@dataclass
class NodeInstance:
    """Placed occurrence of a definition on the canvas."""
    id: str
    definition: NodeDefinition
    position: Point = field(default_factory=Point)
    config: Dict[str, Any] = field(default_factory=dict)
    render_handle: Optional[RenderHandle] = None

    @property
    def type(self) -> str:
        return self.definition.id

    @property
    def label(self) -> str:
        return self.definition.label

    def dispose(self) -> None:
        if self.render_handle is not None:
            self.render_handle.dispose()
            self.render_handle = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "position": self.position.to_dict(),
            "config": dict(self.config),
        }


def id_counter_suffix(node_id: str) -> int:
    """Numeric counter suffix of a node id ('foo_12' -> 12), 0 if absent."""
    match = _ID_SUFFIX_RE.search(node_id or "")
    return int(match.group(1)) if match else 0


@dataclass(frozen=True, eq=False)
class Connection:
    """
    Directed edge from an output port to an input port.

    Equality is identity: two Connection objects are never the same edge
    for removal purposes. Use `key` for value comparison.
    """
    from_node: str
    from_port: str
    to_node: str
    to_port: str

    @property
    def key(self) -> Tuple[str, str, str, str]:
        return (self.from_node, self.from_port, self.to_node, self.to_port)

    def touches(self, node_id: str) -> bool:
        return self.from_node == node_id or self.to_node == node_id

    def to_dict(self) -> dict:
        return {
            "fromNode": self.from_node,
            "fromPort": self.from_port,
            "toNode": self.to_node,
            "toPort": self.to_port,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Connection":
        return cls(
            from_node=str(data["fromNode"]),
            from_port=str(data["fromPort"]),
            to_node=str(data["toNode"]),
            to_port=str(data["toPort"]),
        )
