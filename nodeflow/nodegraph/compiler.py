"""Graph compiler - converts the node graph into a PowerShell script.

Responsibilities:
- Topological sort of nodes by connections
- Unique script variable names for node outputs
- Input resolution (upstream variable, live UI value or bound control)
- Per-node script emission and final script assembly

Works with the pure graph model, no Qt dependencies.
"""

from __future__ import annotations

import re
from collections import deque
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from nodeflow import log
from nodeflow.nodegraph.definition import RAW_SUFFIX
from nodeflow.nodegraph.literals import to_powershell_literal

if TYPE_CHECKING:
    from nodeflow.nodegraph.graph import NodeGraph
    from nodeflow.nodegraph.graph_data import Connection, NodeInstance

SCRIPT_HEADER = "# Generated with NodeFlow"
SCRIPT_BOOTSTRAP = "Set-StrictMode -Version Latest\n$ErrorActionPreference = 'Stop'"
EMPTY_BODY = "# Flow contains no executable steps"

_NON_IDENT_RE = re.compile(r"[^A-Za-z0-9_]")


class CompileError(Exception):
    """Error during graph compilation."""
    pass


class CycleError(CompileError):
    """The graph contains a directed cycle."""

    def __init__(self, message: str = "Circular dependency detected."):
        super().__init__(message)


class MissingInputError(CompileError):
    """A script node has inputs that resolve to nothing."""

    def __init__(self, node_id: str, label: str, missing: List[str]):
        self.node_id = node_id
        self.label = label
        self.missing = list(missing)
        super().__init__(f"{label} is missing required input: {', '.join(self.missing)}")


def topological_sort(node_ids: Iterable[str], connections: Iterable["Connection"]) -> List[str]:
    """
    Kahn's algorithm.

    Ties are broken by the order of `node_ids`, so the result is
    deterministic. Connections with unknown endpoints are ignored.

    Raises:
        CycleError: not every node could be ordered.
    """
    node_ids = list(node_ids)
    in_degree: Dict[str, int] = {node_id: 0 for node_id in node_ids}
    adjacency: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}

    for connection in connections:
        if connection.from_node in in_degree and connection.to_node in in_degree:
            adjacency[connection.from_node].append(connection.to_node)
            in_degree[connection.to_node] += 1

    queue = deque(node_id for node_id in node_ids if in_degree[node_id] == 0)
    order: List[str] = []

    while queue:
        node_id = queue.popleft()
        order.append(node_id)
        for neighbour in adjacency[node_id]:
            in_degree[neighbour] -= 1
            if in_degree[neighbour] == 0:
                queue.append(neighbour)

    if len(order) != len(node_ids):
        raise CycleError()
    return order


class VariableBinder:
    """Maps (node id, output port) to a unique script variable for one compile pass."""

    def __init__(self):
        self._names: Dict[Tuple[str, str], str] = {}
        self._taken: Dict[str, Tuple[str, str]] = {}

    def bind(self, node_id: str, output: str) -> str:
        key = (node_id, output)
        name = self._names.get(key)
        if name is not None:
            return name

        base = "$" + _NON_IDENT_RE.sub("_", f"{node_id}_{output}")
        name = base
        suffix = 2
        while name in self._taken:
            name = f"{base}_{suffix}"
            suffix += 1

        self._names[key] = name
        self._taken[name] = key
        return name

    @property
    def bindings(self) -> Dict[Tuple[str, str], str]:
        return dict(self._names)


def ui_output_for_script(node: "NodeInstance", port: str) -> str:
    """Live value of a UI node output as PowerShell source text."""
    raw_key = port + RAW_SUFFIX
    raw = node.config.get(raw_key)
    if raw is not None and str(raw) != "":
        return to_powershell_literal(raw)
    stored = node.config.get(port)
    if stored is None or stored == "":
        return ""
    return to_powershell_literal(stored)


def _config_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return to_powershell_literal(value)
    return str(value)


def resolve_script_input(
    graph: "NodeGraph",
    node: "NodeInstance",
    input_name: str,
    binder: VariableBinder,
) -> str:
    """
    Resolve what a script node's input expands to.

    Wired from a UI node: its live value as a literal.
    Wired from a script node: the upstream output variable.
    Unwired: the bound control value, else the node's own config value.
    """
    connection = graph.connection_into(node.id, input_name)
    if connection is not None:
        upstream = graph.nodes.get(connection.from_node)
        if upstream is None:
            return ""
        if upstream.definition.is_ui:
            return ui_output_for_script(upstream, connection.from_port)
        return binder.bind(upstream.id, connection.from_port)

    control = node.definition.control_for_input(input_name)
    key = control.key if control is not None else input_name
    return _config_text(node.config.get(key))


def _script_config(config: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        key: to_powershell_literal(value) if isinstance(value, bool) else value
        for key, value in config.items()
    }


def wrap_script(body: str, timestamp: Optional[Union[datetime, str]] = None) -> str:
    """Add header, strict-mode prologue and trailing newline."""
    if timestamp is None:
        timestamp = datetime.now(timezone.utc)
    if isinstance(timestamp, datetime):
        stamp = timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    else:
        stamp = str(timestamp)

    content = body.strip() if body and body.strip() else EMPTY_BODY
    sections = [f"{SCRIPT_HEADER}\n# {stamp}", SCRIPT_BOOTSTRAP, content]
    return "\n\n".join(sections).strip() + "\n"


def generate_script_body(graph: "NodeGraph") -> str:
    """
    Ordered script statements without the preamble.

    Raises:
        CycleError: the graph has a cycle.
        MissingInputError: a script node input resolves empty.
    """
    if not graph.nodes:
        return ""

    order = topological_sort(graph.nodes.keys(), graph.connections)
    binder = VariableBinder()
    sections: List[str] = []

    for node_id in order:
        node = graph.nodes[node_id]
        definition = graph.library.get(node.type)
        if definition is None:
            log.debug(f"Skipping node '{node_id}': unknown type '{node.type}'")
            continue
        if definition.is_ui:
            continue

        inputs = {
            name: resolve_script_input(graph, node, name, binder)
            for name in definition.inputs
        }
        missing = [name for name, value in inputs.items() if not value]
        if missing:
            raise MissingInputError(node.id, definition.label, missing)

        outputs = {name: binder.bind(node.id, name) for name in definition.outputs}
        text = definition.emit_script(inputs, outputs, _script_config(node.config))
        if text.strip():
            sections.append(text.strip("\n"))

    return "\n\n".join(sections)


def generate_script(graph: "NodeGraph", timestamp: Optional[Union[datetime, str]] = None) -> str:
    """Compile the graph into a complete script document."""
    return wrap_script(generate_script_body(graph), timestamp)
