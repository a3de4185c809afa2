"""NodeGraph - graph model and its mutation API.

Owns node instances, connections, the definition library and the
selection. All mutations go through this class; listeners are told
what kind of change happened so views can re-render.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from nodeflow import log
from nodeflow.nodegraph.auto_exec import HookContext
from nodeflow.nodegraph.definition import RAW_SUFFIX, NodeDefinition
from nodeflow.nodegraph.geometry import Point
from nodeflow.nodegraph.graph_data import (
    Connection,
    NodeInstance,
    RenderHandle,
    id_counter_suffix,
)
from nodeflow.nodegraph.literals import extract_literal_raw, to_powershell_literal
from nodeflow.nodegraph.selection import Selection


class GraphError(ValueError):
    """Invalid use of the graph mutation API."""
    pass


GraphListener = Callable[[str], None]


class NodeGraph:
    """
    Node instances keyed by id plus connections in drawing order.

    Invariants:
    - node ids are unique and never change;
    - at most one connection ends at a given (to_node, to_port);
    - every connection references declared ports of existing nodes.
    """

    def __init__(self, library: Iterable[NodeDefinition] = ()):
        self.library: Dict[str, NodeDefinition] = {}
        self.nodes: Dict[str, NodeInstance] = {}
        self.connections: List[Connection] = []
        self.selection = Selection(on_changed=lambda: self._emit("selection"))
        self.node_count = 0
        self.dirty = False

        # Set by AutoExecutor; used by hook contexts.
        self.auto_executor = None
        # Optional factory producing a UI container for render hooks.
        self.render_container_factory: Optional[Callable[[NodeInstance], Any]] = None

        self._listeners: List[GraphListener] = []
        self._replace_library(library)

    # --- Listeners ---

    def add_listener(self, listener: GraphListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: GraphListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: str) -> None:
        for listener in list(self._listeners):
            listener(event)

    # --- Dirty flag ---

    def mark_dirty(self) -> None:
        self.dirty = True
        self._emit("dirty")

    def clear_dirty(self) -> None:
        self.dirty = False

    # --- Queries ---

    def definition(self, definition_id: str) -> Optional[NodeDefinition]:
        return self.library.get(definition_id)

    def get_node(self, node_id: str) -> Optional[NodeInstance]:
        return self.nodes.get(node_id)

    def connection_into(self, node_id: str, port: str) -> Optional[Connection]:
        for connection in self.connections:
            if connection.to_node == node_id and connection.to_port == port:
                return connection
        return None

    def connections_from(self, node_id: str, port: Optional[str] = None) -> List[Connection]:
        return [
            c for c in self.connections
            if c.from_node == node_id and (port is None or c.from_port == port)
        ]

    def upstream_node_ids(self, node_id: str, ports: Optional[Iterable[str]] = None) -> List[str]:
        """Direct upstream neighbours in connection order, optionally limited to some input ports."""
        port_filter = set(ports) if ports is not None else None
        result: List[str] = []
        for c in self.connections:
            if c.to_node != node_id or (port_filter is not None and c.to_port not in port_filter):
                continue
            if c.from_node not in result:
                result.append(c.from_node)
        return result

    # --- Nodes ---

    def _resolve_definition(self, definition: Union[str, NodeDefinition]) -> NodeDefinition:
        if isinstance(definition, NodeDefinition):
            return definition
        found = self.library.get(definition)
        if found is None:
            raise GraphError(f"Unknown node definition '{definition}'")
        return found

    def _allocate_id(self, definition_id: str) -> str:
        while True:
            self.node_count += 1
            node_id = f"{definition_id}_{self.node_count}"
            if node_id not in self.nodes:
                return node_id

    def create_node(
        self,
        definition: Union[str, NodeDefinition],
        position: Point = Point(),
        select: bool = True,
    ) -> NodeInstance:
        """
        Place a new node instance.

        Args:
            definition: Definition object or id from the library.
            position: World-space position of the node's top-left corner.
            select: Select the new node exclusively.

        Returns:
            The created instance.
        """
        definition = self._resolve_definition(definition)
        node = NodeInstance(
            id=self._allocate_id(definition.id),
            definition=definition,
            position=position,
            config=definition.default_config(),
        )
        self.nodes[node.id] = node
        self.render_node(node)
        if select:
            self.selection.select_node(node.id)
        self.mark_dirty()
        self._emit("nodes")
        return node

    def restore_node(
        self,
        node_id: str,
        definition: NodeDefinition,
        position: Point,
        config: Optional[Dict[str, Any]] = None,
    ) -> NodeInstance:
        """Register a node with a known id (hydration). Does not mark dirty."""
        if node_id in self.nodes:
            raise GraphError(f"Duplicate node id '{node_id}'")
        merged = definition.default_config()
        merged.update(config or {})
        node = NodeInstance(id=node_id, definition=definition, position=position, config=merged)
        self.nodes[node_id] = node
        self.node_count = max(self.node_count, id_counter_suffix(node_id))
        self._emit("nodes")
        return node

    def move_node(self, node_id: str, position: Point) -> None:
        node = self.nodes.get(node_id)
        if node is None:
            return
        node.position = position
        self._emit("positions")

    def remove_node(self, node_id: str, mark_dirty: bool = True) -> bool:
        node = self.nodes.pop(node_id, None)
        if node is None:
            return False
        node.dispose()

        selected_connection = self.selection.connection
        if selected_connection is not None and selected_connection.touches(node_id):
            self.selection.clear_connection()
        self.connections = [c for c in self.connections if not c.touches(node_id)]
        self.selection.discard_node(node_id)

        if mark_dirty:
            self.mark_dirty()
        self._emit("nodes")
        return True

    def remove_nodes(self, node_ids: Iterable[str]) -> int:
        removed = 0
        for node_id in list(node_ids):
            if self.remove_node(node_id):
                removed += 1
        return removed

    def remove_selected(self) -> bool:
        """Delete-key semantics: selected connection first, else selected nodes."""
        connection = self.selection.connection
        if connection is not None:
            return self.remove_connection(connection)
        return self.remove_nodes(self.selection.nodes) > 0

    def clear(self, mark_dirty: bool = True) -> None:
        """Tear down every node and reset the id counter."""
        for node in self.nodes.values():
            node.dispose()
        self.nodes.clear()
        self.connections.clear()
        self.selection.clear()
        self.node_count = 0
        self.dirty = mark_dirty
        self._emit("cleared")

    # --- Connections ---

    def add_connection(self, from_node: str, from_port: str, to_node: str, to_port: str) -> Connection:
        """
        Connect an output port to an input port.

        An existing connection into the same input is replaced.
        Adding an identical edge is a no-op that returns the existing one.

        Raises:
            GraphError: unknown node or undeclared port.
        """
        source = self.nodes.get(from_node)
        target = self.nodes.get(to_node)
        if source is None or target is None:
            raise GraphError(f"Unknown node in connection {from_node} -> {to_node}")
        if from_port not in source.definition.outputs:
            raise GraphError(f"'{source.type}' has no output '{from_port}'")
        if to_port not in target.definition.inputs:
            raise GraphError(f"'{target.type}' has no input '{to_port}'")

        existing = self.connection_into(to_node, to_port)
        if existing is not None:
            if existing.key == (from_node, from_port, to_node, to_port):
                return existing
            self._detach_connection(existing)

        connection = Connection(from_node, from_port, to_node, to_port)
        self.connections.append(connection)

        if source.definition.is_ui:
            raw_key = from_port + RAW_SUFFIX
            self._propagate_ui_output(
                source,
                from_port,
                value=source.config.get(from_port),
                raw_value=source.config.get(raw_key) if raw_key in source.config else None,
                connections=[connection],
            )

        self.mark_dirty()
        self._emit("connections")
        return connection

    def remove_connection(self, connection: Connection) -> bool:
        """Remove by identity."""
        if not self._detach_connection(connection):
            return False
        self.mark_dirty()
        self._emit("connections")
        return True

    def _detach_connection(self, connection: Connection) -> bool:
        for index, existing in enumerate(self.connections):
            if existing is connection:
                del self.connections[index]
                if self.selection.connection is connection:
                    self.selection.clear_connection()
                return True
        return False

    def _connection_is_valid(self, connection: Connection) -> bool:
        source = self.nodes.get(connection.from_node)
        target = self.nodes.get(connection.to_node)
        if source is None or target is None:
            return False
        return (
            connection.from_port in source.definition.outputs
            and connection.to_port in target.definition.inputs
        )

    # --- Library ---

    def _replace_library(self, definitions: Iterable[NodeDefinition]) -> None:
        library: Dict[str, NodeDefinition] = {}
        for definition in definitions:
            if definition.id in library:
                log.debug(f"Duplicate node definition '{definition.id}' ignored")
                continue
            library[definition.id] = definition
        self.library = library

    def set_library(self, definitions: Iterable[NodeDefinition], persist: bool = True) -> bool:
        """
        Replace the definition catalog and re-sync existing nodes.

        Orphaned nodes are removed, surviving nodes get their config keys
        re-merged with the new defaults, and connections to ports that no
        longer exist are pruned.

        Returns:
            True if the graph changed.
        """
        self._replace_library(definitions)
        changed = False

        for node in list(self.nodes.values()):
            definition = self.library.get(node.type)
            if definition is None:
                log.debug(f"Removing node '{node.id}': definition '{node.type}' is gone")
                self.remove_node(node.id, mark_dirty=False)
                changed = True
                continue

            merged = self._merged_config(definition, node.config)
            if merged != node.config:
                node.config = merged
                changed = True
            node.definition = definition

        kept = [c for c in self.connections if self._connection_is_valid(c)]
        if len(kept) != len(self.connections):
            log.debug(f"Pruned {len(self.connections) - len(kept)} stale connection(s)")
            selected = self.selection.connection
            if selected is not None and selected not in kept:
                self.selection.clear_connection()
            self.connections = kept
            changed = True

        self.redraw_nodes()
        if changed and persist:
            self.mark_dirty()
        self._emit("library")
        return changed

    @staticmethod
    def _merged_config(definition: NodeDefinition, config: Dict[str, Any]) -> Dict[str, Any]:
        defaults = definition.default_config()
        merged = dict(defaults)
        for key, value in config.items():
            base = key[: -len(RAW_SUFFIX)] if key.endswith(RAW_SUFFIX) else key
            if (
                key in defaults
                or definition.control(base) is not None
                or definition.keeps_config_key(key)
            ):
                merged[key] = value
        return merged

    # --- Config ---

    def update_config(
        self,
        node_id: str,
        key: str,
        value: Any,
        silent: bool = False,
        display_value: Optional[str] = None,
    ) -> bool:
        """
        Set a config value.

        Unknown node ids are ignored, so results of async work for a node
        that has been removed in the meantime are dropped.

        Args:
            node_id: Target node.
            key: Config key.
            value: New value.
            silent: Do not mark the graph dirty.
            display_value: Unescaped text stored under `{key}__raw`.

        Returns:
            True if the stored value changed.
        """
        node = self.nodes.get(node_id)
        if node is None:
            return False

        if display_value is not None:
            node.config[key + RAW_SUFFIX] = display_value

        changed = key not in node.config or node.config[key] != value
        if not changed:
            return False

        node.config[key] = value
        if not silent:
            self.mark_dirty()
        self._handle_config_mutation(node, key, value)
        self._emit("config")
        return True

    def set_control_value(self, node_id: str, key: str, value: Any) -> bool:
        """User edit of a control. Keeps an existing `{key}__raw` companion in step."""
        node = self.nodes.get(node_id)
        if node is None:
            return False
        raw_key = key + RAW_SUFFIX
        if raw_key in node.config:
            self.update_config(node_id, raw_key, "" if value is None else str(value), silent=True)
        return self.update_config(node_id, key, value)

    def _handle_config_mutation(self, node: NodeInstance, key: str, value: Any) -> None:
        if not node.definition.is_ui:
            return
        outputs = node.definition.outputs
        if key.endswith(RAW_SUFFIX):
            base = key[: -len(RAW_SUFFIX)]
            if base in outputs:
                self._propagate_ui_output(node, base, raw_value=value)
        elif key in outputs:
            self._propagate_ui_output(node, key, value=value)

    def _propagate_ui_output(
        self,
        source: NodeInstance,
        port: str,
        value: Any = None,
        raw_value: Any = None,
        connections: Optional[List[Connection]] = None,
    ) -> None:
        """Push a UI node output into the bound controls of connected targets."""
        if connections is None:
            connections = self.connections_from(source.id, port)

        if raw_value is not None:
            raw = str(raw_value)
        else:
            raw = extract_literal_raw(value if value is not None else source.config.get(port, ""))

        for connection in connections:
            target = self.nodes.get(connection.to_node)
            if target is None:
                continue
            control = target.definition.control_for_input(connection.to_port)
            if control is None:
                continue
            self.update_config(target.id, control.key + RAW_SUFFIX, raw, silent=True)
            self.update_config(target.id, control.key, to_powershell_literal(raw))

    def resolve_input_value(self, node_id: str, input_name: str, prefer_raw: bool = False) -> Any:
        """
        Live value of an input as seen by hooks.

        Unwired inputs read the node's own config (through a bound control
        if one exists). Wired inputs read the upstream UI node's config;
        script upstreams have no live value and yield "".
        """
        node = self.nodes.get(node_id)
        if node is None:
            return ""

        connection = self.connection_into(node_id, input_name)
        if connection is None:
            control = node.definition.control_for_input(input_name)
            key = control.key if control is not None else input_name
            raw_key = key + RAW_SUFFIX
            if prefer_raw and raw_key in node.config:
                return node.config[raw_key]
            value = node.config.get(key)
            return "" if value is None else value

        upstream = self.nodes.get(connection.from_node)
        if upstream is None or not upstream.definition.is_ui:
            return ""
        raw_key = connection.from_port + RAW_SUFFIX
        if prefer_raw and raw_key in upstream.config:
            return upstream.config[raw_key]
        value = upstream.config.get(connection.from_port)
        return "" if value is None else value

    # --- Rendering ---

    def render_node(self, node: NodeInstance, container: Any = None) -> RenderHandle:
        """
        (Re)render a node through its definition's render hook.

        The previous handle is disposed first. Hook failures are logged.
        """
        node.dispose()
        hook = node.definition.render
        disposer = None
        if hook is not None:
            if container is None and self.render_container_factory is not None:
                container = self.render_container_factory(node)
            context = HookContext(node=node, graph=self, container=container)
            try:
                disposer = hook(context)
            except Exception as e:
                log.error(e, f"Failed to render node '{node.id}'")
                disposer = None
            if not callable(disposer):
                disposer = None
        handle = RenderHandle(node.id, disposer)
        node.render_handle = handle
        return handle

    def redraw_nodes(self) -> None:
        for node in list(self.nodes.values()):
            self.render_node(node)
