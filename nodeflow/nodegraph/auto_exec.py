"""Auto-execution chain - runs side-effecting node hooks before codegen.

Hooks are coroutines (or plain callables) that usually fetch live data
and write it back through HookContext.update_config. Everything runs on
one event loop; collected nodes are awaited one by one in topological
order, never concurrently.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Set

from nodeflow import log
from nodeflow.nodegraph.compiler import topological_sort
from nodeflow.nodegraph.literals import to_powershell_literal

if TYPE_CHECKING:
    from nodeflow.nodegraph.graph import NodeGraph
    from nodeflow.nodegraph.graph_data import NodeInstance


@dataclass
class HookContext:
    """Everything a render or auto-execute hook may touch."""
    node: "NodeInstance"
    graph: "NodeGraph"
    container: Any = None

    def update_config(
        self,
        key: str,
        value: Any,
        silent: bool = False,
        display_value: Optional[str] = None,
    ) -> bool:
        return self.graph.update_config(self.node.id, key, value, silent, display_value)

    def resolve_input(self, input_name: str, prefer_raw: bool = False) -> Any:
        return self.graph.resolve_input_value(self.node.id, input_name, prefer_raw)

    async def ensure_auto_nodes(self, ports: Optional[Iterable[str]] = None) -> None:
        executor = self.graph.auto_executor
        if executor is not None:
            await executor.ensure_auto_nodes(self.node.id, ports)

    async def run_auto(self, include_upstream: bool = True) -> Any:
        executor = self.graph.auto_executor
        if executor is None:
            return None
        return await executor.run_auto_node(self.node.id, include_upstream)

    @staticmethod
    def to_literal(value: Any) -> str:
        return to_powershell_literal(value)


class AutoExecutor:
    """
    Runs auto-execute hooks with in-flight memoisation.

    Outside a chain pass, a finished node can be triggered again. Inside
    run_chain() every node runs at most once; later triggers reuse the
    same result until the pass ends. A failure aborts the pass, config
    written by nodes that already finished stays as is.
    """

    def __init__(self, graph: "NodeGraph"):
        self.graph = graph
        graph.auto_executor = self
        self._pending: Dict[str, asyncio.Future] = {}
        self._pass_depth = 0

    @property
    def in_pass(self) -> bool:
        return self._pass_depth > 0

    def collect_upstream_auto_nodes(
        self,
        node_id: str,
        ports: Optional[Iterable[str]] = None,
    ) -> List[str]:
        """
        Breadth-first walk over upstream connections.

        Args:
            node_id: Node to start from (not included in the result).
            ports: Restrict the first hop to these input ports.

        Returns:
            Ids of upstream nodes that expose an auto-execute hook.
        """
        visited: Set[str] = {node_id}
        result: List[str] = []
        queue = [node_id]

        while queue:
            current = queue.pop(0)
            hop_ports = ports if current == node_id else None
            for upstream_id in self.graph.upstream_node_ids(current, hop_ports):
                if upstream_id in visited:
                    continue
                visited.add(upstream_id)
                upstream = self.graph.nodes.get(upstream_id)
                if upstream is None:
                    continue
                if upstream.definition.has_auto_execute:
                    result.append(upstream_id)
                queue.append(upstream_id)
        return result

    def _ordered(self, node_ids: Iterable[str]) -> List[str]:
        wanted = set(node_ids)
        order = topological_sort(self.graph.nodes.keys(), self.graph.connections)
        return [node_id for node_id in order if node_id in wanted]

    async def execute(self, node_id: str) -> Any:
        """Run one node's hook, joining an in-flight run if there is one."""
        future = self._pending.get(node_id)
        if future is not None:
            return await future

        node = self.graph.nodes.get(node_id)
        if node is None or not node.definition.has_auto_execute:
            return None

        future = asyncio.ensure_future(self._invoke(node))
        self._pending[node_id] = future
        try:
            return await future
        finally:
            if not self.in_pass and self._pending.get(node_id) is future:
                del self._pending[node_id]

    async def _invoke(self, node: "NodeInstance") -> Any:
        log.debug(f"Auto-executing node '{node.id}'")
        context = HookContext(node=node, graph=self.graph)
        result = node.definition.auto_execute(context)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def ensure_auto_nodes(self, node_id: str, ports: Optional[Iterable[str]] = None) -> None:
        """Run every upstream auto node of `node_id`, dependencies first."""
        for upstream_id in self._ordered(self.collect_upstream_auto_nodes(node_id, ports)):
            await self.execute(upstream_id)

    async def run_auto_node(self, node_id: str, include_upstream: bool = True) -> Any:
        if include_upstream:
            await self.ensure_auto_nodes(node_id)
        return await self.execute(node_id)

    def chain_entries(self) -> List[str]:
        return [node.id for node in self.graph.nodes.values() if node.definition.is_chain_entry]

    async def run_chain(self) -> List[str]:
        """
        Pre-export pass over every chain entry and its upstream auto nodes.

        Returns:
            Ids of the nodes that were run, in execution order.
        """
        entries = self.chain_entries()
        if not entries:
            return []

        collected: Set[str] = set()
        for entry in entries:
            collected.update(self.collect_upstream_auto_nodes(entry))
            collected.add(entry)
        order = self._ordered(collected)

        self._pass_depth += 1
        try:
            for node_id in order:
                await self.execute(node_id)
        finally:
            self._pass_depth -= 1
            if self._pass_depth == 0:
                self._pending = {k: f for k, f in self._pending.items() if not f.done()}
        return order
