"""FlowEditor - headless editor facade.

Wires graph, viewport, interaction, palette, auto-execution and
persistence together and exposes the export/run pipeline. The Qt window
is a thin shell around one FlowEditor.
"""

from __future__ import annotations

import inspect
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Union

from nodeflow import log
from nodeflow.nodegraph.auto_exec import AutoExecutor
from nodeflow.nodegraph.compiler import generate_script
from nodeflow.nodegraph.config import EditorConfig
from nodeflow.nodegraph.definition import NodeDefinition
from nodeflow.nodegraph.geometry import Viewport
from nodeflow.nodegraph.graph import NodeGraph
from nodeflow.nodegraph.graph_data import NodeInstance
from nodeflow.nodegraph.interaction import InteractionController
from nodeflow.nodegraph.layout import NodeLayout
from nodeflow.nodegraph.palette import DuplicateCallback, PaletteController, RemoveCallback
from nodeflow.nodegraph.persistence import MemoryStore, PersistenceStore
from nodeflow.nodegraph.serialization import GraphAutosave, deserialize_graph, serialize_graph

ScriptConsumer = Callable[[str], Any]


async def _resolve(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class FlowEditor:
    """
    Editor core without any UI toolkit.

    Export and run never raise: failures are logged, passed to `on_error`
    and the call returns None.
    """

    def __init__(
        self,
        library: Iterable[NodeDefinition] = (),
        store: Optional[PersistenceStore] = None,
        config: Optional[EditorConfig] = None,
        on_generate_script: Optional[ScriptConsumer] = None,
        on_run_script: Optional[ScriptConsumer] = None,
        on_error: Optional[Callable[[str], None]] = None,
        on_duplicate_palette_node: Optional[DuplicateCallback] = None,
        on_remove_palette_node: Optional[RemoveCallback] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        prompt: Optional[Callable[[str, str], Optional[str]]] = None,
        on_changed: Optional[Callable[[], None]] = None,
    ):
        self.config = config or EditorConfig()
        self.store = store if store is not None else MemoryStore()
        self.on_generate_script = on_generate_script
        self.on_run_script = on_run_script
        self.on_error = on_error

        self.graph = NodeGraph(library)
        self.viewport = Viewport(min_scale=self.config.min_scale, max_scale=self.config.max_scale)
        self.layout = NodeLayout(port_radius=self.config.handle_radius)
        self.interaction = InteractionController(
            self.graph,
            self.viewport,
            layout=self.layout,
            config=self.config,
            on_changed=on_changed,
        )
        self.auto = AutoExecutor(self.graph)
        self.palette = PaletteController(
            self.graph,
            store=self.store,
            interaction=self.interaction,
            on_duplicate=on_duplicate_palette_node,
            on_remove=on_remove_palette_node,
            confirm=confirm,
            prompt=prompt,
        )
        self.autosave = GraphAutosave(self.store)

    # --- Library ---

    def set_library(self, definitions: Iterable[NodeDefinition], persist: bool = True) -> bool:
        return self.graph.set_library(definitions, persist)

    def add_node_from_palette(self, definition_id: str) -> Optional[NodeInstance]:
        return self.palette.instantiate(definition_id)

    # --- Script pipeline ---

    def generate_script(self, timestamp: Optional[datetime] = None) -> str:
        """Compile the current state without running auto-execution."""
        return generate_script(self.graph, timestamp)

    async def prepare_script(self) -> str:
        """Run the auto-execution chain, then compile."""
        await self.auto.run_chain()
        return self.generate_script()

    async def export_script(self) -> Optional[str]:
        try:
            script = await self.prepare_script()
            if self.on_generate_script is not None:
                await _resolve(self.on_generate_script(script))
            return script
        except Exception as e:
            self._report(e, "Script export failed")
            return None

    async def run_script(self) -> Optional[str]:
        """Like export, but hands the script to the run consumer."""
        if self.on_run_script is None:
            return await self.export_script()
        try:
            script = await self.prepare_script()
            await _resolve(self.on_run_script(script))
            return script
        except Exception as e:
            self._report(e, "Script run failed")
            return None

    def export_to_file(self, path: Union[str, Path], script: Optional[str] = None) -> Path:
        path = Path(path)
        text = script if script is not None else self.generate_script()
        path.write_text(text, encoding="utf-8")
        log.info(f"Script written to {path}")
        return path

    def _report(self, exc: BaseException, context: str) -> None:
        log.error(exc, context)
        if self.on_error is not None:
            self.on_error(str(exc))

    # --- Persistence ---

    def graph_data(self) -> dict:
        return serialize_graph(self.graph)

    def load_graph_data(self, data: dict) -> Dict[str, int]:
        return deserialize_graph(data, self.graph)

    def persist_graph(self) -> bool:
        """Save an autosave snapshot. The graph is clean afterwards unless saving failed."""
        snapshot = serialize_graph(self.graph)
        try:
            saved = self.autosave.save(snapshot)
        except Exception as e:
            log.error(e, "Failed to persist graph")
            return False
        if saved:
            self.graph.clear_dirty()
        return saved

    def autosave_if_dirty(self) -> bool:
        if not self.config.autosave or not self.graph.dirty:
            return False
        return self.persist_graph()

    def restore_graph(self) -> bool:
        try:
            data = self.autosave.load()
        except Exception as e:
            log.warn(e, "Failed to load autosaved graph")
            return False
        if not data:
            return False
        stats = deserialize_graph(data, self.graph)
        log.info(f"Restored {stats['nodes']} node(s) and {stats['connections']} connection(s)")
        return True

    def clear_graph(self, clear_storage: bool = True) -> None:
        """Remove everything. With `clear_storage` the autosave is dropped too."""
        self.graph.clear(mark_dirty=not clear_storage)
        if clear_storage:
            try:
                self.autosave.clear()
            except Exception as e:
                log.warn(e, "Failed to clear autosaved graph")
