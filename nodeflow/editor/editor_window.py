"""FlowEditorWindow - main window of the NodeFlow editor."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Coroutine, List, Optional, Set

from PyQt6.QtCore import Qt, QTimer
from PyQt6.QtGui import QAction, QKeySequence
from PyQt6.QtWidgets import (
    QFileDialog,
    QInputDialog,
    QLabel,
    QMainWindow,
    QMessageBox,
    QPlainTextEdit,
    QSplitter,
    QStatusBar,
    QToolBar,
    QWidget,
)

from nodeflow import log
from nodeflow.editor.canvas import NodeCanvas
from nodeflow.editor.palette_widget import PaletteTreeWidget
from nodeflow.editor.properties import NodePropertiesPanel
from nodeflow.editor.settings import EditorSettings
from nodeflow.nodegraph.bridge import RunResult, ScriptRunner
from nodeflow.nodegraph.builtin import builtin_definitions
from nodeflow.nodegraph.config import EditorConfig
from nodeflow.nodegraph.definition import NodeDefinition
from nodeflow.nodegraph.flow_editor import FlowEditor
from nodeflow.nodegraph.library import CustomNodeStore, spec_to_definition
from nodeflow.nodegraph.palette import RemoveResult
from nodeflow.nodegraph.persistence import JsonFileStore, PersistenceStore


class FlowEditorWindow(QMainWindow):
    """
    Visual editor for PowerShell flows.

    Left: node palette. Center: canvas. Right: properties of the selected
    node and the output of the last run.
    """

    AUTOSAVE_INTERVAL_MS = 2000
    ASYNC_PUMP_INTERVAL_MS = 15
    GRAPH_FILE_FILTER = "NodeFlow Graph (*.nodeflow.json);;JSON (*.json);;All Files (*)"
    SCRIPT_FILE_FILTER = "PowerShell Script (*.ps1);;All Files (*)"

    def __init__(
        self,
        config: Optional[EditorConfig] = None,
        store: Optional[PersistenceStore] = None,
        settings: Optional[EditorSettings] = None,
        parent: Optional[QWidget] = None,
    ):
        super().__init__(parent)

        self._settings = settings or EditorSettings.instance()
        self._config = config or self._settings.load_config()
        if store is None:
            store = JsonFileStore(self._settings.storage_dir(self._config))
        self._custom_nodes = CustomNodeStore(store)
        self._runner = ScriptRunner(self._config.server_url, self._config.request_timeout)
        self._loop = asyncio.new_event_loop()
        self._tasks: Set[asyncio.Task] = set()
        self._async_timer = QTimer(self)
        self._async_timer.setInterval(self.ASYNC_PUMP_INTERVAL_MS)
        self._async_timer.timeout.connect(self._pump_async)

        self.editor = FlowEditor(
            library=self._library_definitions(),
            store=store,
            config=self._config,
            on_generate_script=self._save_script,
            on_run_script=self._run_on_host,
            on_error=self._show_error,
            on_duplicate_palette_node=self._duplicate_definition,
            on_remove_palette_node=self._remove_definitions,
            confirm=self._confirm,
            prompt=self._prompt,
        )

        self.setWindowTitle("NodeFlow")
        self.setMinimumSize(800, 600)
        self.resize(1280, 800)

        self._setup_ui()
        self._setup_toolbar()

        self.editor.palette.load()
        if self.editor.restore_graph():
            self._status_bar.showMessage("Restored previous session")

        self._autosave_timer = QTimer(self)
        self._autosave_timer.setInterval(self.AUTOSAVE_INTERVAL_MS)
        self._autosave_timer.timeout.connect(self.editor.autosave_if_dirty)
        self._autosave_timer.start()

        self._restore_window_state()

    def _library_definitions(self) -> List[NodeDefinition]:
        definitions = builtin_definitions()
        taken = {d.id for d in definitions}
        for definition in self._custom_nodes.definitions():
            if definition.id not in taken:
                definitions.append(definition)
        return definitions

    def _setup_ui(self) -> None:
        """Setup the main UI."""
        self._splitter = QSplitter(Qt.Orientation.Horizontal)
        self.setCentralWidget(self._splitter)

        self._palette = PaletteTreeWidget(self.editor.palette, self.run_async)
        self._canvas = NodeCanvas(self.editor)
        self._canvas.node_activated.connect(lambda _node_id: self._properties.setFocus())

        right = QSplitter(Qt.Orientation.Vertical)
        self._properties = NodePropertiesPanel(self.editor.graph)
        self._properties.run_requested.connect(self._run_node)
        self._output = QPlainTextEdit()
        self._output.setReadOnly(True)
        self._output.setPlaceholderText("Script output")
        right.addWidget(self._properties)
        right.addWidget(self._output)

        self._splitter.addWidget(self._palette)
        self._splitter.addWidget(self._canvas)
        self._splitter.addWidget(right)
        self._splitter.setStretchFactor(1, 1)
        self._splitter.setSizes([220, 800, 260])

        self._status_bar = QStatusBar()
        self.setStatusBar(self._status_bar)
        self._status_bar.showMessage(
            "Drag nodes from the palette. Right-click for menu. Middle-mouse or Space to pan. Scroll to zoom."
        )

    def _setup_toolbar(self) -> None:
        """Setup the toolbar."""
        toolbar = QToolBar("Main")
        toolbar.setMovable(False)
        self.addToolBar(toolbar)

        save_action = QAction("Save", self)
        save_action.setShortcut(QKeySequence.StandardKey.Save)
        save_action.triggered.connect(self._save_graph)
        toolbar.addAction(save_action)

        load_action = QAction("Load", self)
        load_action.setShortcut(QKeySequence.StandardKey.Open)
        load_action.triggered.connect(self._load_graph)
        toolbar.addAction(load_action)

        toolbar.addSeparator()

        fit_action = QAction("Fit View", self)
        fit_action.triggered.connect(self._canvas.fit_in_view)
        toolbar.addAction(fit_action)

        clear_action = QAction("Clear", self)
        clear_action.triggered.connect(self._clear_graph)
        toolbar.addAction(clear_action)

        new_folder_action = QAction("New Folder", self)
        new_folder_action.triggered.connect(lambda: self.editor.palette.prompt_create_directory())
        toolbar.addAction(new_folder_action)

        toolbar.addSeparator()

        export_action = QAction("Export Script", self)
        export_action.setShortcut(QKeySequence("Ctrl+Return"))
        export_action.triggered.connect(lambda: self.run_async(self.editor.export_script()))
        toolbar.addAction(export_action)

        run_action = QAction("Run", self)
        run_action.setShortcut(QKeySequence("F5"))
        run_action.triggered.connect(lambda: self.run_async(self.editor.run_script()))
        toolbar.addAction(run_action)

        toolbar.addSeparator()

        self._server_label = QLabel(f"Host: {self._runner.server_url}")
        toolbar.addWidget(self._server_label)

    # --- Async ---

    def run_async(self, coroutine: Coroutine[Any, Any, Any]) -> "asyncio.Task":
        """
        Schedule a coroutine on the window's event loop.

        The loop runs on the GUI thread and is pumped by a QTimer while
        tasks are pending, so the UI stays responsive. Blocking work
        (HTTP requests) is moved to worker threads by the callee.
        """
        task = self._loop.create_task(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        if not self._async_timer.isActive():
            self._async_timer.start()
        return task

    def _pump_async(self) -> None:
        # Re-entered from modal dialogs opened by a running task
        if self._loop.is_running():
            return
        self._loop.call_soon(self._loop.stop)
        self._loop.run_forever()
        if not self._tasks:
            self._async_timer.stop()

    def _on_task_done(self, task: "asyncio.Task") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error(exc, "Background task failed")

    def _run_node(self, node_id: str) -> None:
        self.run_async(self._execute_node(node_id))

    async def _execute_node(self, node_id: str) -> None:
        self._status_bar.showMessage(f"Executing: {node_id}...")
        try:
            await self.editor.auto.run_auto_node(node_id)
        except Exception as e:
            log.error(e, f"Auto-execution of '{node_id}' failed")
            self._show_error(str(e))
            return
        self._status_bar.showMessage(f"Executed: {node_id}")

    # --- Callbacks ---

    def _save_script(self, script: str) -> None:
        start = self._settings.get_last_script_path()
        dialog = QFileDialog(self, "Export PowerShell Script")
        dialog.setAcceptMode(QFileDialog.AcceptMode.AcceptSave)
        dialog.setNameFilter(self.SCRIPT_FILE_FILTER)
        dialog.setDefaultSuffix("ps1")
        dialog.setOption(QFileDialog.Option.DontUseNativeDialog, True)
        if start is not None:
            dialog.setDirectory(str(start.parent))

        if dialog.exec() != QFileDialog.DialogCode.Accepted:
            return
        file_path = dialog.selectedFiles()[0]
        if not file_path:
            return

        path = self.editor.export_to_file(file_path, script)
        self._settings.set_last_script_path(path)
        self._status_bar.showMessage(f"Exported: {path}")

    async def _run_on_host(self, script: str) -> RunResult:
        self._status_bar.showMessage(f"Running on {self._runner.server_url}...")
        result = await self._runner.run_async(script)
        text = result.output
        if result.errors:
            text += "\n" + "\n".join(result.errors)
        self._output.setPlainText(text.strip())
        self._status_bar.showMessage("Run finished with errors" if result.has_errors else "Run finished")
        return result

    def _show_error(self, message: str) -> None:
        self._status_bar.showMessage(f"Error: {message}")
        QMessageBox.warning(self, "NodeFlow", message)

    def _confirm(self, message: str) -> bool:
        answer = QMessageBox.question(self, "NodeFlow", message)
        return answer == QMessageBox.StandardButton.Yes

    def _prompt(self, title: str, default: str) -> Optional[str]:
        text, ok = QInputDialog.getText(self, "NodeFlow", title, text=default)
        return text if ok else None

    def _duplicate_definition(self, definition: NodeDefinition) -> Optional[NodeDefinition]:
        """Only user-authored nodes can be duplicated; the copy is stored immediately."""
        if definition.spec_id is None or self._custom_nodes.get_spec(definition.spec_id) is None:
            self._status_bar.showMessage(f"'{definition.label}' is built in and cannot be duplicated")
            return None
        spec = self._custom_nodes.duplicate_spec(definition.spec_id)
        return spec_to_definition(spec) if spec is not None else None

    def _remove_definitions(self, definition_ids: List[str], skip_confirm: bool) -> RemoveResult:
        if not skip_confirm:
            noun = "node definition" if len(definition_ids) == 1 else "node definitions"
            if not self._confirm(f"Delete {len(definition_ids)} {noun}?"):
                return RemoveResult(cancelled=True)
        for definition_id in definition_ids:
            if self._custom_nodes.get_spec(definition_id) is not None:
                self._custom_nodes.delete_spec(definition_id)
        return RemoveResult(removed_ids=list(definition_ids))

    # --- Graph files ---

    def _clear_graph(self) -> None:
        """Clear the graph."""
        if self.editor.graph.nodes and not self._confirm("Remove all nodes from the canvas?"):
            return
        self.editor.clear_graph()
        self._status_bar.showMessage("Graph cleared")

    def _save_graph(self) -> None:
        """Save the graph to a JSON file."""
        dialog = QFileDialog(self, "Save Flow")
        dialog.setAcceptMode(QFileDialog.AcceptMode.AcceptSave)
        dialog.setNameFilter(self.GRAPH_FILE_FILTER)
        dialog.setDefaultSuffix("nodeflow.json")
        dialog.setOption(QFileDialog.Option.DontUseNativeDialog, True)

        if dialog.exec() != QFileDialog.DialogCode.Accepted:
            return
        file_path = dialog.selectedFiles()[0]
        if not file_path:
            return

        try:
            with open(file_path, "w", encoding="utf-8") as f:
                json.dump(self.editor.graph_data(), f, indent=2)
            self._settings.set_last_graph_path(file_path)
            self._status_bar.showMessage(f"Saved: {file_path}")
        except Exception as e:
            log.error(e, "Save failed")
            self._status_bar.showMessage(f"Save failed: {e}")

    def _load_graph(self) -> None:
        """Load a graph from a JSON file."""
        dialog = QFileDialog(self, "Load Flow")
        dialog.setAcceptMode(QFileDialog.AcceptMode.AcceptOpen)
        dialog.setNameFilter(self.GRAPH_FILE_FILTER)
        dialog.setOption(QFileDialog.Option.DontUseNativeDialog, True)
        last = self._settings.get_last_graph_path()
        if last is not None:
            dialog.setDirectory(str(last.parent))

        if dialog.exec() != QFileDialog.DialogCode.Accepted:
            return
        file_path = dialog.selectedFiles()[0]
        if not file_path:
            return
        self.load_graph_file(file_path)

    def load_graph_file(self, file_path: str | Path) -> bool:
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            stats = self.editor.load_graph_data(data)
        except Exception as e:
            log.error(e, "Load failed")
            self._status_bar.showMessage(f"Load failed: {e}")
            return False
        self.editor.graph.mark_dirty()
        self._settings.set_last_graph_path(file_path)
        self._canvas.fit_in_view()
        message = f"Loaded: {file_path}"
        if stats.get("skipped_nodes") or stats.get("skipped_connections"):
            message += f" ({stats.get('skipped_nodes', 0)} node(s), {stats.get('skipped_connections', 0)} connection(s) skipped)"
        self._status_bar.showMessage(message)
        return True

    # --- Window state ---

    def _restore_window_state(self) -> None:
        geometry = self._settings.get_window_geometry()
        if geometry:
            self.restoreGeometry(geometry)
        state = self._settings.get_window_state()
        if state:
            self.restoreState(state)
        sizes = self._settings.get_splitter_sizes()
        if sizes and len(sizes) == self._splitter.count():
            self._splitter.setSizes(sizes)

    def closeEvent(self, event) -> None:
        self._autosave_timer.stop()
        self.editor.autosave_if_dirty()
        self._settings.set_window_geometry(self.saveGeometry())
        self._settings.set_window_state(self.saveState())
        self._settings.set_splitter_sizes(self._splitter.sizes())
        self._settings.sync()
        self._shutdown_loop()
        super().closeEvent(event)

    def _shutdown_loop(self) -> None:
        self._async_timer.stop()
        if self._loop.is_running():
            return
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            self._loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        self._loop.close()
