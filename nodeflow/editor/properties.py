"""NodePropertiesPanel - editor widgets for the controls of the selected node."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from PyQt6.QtCore import pyqtSignal
from PyQt6.QtWidgets import (
    QButtonGroup,
    QCheckBox,
    QComboBox,
    QFileDialog,
    QFormLayout,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QPushButton,
    QRadioButton,
    QVBoxLayout,
    QWidget,
)

from nodeflow.nodegraph.definition import ControlKind, ControlSpec
from nodeflow.nodegraph.literals import to_boolean

if TYPE_CHECKING:
    from nodeflow.nodegraph.graph import NodeGraph
    from nodeflow.nodegraph.graph_data import NodeInstance


class NodePropertiesPanel(QWidget):
    """
    Shows the controls of the single selected node.

    Edits go through NodeGraph.set_control_value, so UI nodes push the
    new value to their downstream inputs immediately.
    """

    run_requested = pyqtSignal(str)

    REBUILD_EVENTS = ("selection", "nodes", "library", "cleared", "config")

    def __init__(self, graph: "NodeGraph", parent: Optional[QWidget] = None):
        super().__init__(parent)
        self._graph = graph
        self._node_id: Optional[str] = None
        self._editing = False
        self._radio_groups = []

        self._layout = QVBoxLayout(self)
        self._layout.setContentsMargins(6, 6, 6, 6)

        self._title = QLabel("No node selected")
        self._title.setStyleSheet("font-weight: bold;")
        self._layout.addWidget(self._title)

        self._description = QLabel("")
        self._description.setWordWrap(True)
        self._layout.addWidget(self._description)

        self._form_host = QWidget()
        self._form = QFormLayout(self._form_host)
        self._form.setContentsMargins(0, 0, 0, 0)
        self._layout.addWidget(self._form_host)

        self._run_button = QPushButton("Run")
        self._run_button.clicked.connect(self._on_run_clicked)
        self._run_button.setVisible(False)
        self._layout.addWidget(self._run_button)
        self._layout.addStretch(1)

        graph.add_listener(self._on_graph_event)
        self.refresh()

    @property
    def node(self) -> Optional["NodeInstance"]:
        if self._node_id is None:
            return None
        return self._graph.get_node(self._node_id)

    def _on_graph_event(self, event: str) -> None:
        if event == "config" and self._editing:
            return
        if event in self.REBUILD_EVENTS:
            self.refresh()

    def _selected_node_id(self) -> Optional[str]:
        selected = self._graph.selection.nodes
        if len(selected) != 1:
            return None
        return next(iter(selected))

    def refresh(self) -> None:
        """Rebuild the form for the current selection."""
        self._node_id = self._selected_node_id()
        while self._form.rowCount():
            self._form.removeRow(0)
        self._radio_groups.clear()

        node = self.node
        if node is None:
            self._title.setText("No node selected")
            self._description.setText("")
            self._run_button.setVisible(False)
            return

        definition = node.definition
        self._title.setText(f"{definition.label}  ({node.id})")
        self._description.setText(definition.description)
        self._description.setVisible(bool(definition.description))
        for control in definition.controls:
            self._form.addRow(control.display_label, self._create_control_widget(node, control))
        self._run_button.setVisible(definition.has_auto_execute)

    def _create_control_widget(self, node: "NodeInstance", control: ControlSpec) -> QWidget:
        """Create widget for a control."""
        current = node.config.get(control.key, control.initial_value)
        key = control.key

        match control.kind:
            case ControlKind.TEXT_BOX:
                widget = QLineEdit()
                widget.setText("" if current is None else str(current))
                widget.setPlaceholderText(control.placeholder)
                widget.editingFinished.connect(lambda w=widget: self._apply(key, w.text()))
                return widget

            case ControlKind.REFERENCE:
                host = QWidget()
                row = QHBoxLayout(host)
                row.setContentsMargins(0, 0, 0, 0)
                edit = QLineEdit()
                edit.setText("" if current is None else str(current))
                edit.setPlaceholderText(control.placeholder)
                edit.editingFinished.connect(lambda: self._apply(key, edit.text()))
                browse = QPushButton("...")
                browse.setFixedWidth(28)
                browse.clicked.connect(lambda: self._browse(key, edit))
                row.addWidget(edit)
                row.addWidget(browse)
                return host

            case ControlKind.CHECK_BOX:
                widget = QCheckBox()
                widget.setChecked(to_boolean(current))
                widget.toggled.connect(lambda checked: self._apply(key, checked))
                return widget

            case ControlKind.RADIO_BUTTON:
                host = QWidget()
                row = QHBoxLayout(host)
                row.setContentsMargins(0, 0, 0, 0)
                group = QButtonGroup(host)
                for option in control.options:
                    button = QRadioButton(option)
                    button.setChecked(option == str(current))
                    group.addButton(button)
                    row.addWidget(button)
                group.buttonToggled.connect(lambda button, checked: self._on_radio_toggled(key, button, checked))
                self._radio_groups.append(group)
                return host

            case ControlKind.SELECT_BOX:
                widget = QComboBox()
                widget.addItems(list(control.options))
                if str(current) in control.options:
                    widget.setCurrentText(str(current))
                widget.currentTextChanged.connect(lambda text: self._apply(key, text))
                return widget

    def _on_radio_toggled(self, key: str, button: QRadioButton, checked: bool) -> None:
        if checked:
            self._apply(key, button.text())

    def _browse(self, key: str, edit: QLineEdit) -> None:
        dialog = QFileDialog(self, "Select file")
        dialog.setOption(QFileDialog.Option.DontUseNativeDialog, True)
        if dialog.exec() != QFileDialog.DialogCode.Accepted:
            return
        files = dialog.selectedFiles()
        if files:
            edit.setText(files[0])
            self._apply(key, files[0])

    def _apply(self, key: str, value: Any) -> None:
        if self._node_id is None:
            return
        self._editing = True
        try:
            self._graph.set_control_value(self._node_id, key, value)
        finally:
            self._editing = False

    def _on_run_clicked(self) -> None:
        if self._node_id is not None:
            self.run_requested.emit(self._node_id)

    def sizeHint(self):
        hint = super().sizeHint()
        hint.setWidth(max(hint.width(), 240))
        return hint
