"""PaletteTreeWidget - QTreeWidget view of the PaletteController."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Coroutine, Dict, List, Optional, Tuple

from PyQt6.QtCore import QByteArray, QMimeData, QPoint, Qt
from PyQt6.QtGui import QDrag, QDragMoveEvent, QDropEvent
from PyQt6.QtWidgets import QAbstractItemView, QInputDialog, QMenu, QTreeWidget, QTreeWidgetItem, QWidget

from nodeflow.editor.canvas import DEFINITION_MIME_TYPE
from nodeflow.nodegraph.palette import ROOT_ID, PaletteItem

if TYPE_CHECKING:
    from nodeflow.nodegraph.palette import PaletteController

PALETTE_ITEM_MIME_TYPE = "application/x-nodeflow-palette-item"

ITEM_ID_ROLE = Qt.ItemDataRole.UserRole


class PaletteTreeWidget(QTreeWidget):
    """
    Node catalog.

    - double click on a node places it on the canvas;
    - dragging a node onto the canvas creates it at the drop point;
    - dragging inside the tree reorders items and moves them between folders.
    """

    def __init__(
        self,
        controller: "PaletteController",
        run_async: Callable[[Coroutine[Any, Any, Any]], Any],
        parent: Optional[QWidget] = None,
    ):
        super().__init__(parent)
        self._controller = controller
        self._run_async = run_async
        self._items: Dict[str, QTreeWidgetItem] = {}
        self._rebuilding = False

        self.setHeaderHidden(True)
        self.setDragEnabled(True)
        self.setAcceptDrops(True)
        self.setDropIndicatorShown(True)
        self.setDragDropMode(QAbstractItemView.DragDropMode.DragDrop)
        self.setContextMenuPolicy(Qt.ContextMenuPolicy.CustomContextMenu)

        self.customContextMenuRequested.connect(self._show_context_menu)
        self.itemDoubleClicked.connect(self._on_item_double_clicked)
        self.itemExpanded.connect(lambda item: self._on_expand_changed(item, False))
        self.itemCollapsed.connect(lambda item: self._on_expand_changed(item, True))

        controller.set_on_changed(self.rebuild)
        self.rebuild()

    # --- Model sync ---

    def rebuild(self) -> None:
        """Recreate tree items from the palette tree."""
        self._rebuilding = True
        try:
            self.clear()
            self._items.clear()
            tree = self._controller.tree
            for item, _depth in tree.walk():
                parent_widget = self._items.get(item.parent_id) if item.parent_id != ROOT_ID else None
                widget_item = QTreeWidgetItem([self._item_text(item)])
                widget_item.setData(0, ITEM_ID_ROLE, item.id)
                if parent_widget is None:
                    self.addTopLevelItem(widget_item)
                else:
                    parent_widget.addChild(widget_item)
                self._items[item.id] = widget_item
            for item_id, widget_item in self._items.items():
                item = tree.get(item_id)
                if item is not None and item.is_directory:
                    widget_item.setExpanded(not item.collapsed)
        finally:
            self._rebuilding = False

    def _item_text(self, item: PaletteItem) -> str:
        if item.is_directory:
            return item.name
        definition = self._controller.graph.library.get(item.definition_id)
        return definition.label if definition is not None else item.definition_id

    def _item_id(self, widget_item: Optional[QTreeWidgetItem]) -> Optional[str]:
        if widget_item is None:
            return None
        return widget_item.data(0, ITEM_ID_ROLE)

    def _palette_item(self, widget_item: Optional[QTreeWidgetItem]) -> Optional[PaletteItem]:
        item_id = self._item_id(widget_item)
        return self._controller.tree.get(item_id) if item_id else None

    def _on_expand_changed(self, widget_item: QTreeWidgetItem, collapsed: bool) -> None:
        if self._rebuilding:
            return
        item = self._palette_item(widget_item)
        if item is not None and item.is_directory and item.collapsed != collapsed:
            self._controller.toggle_collapsed(item.id)

    def _on_item_double_clicked(self, widget_item: QTreeWidgetItem, column: int) -> None:
        item = self._palette_item(widget_item)
        if item is not None and not item.is_directory:
            self._controller.instantiate(item.definition_id)

    # --- Drag and drop ---

    def startDrag(self, supported_actions) -> None:
        item = self._palette_item(self.currentItem())
        if item is None or not self._controller.begin_drag(item.id):
            return
        mime = QMimeData()
        mime.setData(PALETTE_ITEM_MIME_TYPE, QByteArray(item.id.encode("utf-8")))
        if not item.is_directory:
            mime.setData(DEFINITION_MIME_TYPE, QByteArray(item.definition_id.encode("utf-8")))
        drag = QDrag(self)
        drag.setMimeData(mime)
        drag.exec(Qt.DropAction.CopyAction | Qt.DropAction.MoveAction)
        # Drag ended outside the tree (or was rejected)
        self._controller.cancel_drag()

    def dragEnterEvent(self, event) -> None:
        if event.mimeData().hasFormat(PALETTE_ITEM_MIME_TYPE) and event.source() is self:
            event.acceptProposedAction()
            return
        event.ignore()

    def dragMoveEvent(self, event: QDragMoveEvent) -> None:
        if event.source() is not self:
            event.ignore()
            return
        pos = event.position().toPoint()
        widget_item = self.itemAt(pos)
        if widget_item is not None:
            rect = self.visualItemRect(widget_item)
            target = self._controller.drag_over_item(
                self._item_id(widget_item), pos.y(), rect.top(), rect.height()
            )
        else:
            target = self._controller.drag_over_container(ROOT_ID, pos.y(), self._top_level_spans())
        if target is not None:
            event.acceptProposedAction()
        else:
            event.ignore()

    def _top_level_spans(self) -> List[Tuple[float, float]]:
        spans = []
        for i in range(self.topLevelItemCount()):
            rect = self.visualItemRect(self.topLevelItem(i))
            spans.append((float(rect.top()), float(rect.height())))
        return spans

    def dropEvent(self, event: QDropEvent) -> None:
        if event.source() is not self:
            event.ignore()
            return
        moved = self._controller.drop()
        event.setDropAction(Qt.DropAction.MoveAction if moved else Qt.DropAction.IgnoreAction)
        event.accept()

    # --- Context menu ---

    def _show_context_menu(self, pos: QPoint) -> None:
        item = self._palette_item(self.itemAt(pos))
        menu = QMenu(self)
        parent_id = ROOT_ID
        if item is not None and item.is_directory:
            parent_id = item.id
        elif item is not None and item.parent_id:
            parent_id = item.parent_id

        menu.addAction("New Folder", lambda: self._controller.prompt_create_directory(parent_id))

        if item is not None and item.is_directory:
            menu.addAction("Rename...", lambda: self._rename(item))
            menu.addSeparator()
            menu.addAction("Delete Folder", lambda: self._run_async(self._controller.remove_directory(item.id)))
        elif item is not None:
            menu.addAction("Add to Canvas", lambda: self._controller.instantiate(item.definition_id))
            if self._controller.on_duplicate is not None:
                menu.addAction("Duplicate", lambda: self._run_async(self._controller.duplicate_node(item.id)))
            menu.addSeparator()
            menu.addAction("Delete", lambda: self._run_async(self._controller.remove_node(item.id)))

        menu.exec(self.viewport().mapToGlobal(pos))

    def _rename(self, item: PaletteItem) -> None:
        name, ok = QInputDialog.getText(self, "Rename Folder", "Name:", text=item.name)
        if ok:
            self._controller.rename_directory(item.id, name)
