"""NodeCanvas - QWidget that paints the graph and feeds input to the InteractionController."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from PyQt6.QtCore import QPointF, QRectF, Qt, pyqtSignal
from PyQt6.QtGui import (
    QBrush,
    QColor,
    QDragEnterEvent,
    QDropEvent,
    QFont,
    QKeyEvent,
    QMouseEvent,
    QPainter,
    QPainterPath,
    QPen,
    QWheelEvent,
)
from PyQt6.QtWidgets import QMenu, QSizePolicy, QWidget

from nodeflow import log
from nodeflow.nodegraph.geometry import Point, Rect, bounding_rect
from nodeflow.nodegraph.graph import GraphError
from nodeflow.nodegraph.interaction import PointerButton, PointerEvent
from nodeflow.nodegraph.layout import NodeLayout, PortRef, curve_control_points

if TYPE_CHECKING:
    from nodeflow.nodegraph.flow_editor import FlowEditor
    from nodeflow.nodegraph.graph_data import NodeInstance

DEFINITION_MIME_TYPE = "application/x-nodeflow-definition"

_BUTTONS = {
    Qt.MouseButton.LeftButton: PointerButton.LEFT,
    Qt.MouseButton.MiddleButton: PointerButton.MIDDLE,
    Qt.MouseButton.RightButton: PointerButton.RIGHT,
}

_KEYS = {
    Qt.Key.Key_Space: "Space",
    Qt.Key.Key_Escape: "Escape",
    Qt.Key.Key_Delete: "Delete",
    Qt.Key.Key_Backspace: "Backspace",
}


def _pointer_event(event: QMouseEvent) -> PointerEvent:
    pos = event.position()
    modifiers = event.modifiers()
    return PointerEvent(
        x=pos.x(),
        y=pos.y(),
        button=_BUTTONS.get(event.button(), PointerButton.LEFT),
        shift=bool(modifiers & Qt.KeyboardModifier.ShiftModifier),
        ctrl=bool(modifiers & Qt.KeyboardModifier.ControlModifier),
        meta=bool(modifiers & Qt.KeyboardModifier.MetaModifier),
    )


def _qrect(rect: Rect) -> QRectF:
    return QRectF(rect.left, rect.top, rect.width, rect.height)


def _curve_path(start: Point, end: Point) -> QPainterPath:
    control = curve_control_points(start, end)
    path = QPainterPath(QPointF(*control[0]))
    path.cubicTo(QPointF(*control[1]), QPointF(*control[2]), QPointF(*control[3]))
    return path


class NodeCanvas(QWidget):
    """
    Canvas for a FlowEditor.

    All geometry comes from the editor's viewport and layout; the widget
    only translates Qt events and paints.
    """

    node_activated = pyqtSignal(str)

    GRID_STEP = 40
    CORNER_RADIUS = 6
    LINE_WIDTH = 2.5

    COLOR_BACKGROUND = QColor(32, 32, 38)
    COLOR_GRID = QColor(42, 42, 50)
    COLOR_TITLE_BG = QColor(60, 60, 80)
    COLOR_TITLE_BG_UI = QColor(50, 80, 70)
    COLOR_BODY_BG = QColor(45, 45, 55)
    COLOR_BORDER = QColor(30, 30, 35)
    COLOR_BORDER_SELECTED = QColor(255, 180, 50)
    COLOR_BORDER_PREVIEW = QColor(255, 210, 120)
    COLOR_TITLE_TEXT = QColor(220, 220, 220)
    COLOR_PARAM_TEXT = QColor(160, 160, 170)
    COLOR_CONNECTION = QColor(150, 150, 150)
    COLOR_SELECTED = QColor(255, 180, 50)
    COLOR_PORT_INPUT = QColor(100, 180, 255)
    COLOR_PORT_OUTPUT = QColor(120, 220, 120)
    COLOR_MARQUEE_FILL = QColor(255, 180, 50, 40)

    def __init__(self, editor: "FlowEditor", parent: Optional[QWidget] = None):
        super().__init__(parent)
        self._editor = editor

        self.setFocusPolicy(Qt.FocusPolicy.StrongFocus)
        self.setMouseTracking(True)
        self.setAcceptDrops(True)
        self.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Expanding)
        self.setMinimumSize(400, 300)

        editor.interaction.set_on_changed(self.update)
        editor.interaction.set_on_context_request(self._show_context_menu)
        editor.graph.add_listener(self._on_graph_event)

    @property
    def layout_(self) -> NodeLayout:
        return self._editor.layout

    def _on_graph_event(self, event: str) -> None:
        self.update()

    def fit_in_view(self) -> None:
        """Fit all nodes in view."""
        bounds = bounding_rect(self.layout_.node_rect(node) for node in self._editor.graph.nodes.values())
        if bounds is None:
            self._editor.viewport.reset()
        else:
            self._editor.viewport.fit_rect(bounds, self.width(), self.height())
        self.update()

    # --- Paint ---

    def paintEvent(self, event) -> None:
        painter = QPainter(self)
        painter.setRenderHint(QPainter.RenderHint.Antialiasing)
        painter.setRenderHint(QPainter.RenderHint.TextAntialiasing)

        painter.fillRect(self.rect(), self.COLOR_BACKGROUND)
        self._draw_grid(painter)
        self._draw_connections(painter)
        self._draw_floating_connection(painter)
        for node in self._editor.graph.nodes.values():
            self._draw_node(painter, node)
        self._draw_marquee(painter)
        painter.end()

    def _draw_grid(self, painter: QPainter) -> None:
        viewport = self._editor.viewport
        step = self.GRID_STEP * viewport.scale
        if step < 8:
            return
        painter.setPen(QPen(self.COLOR_GRID, 1))
        x = viewport.offset_x % step
        while x < self.width():
            painter.drawLine(int(x), 0, int(x), self.height())
            x += step
        y = viewport.offset_y % step
        while y < self.height():
            painter.drawLine(0, int(y), self.width(), int(y))
            y += step

    def _draw_connections(self, painter: QPainter) -> None:
        interaction = self._editor.interaction
        selected = self._editor.graph.selection.connection
        painter.setBrush(Qt.BrushStyle.NoBrush)
        for connection in self._editor.graph.connections:
            start = interaction.port_screen_position(PortRef(connection.from_node, connection.from_port, False))
            end = interaction.port_screen_position(PortRef(connection.to_node, connection.to_port, True))
            if start is None or end is None:
                continue
            color = self.COLOR_SELECTED if connection is selected else self.COLOR_CONNECTION
            painter.setPen(QPen(color, self.LINE_WIDTH))
            painter.drawPath(_curve_path(start, end))

    def _draw_floating_connection(self, painter: QPainter) -> None:
        floating = self._editor.interaction.floating_connection()
        if floating is None:
            return
        start, end = floating
        painter.setBrush(Qt.BrushStyle.NoBrush)
        painter.setPen(QPen(self.COLOR_CONNECTION, self.LINE_WIDTH, Qt.PenStyle.DashLine))
        painter.drawPath(_curve_path(start, end))

    def _draw_node(self, painter: QPainter, node: "NodeInstance") -> None:
        viewport = self._editor.viewport
        layout = self.layout_
        scale = viewport.scale
        rect = _qrect(viewport.world_rect_to_screen(layout.node_rect(node)))
        selection = self._editor.graph.selection
        radius = self.CORNER_RADIUS * scale

        painter.setPen(Qt.PenStyle.NoPen)
        painter.setBrush(QBrush(self.COLOR_BODY_BG))
        painter.drawRoundedRect(rect, radius, radius)

        title_rect = QRectF(rect.left(), rect.top(), rect.width(), layout.TITLE_HEIGHT * scale)
        title_color = self.COLOR_TITLE_BG_UI if node.definition.is_ui else self.COLOR_TITLE_BG
        painter.setBrush(QBrush(title_color))
        painter.drawRoundedRect(title_rect, radius, radius)

        if selection.is_selected(node.id):
            border = QPen(self.COLOR_BORDER_SELECTED, 2)
        elif node.id in selection.preview:
            border = QPen(self.COLOR_BORDER_PREVIEW, 1.5, Qt.PenStyle.DashLine)
        else:
            border = QPen(self.COLOR_BORDER, 1)
        painter.setPen(border)
        painter.setBrush(Qt.BrushStyle.NoBrush)
        painter.drawRoundedRect(rect, radius, radius)

        font = QFont()
        font.setPointSizeF(max(9 * scale, 1.0))
        font.setBold(True)
        painter.setFont(font)
        painter.setPen(self.COLOR_TITLE_TEXT)
        painter.drawText(
            title_rect.adjusted(layout.PADDING * scale, 0, -layout.PADDING * scale, 0),
            Qt.AlignmentFlag.AlignVCenter | Qt.AlignmentFlag.AlignLeft,
            node.label,
        )

        font.setBold(False)
        font.setPointSizeF(max(8 * scale, 1.0))
        painter.setFont(font)
        self._draw_ports(painter, node)
        self._draw_params(painter, node, rect)

    def _draw_ports(self, painter: QPainter, node: "NodeInstance") -> None:
        viewport = self._editor.viewport
        layout = self.layout_
        scale = viewport.scale
        radius = layout.port_radius * scale
        label_width = layout.width / 2 * scale
        row = layout.PORT_SPACING * scale

        for ref, world in layout.ports(node):
            center = viewport.world_to_screen(world)
            color = self.COLOR_PORT_INPUT if ref.is_input else self.COLOR_PORT_OUTPUT
            painter.setPen(QPen(color.darker(130), 1))
            painter.setBrush(QBrush(color))
            painter.drawEllipse(QPointF(center.x, center.y), radius, radius)

            painter.setPen(self.COLOR_PARAM_TEXT)
            if ref.is_input:
                text_rect = QRectF(center.x + radius * 2, center.y - row / 2, label_width, row)
                align = Qt.AlignmentFlag.AlignLeft
            else:
                text_rect = QRectF(center.x - radius * 2 - label_width, center.y - row / 2, label_width, row)
                align = Qt.AlignmentFlag.AlignRight
            painter.drawText(text_rect, align | Qt.AlignmentFlag.AlignVCenter, ref.port)

    def _draw_params(self, painter: QPainter, node: "NodeInstance", rect: QRectF) -> None:
        layout = self.layout_
        definition = node.definition
        if not definition.controls:
            return
        scale = self._editor.viewport.scale
        rows = max(len(definition.inputs), len(definition.outputs), 1)
        top = rect.top() + (layout.TITLE_HEIGHT + rows * layout.PORT_SPACING) * scale
        height = layout.PARAM_HEIGHT * scale
        padding = layout.PADDING * scale

        painter.setPen(self.COLOR_PARAM_TEXT)
        for i, control in enumerate(definition.controls):
            value = node.config.get(control.key, "")
            text = f"{control.display_label}: {value}"
            param_rect = QRectF(rect.left() + padding, top + i * height, rect.width() - padding * 2, height)
            painter.drawText(
                param_rect,
                Qt.AlignmentFlag.AlignVCenter | Qt.AlignmentFlag.AlignLeft,
                painter.fontMetrics().elidedText(text, Qt.TextElideMode.ElideRight, int(param_rect.width())),
            )

    def _draw_marquee(self, painter: QPainter) -> None:
        rect = self._editor.interaction.selection_rect()
        if rect is None:
            return
        painter.setPen(QPen(self.COLOR_SELECTED, 1, Qt.PenStyle.DashLine))
        painter.setBrush(QBrush(self.COLOR_MARQUEE_FILL))
        painter.drawRect(_qrect(rect))

    # --- Input ---

    def resizeEvent(self, event) -> None:
        self._editor.interaction.set_canvas_size(self.width(), self.height())
        super().resizeEvent(event)

    def mousePressEvent(self, event: QMouseEvent) -> None:
        self.setFocus()
        pointer = _pointer_event(event)
        if pointer.button is PointerButton.MIDDLE or (
            pointer.button is PointerButton.LEFT and self._editor.interaction.space_held
        ):
            self.setCursor(Qt.CursorShape.ClosedHandCursor)
        if self._editor.interaction.pointer_down(pointer):
            self.update()
            return
        super().mousePressEvent(event)

    def mouseMoveEvent(self, event: QMouseEvent) -> None:
        if self._editor.interaction.pointer_move(_pointer_event(event)):
            return
        super().mouseMoveEvent(event)

    def mouseReleaseEvent(self, event: QMouseEvent) -> None:
        self.unsetCursor()
        if self._editor.interaction.pointer_up(_pointer_event(event)):
            self.update()
            return
        super().mouseReleaseEvent(event)

    def mouseDoubleClickEvent(self, event: QMouseEvent) -> None:
        pos = event.position()
        node_id = self._editor.interaction.node_at(Point(pos.x(), pos.y()))
        if node_id is not None:
            self.node_activated.emit(node_id)
            return
        super().mouseDoubleClickEvent(event)

    def wheelEvent(self, event: QWheelEvent) -> None:
        pos = event.position()
        ctrl = bool(event.modifiers() & Qt.KeyboardModifier.ControlModifier)
        # Qt reports wheel-up as positive
        if self._editor.interaction.wheel(-event.angleDelta().y(), pos.x(), pos.y(), ctrl):
            event.accept()
            return
        super().wheelEvent(event)

    def keyPressEvent(self, event: QKeyEvent) -> None:
        key = _KEYS.get(event.key())
        if key is not None and not event.isAutoRepeat() and self._editor.interaction.key_down(key):
            self.update()
            return
        if event.key() == Qt.Key.Key_F:
            self.fit_in_view()
            return
        super().keyPressEvent(event)

    def keyReleaseEvent(self, event: QKeyEvent) -> None:
        key = _KEYS.get(event.key())
        if key is not None and not event.isAutoRepeat() and self._editor.interaction.key_up(key):
            return
        super().keyReleaseEvent(event)

    def focusOutEvent(self, event) -> None:
        self._editor.interaction.key_up("Space")
        super().focusOutEvent(event)

    # --- Palette drops ---

    def dragEnterEvent(self, event: QDragEnterEvent) -> None:
        if event.mimeData().hasFormat(DEFINITION_MIME_TYPE):
            event.acceptProposedAction()
            return
        super().dragEnterEvent(event)

    def dragMoveEvent(self, event) -> None:
        if event.mimeData().hasFormat(DEFINITION_MIME_TYPE):
            event.acceptProposedAction()
            return
        super().dragMoveEvent(event)

    def dropEvent(self, event: QDropEvent) -> None:
        mime = event.mimeData()
        if not mime.hasFormat(DEFINITION_MIME_TYPE):
            super().dropEvent(event)
            return
        definition_id = bytes(mime.data(DEFINITION_MIME_TYPE)).decode("utf-8")
        pos = event.position()
        world = self._editor.viewport.screen_to_world(Point(pos.x(), pos.y()))
        try:
            self._editor.graph.create_node(definition_id, world)
        except GraphError as e:
            log.warn(e, "Dropped definition is not in the library")
            return
        event.acceptProposedAction()

    # --- Context menu ---

    def _show_context_menu(self, point: Point, port: Optional[PortRef], node_id: Optional[str]) -> None:
        """Create nodes from a menu. Over a port only compatible definitions are offered."""
        menu = QMenu(self)
        if port is not None:
            definitions = self._editor.interaction.compatible_definitions(port)
            if not definitions:
                action = menu.addAction(f"No nodes accept '{port.port}'")
                action.setEnabled(False)
            for definition in definitions:
                menu.addAction(
                    definition.label,
                    lambda d=definition: self._create_connected(d, port, point),
                )
        elif node_id is not None:
            menu.addAction("Delete", lambda: self._delete_node(node_id))
        else:
            categories = {}
            for definition in self._editor.graph.library.values():
                categories.setdefault(definition.category or "Other", []).append(definition)
            for category in sorted(categories):
                submenu = menu.addMenu(category)
                for definition in sorted(categories[category], key=lambda d: d.label.lower()):
                    submenu.addAction(
                        definition.label,
                        lambda d=definition: self._create_at(d.id, point),
                    )
        menu.exec(self.mapToGlobal(QPointF(point.x, point.y).toPoint()))

    def _create_at(self, definition_id: str, point: Point) -> None:
        self._editor.graph.create_node(definition_id, self._editor.viewport.screen_to_world(point))

    def _create_connected(self, definition, port: PortRef, point: Point) -> None:
        try:
            self._editor.interaction.create_connected_node(definition, port, point)
        except GraphError as e:
            log.warn(e, "Failed to connect new node")

    def _delete_node(self, node_id: str) -> None:
        self._editor.graph.remove_node(node_id)
