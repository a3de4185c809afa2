"""Interaction controller - pointer state machine for the canvas.

Exactly one InteractionState is active at a time. Events come in as
screen-space PointerEvents, so the controller can be driven by any
front end (the Qt canvas, or tests).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional, Tuple, Union

import numpy as np

from nodeflow import log
from nodeflow.nodegraph.config import EditorConfig
from nodeflow.nodegraph.definition import NodeDefinition
from nodeflow.nodegraph.geometry import Point, Rect, Viewport
from nodeflow.nodegraph.graph import GraphError, NodeGraph
from nodeflow.nodegraph.graph_data import Connection, NodeInstance
from nodeflow.nodegraph.layout import (
    NodeLayout,
    PortRef,
    bezier_points,
    curve_control_points,
    hit_test_curves,
)

POSITION_EPSILON = 1e-3


class PointerButton(Enum):
    LEFT = 0
    MIDDLE = 1
    RIGHT = 2


@dataclass(frozen=True)
class PointerEvent:
    x: float
    y: float
    button: PointerButton = PointerButton.LEFT
    shift: bool = False
    ctrl: bool = False
    meta: bool = False

    @property
    def point(self) -> Point:
        return Point(self.x, self.y)

    @property
    def additive(self) -> bool:
        return self.shift or self.ctrl or self.meta


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Selecting:
    """Box selection. Corners in screen space."""
    origin: Point
    current: Point
    additive: bool = False

    @property
    def rect(self) -> Rect:
        return Rect.from_points(self.origin, self.current)


@dataclass(frozen=True)
class Dragging:
    """Node drag. `pointer_origin` is in world space."""
    pointer_origin: Point
    node_origins: Tuple[Tuple[str, Point], ...]
    moved: bool = False


@dataclass(frozen=True)
class ConnectingFrom:
    """Connection drawing from a port handle to the pointer (screen space)."""
    port: PortRef
    current: Point


@dataclass(frozen=True)
class Panning:
    last: Point
    button: PointerButton = PointerButton.MIDDLE
    moved: bool = False


InteractionState = Union[Idle, Selecting, Dragging, ConnectingFrom, Panning]

ContextRequest = Callable[[Point, Optional[PortRef], Optional[str]], None]


class InteractionController:
    """
    Canvas interaction over a NodeGraph and a Viewport.

    Handles selection (click, additive click, box), node dragging,
    connection drawing, panning, wheel zoom and the Delete key.
    """

    def __init__(
        self,
        graph: NodeGraph,
        viewport: Viewport,
        layout: Optional[NodeLayout] = None,
        config: Optional[EditorConfig] = None,
        on_changed: Optional[Callable[[], None]] = None,
        on_context_request: Optional[ContextRequest] = None,
    ):
        self.graph = graph
        self.viewport = viewport
        self.config = config or EditorConfig()
        self.layout = layout or NodeLayout(port_radius=self.config.handle_radius)
        self.state: InteractionState = Idle()
        self.space_held = False
        self.canvas_size: Optional[Tuple[float, float]] = None

        self._on_changed = on_changed
        self._on_context_request = on_context_request

    def set_on_changed(self, callback: Optional[Callable[[], None]]) -> None:
        self._on_changed = callback

    def set_on_context_request(self, callback: Optional[ContextRequest]) -> None:
        self._on_context_request = callback

    def set_canvas_size(self, width: float, height: float) -> None:
        self.canvas_size = (float(width), float(height))

    def _set_state(self, state: InteractionState) -> None:
        self.state = state
        if self._on_changed is not None:
            self._on_changed()

    # --- Hit testing ---

    def node_at(self, screen_point: Point) -> Optional[str]:
        """Topmost node under a screen point (last created is on top)."""
        world = self.viewport.screen_to_world(screen_point)
        for node in reversed(list(self.graph.nodes.values())):
            if self.layout.node_rect(node).contains(world):
                return node.id
        return None

    def port_at(self, screen_point: Point) -> Optional[PortRef]:
        world = self.viewport.screen_to_world(screen_point)
        radius = self.config.handle_radius / self.viewport.scale
        for node in reversed(list(self.graph.nodes.values())):
            port = self.layout.port_at(node, world, radius)
            if port is not None:
                return port
        return None

    def port_screen_position(self, port: PortRef) -> Optional[Point]:
        node = self.graph.nodes.get(port.node_id)
        if node is None:
            return None
        return self.viewport.world_to_screen(self.layout.port_position(node, port.port, port.is_input))

    def connection_curves(self) -> List[Tuple[Connection, np.ndarray]]:
        """Screen-space polylines of all connections in drawing order."""
        curves = []
        for connection in self.graph.connections:
            start = self.port_screen_position(PortRef(connection.from_node, connection.from_port, False))
            end = self.port_screen_position(PortRef(connection.to_node, connection.to_port, True))
            if start is None or end is None:
                continue
            curves.append((connection, bezier_points(curve_control_points(start, end))))
        return curves

    def connection_at(self, screen_point: Point) -> Optional[Connection]:
        return hit_test_curves(screen_point, self.connection_curves(), self.config.hit_stroke_width)

    def node_screen_rects(self) -> List[Tuple[str, Rect]]:
        nodes = list(self.graph.nodes.values())
        if not nodes:
            return []
        corners = np.array(
            [[r.left, r.top, r.right, r.bottom] for r in (self.layout.node_rect(n) for n in nodes)],
            dtype=np.float64,
        ).reshape(-1, 2)
        screen = self.viewport.world_to_screen_array(corners).reshape(-1, 4)
        return [
            (node.id, Rect(float(row[0]), float(row[1]), float(row[2]), float(row[3])))
            for node, row in zip(nodes, screen)
        ]

    def nodes_in_rect(self, screen_rect: Rect) -> List[str]:
        return [node_id for node_id, rect in self.node_screen_rects() if rect.intersects(screen_rect)]

    def floating_connection(self) -> Optional[Tuple[Point, Point]]:
        """(output end, input end) of the connection being drawn, screen space."""
        if not isinstance(self.state, ConnectingFrom):
            return None
        anchor = self.port_screen_position(self.state.port)
        if anchor is None:
            return None
        if self.state.port.is_input:
            return self.state.current, anchor
        return anchor, self.state.current

    def selection_rect(self) -> Optional[Rect]:
        if isinstance(self.state, Selecting):
            return self.state.rect
        return None

    # --- Pointer events ---

    def pointer_down(self, event: PointerEvent) -> bool:
        if not isinstance(self.state, Idle):
            return False

        point = event.point
        pan_gesture = event.button in (PointerButton.MIDDLE, PointerButton.RIGHT) or (
            event.button is PointerButton.LEFT and self.space_held
        )
        if pan_gesture:
            self._set_state(Panning(last=point, button=event.button))
            return True

        port = self.port_at(point)
        if port is not None:
            self._set_state(ConnectingFrom(port=port, current=point))
            return True

        node_id = self.node_at(point)
        if node_id is not None:
            self._press_node(node_id, event)
            return True

        selection = self.graph.selection
        connection = self.connection_at(point)
        if connection is not None:
            selection.select_connection(connection)
            return True

        selection.clear_connection()
        if not event.additive:
            selection.clear_nodes()
        selection.clear_preview()
        self._set_state(Selecting(origin=point, current=point, additive=event.additive))
        return True

    def _press_node(self, node_id: str, event: PointerEvent) -> None:
        selection = self.graph.selection
        keeps_group = selection.is_selected(node_id) and len(selection.nodes) > 1 and not event.additive
        if not keeps_group:
            selection.select_node(node_id, additive=event.additive, toggle=event.ctrl or event.meta)

        if event.additive:
            return

        targets = [nid for nid in self.graph.nodes if selection.is_selected(nid)]
        if node_id not in targets:
            targets = [node_id]
        origins = tuple((nid, self.graph.nodes[nid].position) for nid in targets)
        self._set_state(Dragging(
            pointer_origin=self.viewport.screen_to_world(event.point),
            node_origins=origins,
        ))

    def pointer_move(self, event: PointerEvent) -> bool:
        state = self.state
        point = event.point
        match state:
            case Idle():
                return False
            case Panning():
                dx = point.x - state.last.x
                dy = point.y - state.last.y
                self.viewport.pan(dx, dy)
                self._set_state(replace(state, last=point, moved=state.moved or dx != 0 or dy != 0))
            case Dragging():
                world = self.viewport.screen_to_world(point)
                delta = world - state.pointer_origin
                if delta.x != 0 or delta.y != 0:
                    for node_id, origin in state.node_origins:
                        self.graph.move_node(node_id, origin + delta)
                    state = replace(state, moved=True)
                self._set_state(state)
            case ConnectingFrom():
                self._set_state(replace(state, current=point))
            case Selecting():
                current = self._clamp_to_canvas(point)
                state = replace(state, current=current)
                self.graph.selection.set_preview(self.nodes_in_rect(state.rect))
                self._set_state(state)
        return True

    def pointer_up(self, event: PointerEvent) -> bool:
        state = self.state
        point = event.point
        match state:
            case Idle():
                return False
            case Panning():
                self._set_state(Idle())
                if not state.moved and state.button is PointerButton.RIGHT:
                    self._request_context(point)
            case Dragging():
                if state.moved:
                    self.graph.mark_dirty()
                self._set_state(Idle())
            case ConnectingFrom():
                self._set_state(Idle())
                self._finish_connection(state.port, self.port_at(point))
            case Selecting():
                current = self._clamp_to_canvas(point)
                chosen = self.nodes_in_rect(Rect.from_points(state.origin, current))
                selection = self.graph.selection
                selection.clear_preview()
                if chosen or not state.additive:
                    selection.select_nodes(chosen, additive=state.additive)
                self._set_state(Idle())
        return True

    def _finish_connection(self, start: PortRef, end: Optional[PortRef]) -> Optional[Connection]:
        if end is None or end.is_input == start.is_input:
            return None
        source, target = (end, start) if start.is_input else (start, end)
        try:
            return self.graph.add_connection(source.node_id, source.port, target.node_id, target.port)
        except GraphError as e:
            log.debug(e, "Connection rejected")
            return None

    def _request_context(self, point: Point) -> None:
        if self._on_context_request is None:
            return
        self._on_context_request(point, self.port_at(point), self.node_at(point))

    def _clamp_to_canvas(self, point: Point) -> Point:
        if self.canvas_size is None:
            return point
        width, height = self.canvas_size
        return Point(min(max(point.x, 0.0), width), min(max(point.y, 0.0), height))

    def cancel(self) -> None:
        """Abort the current gesture. A floating connection is dropped."""
        state = self.state
        if isinstance(state, Selecting):
            self.graph.selection.clear_preview()
        elif isinstance(state, Dragging) and state.moved:
            self.graph.mark_dirty()
        self._set_state(Idle())

    # --- Wheel and keys ---

    def wheel(self, delta_y: float, x: float, y: float, ctrl: bool = False) -> bool:
        """
        Zoom around the pointer.

        Negative delta zooms in (scroll up), positive zooms out.
        Ctrl+wheel is left to the host (browser-style page zoom).
        """
        if ctrl or delta_y == 0:
            return False
        step = self.config.zoom_step
        factor = step if delta_y < 0 else 1.0 / step
        changed = self.viewport.zoom_by(factor, Point(x, y))
        if changed and self._on_changed is not None:
            self._on_changed()
        return changed

    def key_down(self, key: str) -> bool:
        if key == "Space":
            self.space_held = True
            return True
        if key == "Escape":
            self.cancel()
            return True
        if key in ("Delete", "Backspace") and isinstance(self.state, Idle):
            return self.graph.remove_selected()
        return False

    def key_up(self, key: str) -> bool:
        if key == "Space":
            self.space_held = False
            return True
        return False

    # --- Placement ---

    def _is_occupied(self, world: Point) -> bool:
        for node in self.graph.nodes.values():
            if (
                abs(node.position.x - world.x) < POSITION_EPSILON
                and abs(node.position.y - world.y) < POSITION_EPSILON
            ):
                return True
        return False

    def find_available_position(
        self,
        screen_point: Optional[Point] = None,
        step: Optional[float] = None,
    ) -> Point:
        """
        World position near `screen_point` not taken by another node.

        Candidates step diagonally (in screen pixels) from the start point.
        """
        if screen_point is None:
            screen_point = Point(*self.config.placement_origin)
        if step is None:
            step = self.config.placement_step

        attempts = max(len(self.graph.nodes) + 1, 10)
        for i in range(attempts):
            candidate = self.viewport.screen_to_world(
                Point(screen_point.x + i * step, screen_point.y + i * step)
            )
            if not self._is_occupied(candidate):
                return candidate
        return self.viewport.screen_to_world(
            Point(screen_point.x + attempts * step, screen_point.y + attempts * step)
        )

    # --- Port quick-create ---

    def compatible_definitions(self, port: PortRef) -> List[NodeDefinition]:
        """Definitions with a port of the same name on the opposite side."""
        result = []
        for definition in self.graph.library.values():
            names = definition.outputs if port.is_input else definition.inputs
            if port.port in names:
                result.append(definition)
        return sorted(result, key=lambda d: d.label.lower())

    def create_connected_node(
        self,
        definition: NodeDefinition,
        port: PortRef,
        screen_point: Point,
    ) -> NodeInstance:
        """Create a node at `screen_point` already wired to `port`."""
        node = self.graph.create_node(definition, self.find_available_position(screen_point))
        if port.is_input:
            self.graph.add_connection(node.id, port.port, port.node_id, port.port)
        else:
            self.graph.add_connection(port.node_id, port.port, node.id, port.port)
        return node
