"""Node layout and hit geometry.

Node boxes and port handles live in world space; connection curves are
evaluated in screen space so the hit tolerance is in pixels regardless
of zoom.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

from nodeflow.nodegraph.geometry import Point, Rect

if TYPE_CHECKING:
    from nodeflow.nodegraph.graph_data import NodeInstance

T = TypeVar("T")

CURVE_MIN_OFFSET = 60.0
CURVE_SAMPLES = 48


@dataclass(frozen=True)
class PortRef:
    """A port handle on a specific node instance."""
    node_id: str
    port: str
    is_input: bool


class NodeLayout:
    """Sizes and port positions of node boxes."""

    DEFAULT_WIDTH = 180
    TITLE_HEIGHT = 28
    PORT_SPACING = 24
    PORT_RADIUS = 6
    PARAM_HEIGHT = 26
    PADDING = 10

    def __init__(self, width: float = DEFAULT_WIDTH, port_radius: float = PORT_RADIUS):
        self.width = width
        self.port_radius = port_radius

    def node_height(self, node: "NodeInstance") -> float:
        definition = node.definition
        port_rows = max(len(definition.inputs), len(definition.outputs), 1)
        return (
            self.TITLE_HEIGHT
            + port_rows * self.PORT_SPACING
            + len(definition.controls) * self.PARAM_HEIGHT
            + self.PADDING
        )

    def node_rect(self, node: "NodeInstance") -> Rect:
        return Rect.from_size(node.position.x, node.position.y, self.width, self.node_height(node))

    def port_position(self, node: "NodeInstance", port: str, is_input: bool) -> Point:
        names = node.definition.inputs if is_input else node.definition.outputs
        index = names.index(port)
        y = self.TITLE_HEIGHT + self.PORT_SPACING / 2 + index * self.PORT_SPACING
        x = 0.0 if is_input else self.width
        return Point(node.position.x + x, node.position.y + y)

    def ports(self, node: "NodeInstance") -> List[Tuple[PortRef, Point]]:
        result = []
        for name in node.definition.inputs:
            result.append((PortRef(node.id, name, True), self.port_position(node, name, True)))
        for name in node.definition.outputs:
            result.append((PortRef(node.id, name, False), self.port_position(node, name, False)))
        return result

    def port_at(self, node: "NodeInstance", world_point: Point, radius: float) -> Optional[PortRef]:
        """Port handle within `radius` (world units) of the point."""
        best = None
        best_distance = radius
        for ref, position in self.ports(node):
            distance = position.distance_to(world_point)
            if distance <= best_distance:
                best = ref
                best_distance = distance
        return best


def curve_control_points(start: Point, end: Point) -> np.ndarray:
    """Cubic bezier control polygon (4x2) for a connection from start to end."""
    offset = abs(end.x - start.x) * 0.5 + CURVE_MIN_OFFSET
    return np.array(
        [
            [start.x, start.y],
            [start.x + offset, start.y],
            [end.x - offset, end.y],
            [end.x, end.y],
        ],
        dtype=np.float64,
    )


def bezier_points(control: np.ndarray, samples: int = CURVE_SAMPLES) -> np.ndarray:
    """Sample a cubic bezier into a (samples + 1)x2 polyline."""
    t = np.linspace(0.0, 1.0, samples + 1)[:, None]
    u = 1.0 - t
    return (
        (u ** 3) * control[0]
        + 3 * (u ** 2) * t * control[1]
        + 3 * u * (t ** 2) * control[2]
        + (t ** 3) * control[3]
    )


def distance_to_polyline(point: Point, points: np.ndarray) -> float:
    """Shortest distance from a point to a polyline given as Nx2 array."""
    p = np.array([point.x, point.y], dtype=np.float64)
    if len(points) == 1:
        return float(np.linalg.norm(points[0] - p))

    a = points[:-1]
    b = points[1:]
    ab = b - a
    length_sq = np.einsum("ij,ij->i", ab, ab)
    safe = np.where(length_sq == 0.0, 1.0, length_sq)
    t = np.clip(np.einsum("ij,ij->i", p - a, ab) / safe, 0.0, 1.0)
    t = np.where(length_sq == 0.0, 0.0, t)
    closest = a + ab * t[:, None]
    return float(np.min(np.linalg.norm(closest - p, axis=1)))


def hit_test_curves(
    point: Point,
    curves: Sequence[Tuple[T, np.ndarray]],
    stroke_width: float,
) -> Optional[T]:
    """
    Topmost curve under the point.

    `curves` are in drawing order, so the last one is on top and is
    tested first. A curve is hit when the point lies within half the
    widened stroke.
    """
    tolerance = stroke_width / 2.0
    for item, polyline in reversed(curves):
        if distance_to_polyline(point, polyline) <= tolerance:
            return item
    return None

