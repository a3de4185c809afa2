"""Viewport geometry - pan/zoom transform between world and screen space.

Pure math, no Qt dependencies. The canvas widget maps node rects and
port centres through Viewport.world_to_screen().
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Tuple

import numpy as np


@dataclass(frozen=True)
class Point:
    """2D point (world or screen space, depending on context)."""
    x: float = 0.0
    y: float = 0.0

    def __add__(self, other: "Point") -> "Point":
        return Point(self.x + other.x, self.y + other.y)

    def __sub__(self, other: "Point") -> "Point":
        return Point(self.x - other.x, self.y - other.y)

    def __mul__(self, factor: float) -> "Point":
        return Point(self.x * factor, self.y * factor)

    def distance_to(self, other: "Point") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, data) -> "Point":
        if not isinstance(data, dict):
            return cls()
        return cls(_finite(data.get("x")), _finite(data.get("y")))


def _finite(value, default: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle given by its edges."""
    left: float
    top: float
    right: float
    bottom: float

    @classmethod
    def from_points(cls, a: Point, b: Point) -> "Rect":
        """Normalized rectangle spanned by two corners."""
        return cls(min(a.x, b.x), min(a.y, b.y), max(a.x, b.x), max(a.y, b.y))

    @classmethod
    def from_size(cls, x: float, y: float, width: float, height: float) -> "Rect":
        return cls(x, y, x + width, y + height)

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    def contains(self, point: Point) -> bool:
        return self.left <= point.x <= self.right and self.top <= point.y <= self.bottom

    def intersects(self, other: "Rect") -> bool:
        """Inclusive overlap test (touching edges count as intersecting)."""
        return (
            other.right >= self.left
            and other.left <= self.right
            and other.bottom >= self.top
            and other.top <= self.bottom
        )

    def united(self, other: "Rect") -> "Rect":
        return Rect(
            min(self.left, other.left),
            min(self.top, other.top),
            max(self.right, other.right),
            max(self.bottom, other.bottom),
        )


class Viewport:
    """
    Affine map from world to screen coordinates:

        screen = world * scale + offset

    Scale is always kept inside [min_scale, max_scale].
    """

    MIN_SCALE = 0.25
    MAX_SCALE = 3.0

    def __init__(
        self,
        scale: float = 1.0,
        offset_x: float = 0.0,
        offset_y: float = 0.0,
        min_scale: float = MIN_SCALE,
        max_scale: float = MAX_SCALE,
    ):
        if min_scale <= 0 or min_scale > max_scale:
            raise ValueError(f"Invalid scale range [{min_scale}, {max_scale}]")
        self.min_scale = min_scale
        self.max_scale = max_scale
        self.scale = 1.0
        self.scale = self.clamp_scale(scale)
        self.offset_x = float(offset_x)
        self.offset_y = float(offset_y)

    @property
    def offset(self) -> Point:
        return Point(self.offset_x, self.offset_y)

    def clamp_scale(self, value: float) -> float:
        """Clamp to the allowed range. Non-finite values keep the current scale."""
        try:
            value = float(value)
        except (TypeError, ValueError):
            return self.scale
        if not math.isfinite(value):
            return self.scale
        return min(self.max_scale, max(self.min_scale, value))

    def world_to_screen(self, point: Point) -> Point:
        return Point(
            point.x * self.scale + self.offset_x,
            point.y * self.scale + self.offset_y,
        )

    def screen_to_world(self, point: Point) -> Point:
        return Point(
            (point.x - self.offset_x) / self.scale,
            (point.y - self.offset_y) / self.scale,
        )

    def world_rect_to_screen(self, rect: Rect) -> Rect:
        top_left = self.world_to_screen(Point(rect.left, rect.top))
        bottom_right = self.world_to_screen(Point(rect.right, rect.bottom))
        return Rect.from_points(top_left, bottom_right)

    def set_zoom(self, scale: float, pivot: Point) -> bool:
        """
        Set absolute scale keeping the world point under `pivot` fixed.

        Args:
            scale: Requested scale (clamped).
            pivot: Screen point that must stay over the same world point.

        Returns:
            True if the scale actually changed.
        """
        new_scale = self.clamp_scale(scale)
        if new_scale == self.scale:
            return False
        world_pivot = self.screen_to_world(pivot)
        self.scale = new_scale
        self.offset_x = pivot.x - world_pivot.x * new_scale
        self.offset_y = pivot.y - world_pivot.y * new_scale
        return True

    def zoom_by(self, factor: float, pivot: Point) -> bool:
        """Multiply current scale by `factor` around `pivot`."""
        return self.set_zoom(self.scale * factor, pivot)

    def pan(self, dx: float, dy: float) -> None:
        """Shift by a screen-space delta. Scale is untouched."""
        self.offset_x += dx
        self.offset_y += dy

    def reset(self) -> None:
        self.scale = self.clamp_scale(1.0)
        self.offset_x = 0.0
        self.offset_y = 0.0

    def fit_rect(self, rect: Rect, width: float, height: float, margin: float = 40.0) -> None:
        """Center `rect` (world space) in a `width` x `height` screen area."""
        if rect.width <= 0 or rect.height <= 0 or width <= 0 or height <= 0:
            return
        avail_w = max(width - 2 * margin, 1.0)
        avail_h = max(height - 2 * margin, 1.0)
        self.scale = self.clamp_scale(min(avail_w / rect.width, avail_h / rect.height))
        center_x = (rect.left + rect.right) / 2
        center_y = (rect.top + rect.bottom) / 2
        self.offset_x = width / 2 - center_x * self.scale
        self.offset_y = height / 2 - center_y * self.scale

    def matrix(self) -> np.ndarray:
        """3x3 homogeneous world-to-screen matrix."""
        return np.array(
            [
                [self.scale, 0.0, self.offset_x],
                [0.0, self.scale, self.offset_y],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )

    def world_to_screen_array(self, points: np.ndarray) -> np.ndarray:
        """Transform an (N, 2) array of world points."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        homogeneous = np.hstack([points, np.ones((len(points), 1))])
        return (homogeneous @ self.matrix().T)[:, :2]

    def screen_to_world_array(self, points: np.ndarray) -> np.ndarray:
        """Transform an (N, 2) array of screen points."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        return (points - np.array([self.offset_x, self.offset_y])) / self.scale

    def state(self) -> Tuple[float, float, float]:
        return self.scale, self.offset_x, self.offset_y


def bounding_rect(rects: Iterable[Rect]) -> Rect | None:
    """Union of rectangles, or None for an empty input."""
    result = None
    for rect in rects:
        result = rect if result is None else result.united(rect)
    return result
