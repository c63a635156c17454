"""Extent helpers for view geometry."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prefetch.types import Coordinate, Extent, Size


def get_for_view_and_size(
    center: Coordinate,
    resolution: float,
    rotation: float,
    size: Size,
) -> Extent:
    """
    Bounding extent of a (possibly rotated) view.

    Args:
        center: View center in projection units
        resolution: Projection units per pixel
        rotation: View rotation in radians
        size: Viewport size in pixels (width, height)

    Returns:
        (min_x, min_y, max_x, max_y)

    """
    dx = resolution * size[0] / 2
    dy = resolution * size[1] / 2
    cos_r = math.cos(rotation)
    sin_r = math.sin(rotation)
    xs = []
    ys = []
    for ox, oy in ((-dx, -dy), (-dx, dy), (dx, dy), (dx, -dy)):
        xs.append(center[0] + ox * cos_r - oy * sin_r)
        ys.append(center[1] + ox * sin_r + oy * cos_r)
    return (min(xs), min(ys), max(xs), max(ys))


def buffer_extent(extent: Extent, value: float) -> Extent:
    return (
        extent[0] - value,
        extent[1] - value,
        extent[2] + value,
        extent[3] + value,
    )


def spatial_buffer_value(extent: Extent, buffer_factor: float) -> float:
    """Isotropic buffer: the larger of the two axial deltas."""
    width = extent[2] - extent[0]
    height = extent[3] - extent[1]
    buffer_x = width * (buffer_factor - 1) / 2
    buffer_y = height * (buffer_factor - 1) / 2
    return max(buffer_x, buffer_y)
