"""
Toolpath geometry: star outlines and per-pass cut depths.

Pure functions, no I/O. Coordinates are in millimetres.
"""

import math
from dataclasses import dataclass
from typing import Iterator

Point = tuple[float, float]


def fmt(value: float) -> str:
    """
    Format a number the way the controller expects it: fixed 3 decimals, '.' separator.

    Example:
        >>> fmt(2.7214285714)
        '2.721'
        >>> fmt(-1e-12)
        '0.000'
    """
    text = f"{value:.3f}"
    if text == "-0.000":
        return "0.000"
    return text


@dataclass(frozen=True)
class StarOutline:
    """
    Closed outline of a star, centred on (center_offset, center_offset).

    Vertices alternate between the inner and outer radius at angle
    i * pi / points, for i in 0 .. 2 * points - 1, followed by the first
    vertex again so the tool returns to its start. Iterating is lazy and
    can be repeated; each iteration yields the same points.
    """

    points: int
    inner_radius: float
    outer_radius: float
    center_offset: float

    def __post_init__(self) -> None:
        if self.points < 2:
            raise ValueError(f"A star needs at least 2 points, got {self.points}")
        if self.inner_radius <= 0 or self.outer_radius <= 0:
            raise ValueError(
                f"Star radii must be positive, got {self.inner_radius} and {self.outer_radius}"
            )

    def vertex(self, i: int) -> Point:
        radius = self.inner_radius if i % 2 == 0 else self.outer_radius
        angle = i * math.pi / self.points
        return (
            math.cos(angle) * radius + self.center_offset,
            math.sin(angle) * radius + self.center_offset,
        )

    def __iter__(self) -> Iterator[Point]:
        for i in range(2 * self.points):
            yield self.vertex(i)
        yield self.vertex(0)

    def __len__(self) -> int:
        return 2 * self.points + 1

    @property
    def start(self) -> Point:
        return self.vertex(0)


def star_outline(
    points: int, inner_radius: float, outer_radius: float, center_offset: float
) -> StarOutline:
    """
    Build the closed outline of a star.

    Args:
        points: Number of star points.
        inner_radius: Radius of the inner (valley) vertices.
        outer_radius: Radius of the outer (tip) vertices.
        center_offset: Translation applied to both X and Y.

    Returns:
        A restartable iterable of 2 * points + 1 (x, y) pairs.
    """
    return StarOutline(points, inner_radius, outer_radius, center_offset)


def pass_depths(total_passes: int, material_thickness: float) -> list[float]:
    """
    Compute the Z height of each cutting pass, first pass first.

    Pass i (1-indexed) cuts down to material_thickness * (total_passes - i) / total_passes,
    so the first pass removes the least material and the last reaches Z = 0.

    Args:
        total_passes: Number of passes.
        material_thickness: Thickness of the stock above Z = 0.

    Returns:
        Strictly decreasing depths, ending with exactly 0.0.
    """
    if total_passes < 1:
        raise ValueError(f"At least one pass is required, got {total_passes}")
    if material_thickness <= 0:
        raise ValueError(f"Material thickness must be positive, got {material_thickness}")

    return [
        material_thickness * (total_passes - i) / total_passes
        for i in range(1, total_passes + 1)
    ]
