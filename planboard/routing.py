"""Orthogonal connectors between dependent timeline bars."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from planboard.models import DependencyEdge, LinkType
from planboard.timeline import Rect, TimelineLayout

logger = logging.getLogger(__name__)

STAND_OFF = 10
CORRIDOR_STEP = 4
BACKWARD_TOLERANCE = 2

_LEFT_EXIT = (LinkType.START_START, LinkType.START_FINISH)
_RIGHT_ENTRY = (LinkType.FINISH_FINISH, LinkType.START_FINISH)


def _fmt(value: float) -> str:
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return "0" if text == "-0" else text


@dataclass(frozen=True)
class RoutedEdge:
    edge: DependencyEdge
    path: str
    natural_x: float
    corridor_x: float

    @property
    def rerouted(self) -> bool:
        return self.corridor_x != self.natural_x

    def to_dict(self) -> dict[str, Any]:
        data = self.edge.to_dict()
        data.update(
            {"path": self.path, "corridorX": self.corridor_x, "rerouted": self.rerouted}
        )
        return data


def anchor_points(
    link_type: LinkType, source: Rect, destination: Rect
) -> tuple[float, float, float, float]:
    """Pick (x1, y1, x2, y2) on the bar edges the link type connects."""
    if link_type is LinkType.START_START:
        x1, x2 = source.x, destination.x
    elif link_type is LinkType.FINISH_FINISH:
        x1, x2 = source.x2, destination.x2
    elif link_type is LinkType.START_FINISH:
        x1, x2 = source.x, destination.x2
    else:
        x1, x2 = source.x2, destination.x
    return x1, source.center_y, x2, destination.center_y


def find_free_x(
    min_x: float,
    max_x: float,
    y_top: float,
    y_bottom: float,
    obstacles: Iterable[Rect],
) -> float | None:
    """Step from ``max_x`` down to ``min_x`` and return the first x no bar covers."""
    obstacles = list(obstacles)
    x = max_x
    while x >= min_x:
        blocked = any(
            bar.y2 >= y_top and bar.y <= y_bottom and bar.x <= x <= bar.x2
            for bar in obstacles
        )
        if not blocked:
            return x
        x -= CORRIDOR_STEP
    return None


def route_edge(
    edge: DependencyEdge,
    source: Rect,
    destination: Rect,
    obstacles: Iterable[Rect] = (),
) -> RoutedEdge | None:
    """Build the staircase path for one edge, or None when it points backwards."""
    x1, y1, x2, y2 = anchor_points(edge.link_type, source, destination)
    if x2 + BACKWARD_TOLERANCE < x1:
        return None
    mid_y = (y1 + y2) / 2

    if x2 >= x1:
        exit_x = x1 - STAND_OFF if edge.link_type in _LEFT_EXIT else x1 + STAND_OFF
        natural_x = x2 + STAND_OFF if edge.link_type in _RIGHT_ENTRY else x2 - STAND_OFF
        corridor_x = find_free_x(
            exit_x, natural_x, min(mid_y, y2), max(mid_y, y2), obstacles
        )
        if corridor_x is None:
            corridor_x = natural_x
    else:
        exit_x = x1 + STAND_OFF
        natural_x = corridor_x = x2 + STAND_OFF

    path = " ".join(
        [
            f"M {_fmt(x1)} {_fmt(y1)}",
            f"H {_fmt(exit_x)}",
            f"V {_fmt(mid_y)}",
            f"H {_fmt(corridor_x)}",
            f"V {_fmt(y2)}",
            f"H {_fmt(x2)}",
        ]
    )
    return RoutedEdge(edge=edge, path=path, natural_x=natural_x, corridor_x=corridor_x)


def route_edges(layout: TimelineLayout, edges: Iterable[DependencyEdge]) -> list[RoutedEdge]:
    """Route every same-document edge whose endpoints both have bars."""
    routed: list[RoutedEdge] = []
    for edge in edges:
        if edge.is_cross_document:
            continue
        source = layout.bar_for(edge.source_key)
        destination = layout.bar_for(edge.destination_key)
        if source is None or destination is None:
            continue
        obstacles = [
            bar.rect
            for key, bar in layout.bars.items()
            if key not in (edge.source_key, edge.destination_key)
        ]
        connector = route_edge(edge, source.rect, destination.rect, obstacles)
        if connector is None:
            logger.debug(
                "Suppressed backward connector %s -> %s",
                edge.source_key,
                edge.destination_key,
            )
            continue
        routed.append(connector)
    return routed
