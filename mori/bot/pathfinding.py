"""
Tile path finding (A*, 4-neighbour, Manhattan heuristic).

A tile is walkable when its foreground item is not solid. Unknown items
count as walkable, as does the empty foreground (id 0).
"""

from __future__ import annotations

import heapq
from typing import Callable

from mori.data.items import ItemDatabase
from mori.data.state import World

Point = tuple[int, int]

NEIGHBOURS = ((1, 0), (-1, 0), (0, 1), (0, -1))


def walkable_fn(world: World, items: ItemDatabase) -> Callable[[int, int], bool]:
    def walkable(x: int, y: int) -> bool:
        tile = world.get_tile(x, y)
        if tile is None:
            return False
        item = items.get_item(tile.foreground)
        return item is None or not item.is_solid

    return walkable


def find_path(
    start: Point,
    goal: Point,
    walkable: Callable[[int, int], bool],
    max_nodes: int = 50_000,
) -> list[Point]:
    """Tiles from start to goal inclusive, or [] if unreachable.

    The start tile itself is not checked, the bot may be standing inside a
    block after a teleport.
    """
    if start == goal:
        return [start]
    if not walkable(*goal):
        return []

    def h(p: Point) -> int:
        return abs(p[0] - goal[0]) + abs(p[1] - goal[1])

    open_set: list[tuple[int, int, Point]] = [(h(start), 0, start)]
    came_from: dict[Point, Point] = {}
    g_score: dict[Point, int] = {start: 0}
    counter = 0

    while open_set:
        _, _, current = heapq.heappop(open_set)

        if current == goal:
            path = [current]
            while current in came_from:
                current = came_from[current]
                path.append(current)
            return list(reversed(path))

        if len(g_score) > max_nodes:
            break

        for dx, dy in NEIGHBOURS:
            nb = (current[0] + dx, current[1] + dy)
            if not walkable(*nb):
                continue
            tentative_g = g_score[current] + 1
            if nb not in g_score or tentative_g < g_score[nb]:
                came_from[nb] = current
                g_score[nb] = tentative_g
                counter += 1
                heapq.heappush(open_set, (tentative_g + h(nb), counter, nb))

    return []
