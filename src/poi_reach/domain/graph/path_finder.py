# poi_reach/domain/graph/path_finder.py
import heapq
import math
import threading
import time
from dataclasses import dataclass, field

from poi_reach.app.protocols import CostFunction, RoadNetwork
from poi_reach.domain.entities.geography import EntityId, RoadEdge, Route
from poi_reach.errors import InvalidWeight, SearchTimeout, UnknownNode

POLL_EVERY = 64  # settled nodes between deadline/cancel checks


# ------------------- Cost functions ------------------------------


class LengthCost(CostFunction):
    units = "m"

    def cost(self, edge: RoadEdge) -> float:
        return edge.length_m


class TravelTimeCost(CostFunction):
    """Seconds: length over the edge's own speed, else the default speed."""

    units = "s"

    def __init__(self, default_speed_mps: float = 13.9, min_speed_mps: float = 0.1):
        if default_speed_mps <= 0 or min_speed_mps <= 0:
            raise ValueError("speeds must be > 0")
        self.default_speed_mps, self.min_speed_mps = default_speed_mps, min_speed_mps

    def cost(self, edge: RoadEdge) -> float:
        v = edge.speed_mps if edge.speed_mps is not None else self.default_speed_mps
        return edge.length_m / max(v, self.min_speed_mps)


# ------------------- Search --------------------------------------


@dataclass
class SearchTree:
    """Settled part of a bounded Dijkstra run from `source`."""

    source: EntityId
    cutoff: float
    cost: dict[EntityId, float] = field(default_factory=dict)
    prev: dict[EntityId, RoadEdge] = field(default_factory=dict)

    def route_to(self, target: EntityId) -> Route | None:
        if target not in self.cost:
            return None
        edges: list[RoadEdge] = []
        node = target
        while node != self.source:
            e = self.prev[node]
            edges.append(e)
            node = e.source
        edges.reverse()
        nodes = (self.source, *(e.target for e in edges))
        return Route(
            nodes=nodes,
            edges=tuple(edges),
            length_m=math.fsum(e.length_m for e in edges),
            cost=self.cost[target],
        )


class PathFinder:
    """
    Cutoff-bounded Dijkstra over any RoadNetwork (live graph or snapshot).

    The frontier is a heap of (cost, node id): equal costs settle in id order
    and neighbors arrive sorted by target id, so repeated searches on an
    unchanged graph return identical routes.
    """

    def __init__(self, cost: CostFunction | None = None):
        self.cost_fn = cost or LengthCost()

    def shortest_path(
        self,
        graph: RoadNetwork,
        source: EntityId,
        target: EntityId,
        cutoff: float = math.inf,
        *,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> Route | None:
        """Route of minimum cost, or None when no route costs <= cutoff."""
        if not graph.has_node(target):
            raise UnknownNode(target)
        tree = self._search(graph, source, cutoff, target, deadline, cancel)
        return tree.route_to(target)

    def shortest_path_tree(
        self,
        graph: RoadNetwork,
        source: EntityId,
        cutoff: float,
        *,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> SearchTree:
        return self._search(graph, source, cutoff, None, deadline, cancel)

    def reachable(self, graph: RoadNetwork, source: EntityId, cutoff: float) -> dict:
        """Every node whose cheapest route from `source` costs <= cutoff."""
        return self._search(graph, source, cutoff, None, None, None).cost

    def _search(self, graph, source, cutoff, target, deadline, cancel) -> SearchTree:
        cutoff = float(cutoff)
        if math.isnan(cutoff) or cutoff < 0:
            raise ValueError(f"cutoff must be >= 0, got {cutoff!r}")
        if not graph.has_node(source):
            raise UnknownNode(source)
        _poll(deadline, cancel)

        tree = SearchTree(source=source, cutoff=cutoff)
        best: dict[EntityId, float] = {source: 0.0}
        frontier: list[tuple[float, EntityId]] = [(0.0, source)]
        settled = tree.cost
        while frontier:
            c, u = heapq.heappop(frontier)
            if c > cutoff:
                break
            if u in settled:
                continue
            settled[u] = c
            if u == target:
                break
            if len(settled) % POLL_EVERY == 0:
                _poll(deadline, cancel)
            for edge in graph.neighbors(u):
                v = edge.target
                if v in settled:
                    continue
                w = self.cost_fn.cost(edge)
                if math.isnan(w) or w < 0:
                    raise InvalidWeight(f"edge {edge.edge_id!r} has cost {w!r}")
                nc = c + w
                if nc > cutoff:
                    continue
                old = best.get(v)
                if old is None or nc < old:
                    best[v] = nc
                    tree.prev[v] = edge
                    heapq.heappush(frontier, (nc, v))
        # drop tentative predecessors of unsettled nodes
        tree.prev = {v: e for v, e in tree.prev.items() if v in settled}
        return tree


def _poll(deadline: float | None, cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise SearchTimeout("search cancelled")
    if deadline is not None and time.monotonic() > deadline:
        raise SearchTimeout("search deadline exceeded")
