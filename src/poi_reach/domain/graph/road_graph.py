# poi_reach/domain/graph/road_graph.py
import math
from bisect import insort
from collections.abc import Iterator
from contextlib import nullcontext

from poi_reach.domain.entities.geography import EntityId, GeoPoint, RoadEdge, RoadNode
from poi_reach.domain.index.spatial_index import GridSpatialIndex
from poi_reach.errors import DuplicateId, EmptyGraph, InvalidWeight, NotFound, UnknownNode
from poi_reach.runtime.locks import ReadWriteLock


def _adj_key(entry: tuple[int, RoadEdge]):
    return (entry[1].target, entry[1].length_m)


class _GraphReads:
    """Read API shared by the live graph and its frozen snapshots."""

    _slot: dict[EntityId, int]
    _points: list[GeoPoint | None] | tuple[GeoPoint | None, ...]
    _out: list[list[tuple[int, RoadEdge]]] | tuple[tuple[tuple[int, RoadEdge], ...], ...]
    _node_index: GridSpatialIndex[None]
    _n_edges: int

    def _reading(self):
        return nullcontext()

    def _slot_of(self, id: EntityId) -> int:
        try:
            return self._slot[id]
        except KeyError:
            raise UnknownNode(id) from None

    @property
    def node_count(self) -> int:
        return len(self._slot)

    @property
    def edge_count(self) -> int:
        """Directed traversals (an undirected edge counts twice)."""
        return self._n_edges

    def has_node(self, id: EntityId) -> bool:
        return id in self._slot

    def node_ids(self) -> list[EntityId]:
        with self._reading():
            return list(self._slot)

    def node_point(self, id: EntityId) -> GeoPoint:
        with self._reading():
            return self._points[self._slot_of(id)]

    def node(self, id: EntityId) -> RoadNode:
        return RoadNode(id, self.node_point(id))

    def neighbors(self, id: EntityId) -> tuple[RoadEdge, ...]:
        """Departing traversals ordered by (target id, length)."""
        with self._reading():
            return tuple(e for _, e in self._out[self._slot_of(id)])

    def nearest_node(self, point: GeoPoint) -> EntityId:
        with self._reading():
            if not self._slot:
                raise EmptyGraph("graph has no nodes")
            (node_id, _), = self._node_index.query_k_nearest(point, 1)
            return node_id


class RoadGraph(_GraphReads):
    """
    Road topology stored as an arena: nodes live in dense slot lists, adjacency
    holds (target slot, edge) pairs. Removed nodes leave tombstone slots, so a
    slot index never changes meaning.

    An internal GridSpatialIndex over node points answers nearest_node.
    """

    def __init__(self, *, node_index: GridSpatialIndex[None] | None = None):
        self._ids: list[EntityId | None] = []
        self._points: list[GeoPoint | None] = []
        self._out: list[list[tuple[int, RoadEdge]]] = []
        self._in: list[set[int]] = []  # slots with an edge into this slot
        self._slot: dict[EntityId, int] = {}
        self._edges: dict[int, RoadEdge] = {}  # edge_id -> edge as added
        self._n_edges = 0
        self._next_edge_id = 0
        self._node_index = node_index if node_index is not None else GridSpatialIndex()
        self._lock = ReadWriteLock()
        self._snapshot: RoadGraphSnapshot | None = None

    def _reading(self):
        return self._lock.read()

    # ------------------- Mutation --------------------------------

    def add_node(self, id: EntityId, point: GeoPoint) -> RoadNode:
        if not isinstance(point, GeoPoint):
            raise TypeError(f"expected GeoPoint, got {type(point).__name__}")
        with self._lock.write():
            if id in self._slot:
                raise DuplicateId(f"node {id!r} already exists")
            self._node_index.insert(id, point)
            self._slot[id] = len(self._ids)
            self._ids.append(id)
            self._points.append(point)
            self._out.append([])
            self._in.append(set())
            self._snapshot = None
        return RoadNode(id, point)

    def add_edge(
        self,
        source: EntityId,
        target: EntityId,
        length_m: float,
        directed: bool = False,
        *,
        speed_mps: float | None = None,
        edge_id: int | None = None,
    ) -> RoadEdge:
        length_m = float(length_m)
        if not math.isfinite(length_m) or length_m < 0:
            raise InvalidWeight(f"edge length must be finite and >= 0, got {length_m!r}")
        if speed_mps is not None and not (math.isfinite(speed_mps) and speed_mps > 0):
            raise InvalidWeight(f"edge speed must be finite and > 0, got {speed_mps!r}")
        with self._lock.write():
            for end in (source, target):
                if end not in self._slot:
                    raise UnknownNode(end)
            if edge_id is None:
                edge_id = self._next_edge_id
            elif edge_id in self._edges:
                raise DuplicateId(f"edge {edge_id!r} already exists")
            self._next_edge_id = max(self._next_edge_id, edge_id + 1)

            fwd = RoadEdge(source, target, length_m, directed, edge_id, speed_mps)
            s, t = self._slot[source], self._slot[target]
            self._link(s, t, fwd)
            if not directed:
                self._link(t, s, RoadEdge(target, source, length_m, False, edge_id, speed_mps))
            self._edges[edge_id] = fwd
            self._snapshot = None
        return fwd

    def _link(self, s: int, t: int, edge: RoadEdge) -> None:
        insort(self._out[s], (t, edge), key=_adj_key)
        self._in[t].add(s)
        self._n_edges += 1

    def remove_node(self, id: EntityId) -> RoadNode:
        with self._lock.write():
            if id not in self._slot:
                raise NotFound(id)
            s = self._slot.pop(id)
            point = self._points[s]
            for src in self._in[s]:
                kept = [(t, e) for t, e in self._out[src] if t != s]
                self._n_edges -= len(self._out[src]) - len(kept)
                self._out[src] = kept
            for t, _ in self._out[s]:
                self._in[t].discard(s)
            self._n_edges -= len(self._out[s])
            self._edges = {
                k: e for k, e in self._edges.items() if e.source != id and e.target != id
            }
            self._ids[s], self._points[s] = None, None
            self._out[s], self._in[s] = [], set()
            self._node_index.remove(id)
            self._snapshot = None
        return RoadNode(id, point)

    # ------------------- Reads -----------------------------------

    def nodes(self) -> Iterator[RoadNode]:
        with self._lock.read():
            live = [(i, p) for i, p in zip(self._ids, self._points) if p is not None]
        return (RoadNode(i, p) for i, p in live)

    def node_index_settings(self) -> dict:
        return self._node_index.settings()

    def edges(self) -> list[RoadEdge]:
        """Edges as added: one entry per undirected edge."""
        with self._lock.read():
            return sorted(self._edges.values(), key=lambda e: e.edge_id)

    def snapshot(self) -> "RoadGraphSnapshot":
        """
        Immutable view of the current topology. Cached until the next mutation,
        so back-to-back queries share one copy.
        """
        with self._lock.read():
            snap = self._snapshot
            if snap is None:
                snap = RoadGraphSnapshot(
                    slot=dict(self._slot),
                    points=tuple(self._points),
                    out=tuple(tuple(adj) for adj in self._out),
                    node_index=self._node_index.copy(),
                    n_edges=self._n_edges,
                )
                self._snapshot = snap
            return snap


class RoadGraphSnapshot(_GraphReads):
    def __init__(self, *, slot, points, out, node_index, n_edges):
        self._slot, self._points, self._out = slot, points, out
        self._node_index, self._n_edges = node_index, n_edges
