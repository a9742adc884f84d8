import math
from collections.abc import Iterable, Iterator
from typing import Generic, Literal, TypeVar

from poi_reach.domain.entities.geography import BoundingBox, EntityId, GeoPoint
from poi_reach.domain.geodesy import (
    HALF_CIRCUMFERENCE_M,
    bounding_box,
    distances_from,
    meters_per_degree,
)
from poi_reach.errors import InsufficientCoverage, NotFound
from poi_reach.runtime.locks import ReadWriteLock

T = TypeVar("T")

CellKey = tuple[int, int]  # (row, col) = floor(lat / cell_deg), floor(lon / cell_deg)
Hit = tuple[EntityId, float]  # (id, distance_m)


class GridSpatialIndex(Generic[T]):
    """
    Uniform lat/lon grid over located entities, keyed by id.

    Each id may carry a payload (the POI itself, for instance). Cells are only
    an accelerator: bounding-box answers are checked point by point, so they
    are exact whatever the cell size.

    Reads (query_*, get, point, entries) share a ReadWriteLock; mutations take
    it exclusively and validate before touching state.
    """

    def __init__(
        self,
        *,
        cell_deg: float = 0.01,
        knn_seed: Literal["density", "fixed"] = "density",
        knn_seed_radius_m: float = 500.0,
        knn_max_radius_m: float = HALF_CIRCUMFERENCE_M,
    ):
        if cell_deg <= 0:
            raise ValueError(f"cell_deg must be > 0, got {cell_deg!r}")
        if knn_seed_radius_m <= 0 or knn_max_radius_m <= 0:
            raise ValueError("knn radii must be > 0")
        self.cell_deg = float(cell_deg)
        self.knn_seed, self.knn_seed_radius_m, self.knn_max_radius_m = (
            knn_seed,
            float(knn_seed_radius_m),
            float(knn_max_radius_m),
        )
        self._points: dict[EntityId, GeoPoint] = {}
        self._items: dict[EntityId, T | None] = {}
        self._cells: dict[CellKey, set[EntityId]] = {}
        self._lock = ReadWriteLock()

    # ------------------- Mutation --------------------------------

    def insert(self, id: EntityId, point: GeoPoint, item: T | None = None) -> None:
        if not isinstance(point, GeoPoint):
            raise TypeError(f"expected GeoPoint, got {type(point).__name__}")
        with self._lock.write():
            if id in self._points:
                self._unlink(id)
            self._link(id, point)
            self._items[id] = item

    def update(self, id: EntityId, point: GeoPoint) -> None:
        if not isinstance(point, GeoPoint):
            raise TypeError(f"expected GeoPoint, got {type(point).__name__}")
        with self._lock.write():
            if id not in self._points:
                raise NotFound(id)
            self._unlink(id)
            self._link(id, point)

    def remove(self, id: EntityId) -> T | None:
        with self._lock.write():
            if id not in self._points:
                raise NotFound(id)
            self._unlink(id)
            return self._items.pop(id)

    def clear(self) -> None:
        with self._lock.write():
            self._points.clear()
            self._items.clear()
            self._cells.clear()

    def _cell_of(self, p: GeoPoint) -> CellKey:
        return (math.floor(p.lat / self.cell_deg), math.floor(p.lon / self.cell_deg))

    def _link(self, id: EntityId, point: GeoPoint) -> None:
        self._points[id] = point
        self._cells.setdefault(self._cell_of(point), set()).add(id)

    def _unlink(self, id: EntityId) -> None:
        key = self._cell_of(self._points.pop(id))
        bucket = self._cells[key]
        bucket.discard(id)
        if not bucket:
            del self._cells[key]

    # ------------------- Lookup ----------------------------------

    def __len__(self) -> int:
        return len(self._points)

    def __contains__(self, id: EntityId) -> bool:
        return id in self._points

    def get(self, id: EntityId) -> T | None:
        with self._lock.read():
            try:
                return self._items[id]
            except KeyError:
                raise NotFound(id) from None

    def point(self, id: EntityId) -> GeoPoint:
        with self._lock.read():
            try:
                return self._points[id]
            except KeyError:
                raise NotFound(id) from None

    def ids(self) -> list[EntityId]:
        with self._lock.read():
            return list(self._points)

    def cell_count(self) -> int:
        return len(self._cells)

    # ------------------- Queries ---------------------------------

    def query_bounding_box(self, box: BoundingBox) -> set[EntityId]:
        with self._lock.read():
            return self._bbox_ids(box)

    def query_radius(
        self, center: GeoPoint, radius_m: float, *, sort: bool = True, items: bool = False
    ) -> list:
        """
        (id, distance_m) for every entity within `radius_m`, ascending by
        (distance, id) unless sort=False. items=True appends each payload,
        read under the same lock as the hits.
        """
        with self._lock.read():
            return self._attach(self._radius(center, radius_m, sort=sort), items)

    def query_k_nearest(self, center: GeoPoint, k: int, *, items: bool = False) -> list:
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        with self._lock.read():
            n = len(self._points)
            if n == 0:
                return []
            target = min(k, n)
            max_r = self.knn_max_radius_m
            r = min(self._seed_radius(center, target), max_r)
            while True:
                hits = self._radius(center, r)
                if len(hits) >= target:
                    return self._attach(hits[:target], items)
                if r >= max_r:
                    raise InsufficientCoverage(k, len(hits), max_r)
                r = min(r * 2.0, max_r)

    def _attach(self, hits: list[Hit], items: bool) -> list:
        if not items:
            return hits
        return [(i, d, self._items[i]) for i, d in hits]

    def _bbox_ids(self, box: BoundingBox) -> set[EntityId]:
        out: set[EntityId] = set()
        c = self.cell_deg
        for part in box.split():
            r0, r1 = math.floor(part.min_lat / c), math.floor(part.max_lat / c)
            c0, c1 = math.floor(part.min_lon / c), math.floor(part.max_lon / c)
            span = (r1 - r0 + 1) * (c1 - c0 + 1)
            if span > len(self._cells):
                # box covers more cells than are occupied: walk the occupied ones
                keys: Iterable[CellKey] = (
                    key for key in self._cells if r0 <= key[0] <= r1 and c0 <= key[1] <= c1
                )
            else:
                keys = ((row, col) for row in range(r0, r1 + 1) for col in range(c0, c1 + 1))
            for key in keys:
                for id in self._cells.get(key, ()):
                    if part.contains(self._points[id]):
                        out.add(id)
        return out

    def _radius(self, center: GeoPoint, radius_m: float, sort: bool = True) -> list[Hit]:
        ids = list(self._bbox_ids(bounding_box(center, radius_m)))
        if not ids:
            return []
        pts = [self._points[i] for i in ids]
        d = distances_from(center, [p.lat for p in pts], [p.lon for p in pts])
        hits = [(i, float(di)) for i, di in zip(ids, d) if di <= radius_m]
        if sort:
            hits.sort(key=lambda h: (h[1], h[0]))
        return hits

    def _seed_radius(self, center: GeoPoint, k: int) -> float:
        if self.knn_seed == "fixed":
            return self.knn_seed_radius_m
        # radius of a disc expected to hold k entities at the mean occupied-cell density
        m_lat, m_lon = meters_per_degree(center.lat)
        cell_area = (self.cell_deg * m_lat) * max(self.cell_deg * m_lon, 1.0)
        density = len(self._points) / (len(self._cells) * cell_area)
        return max(math.sqrt(k / (math.pi * density)), 1.0)

    # ------------------- Snapshots -------------------------------

    def entries(self) -> list[tuple[EntityId, GeoPoint, T | None]]:
        with self._lock.read():
            return [(i, p, self._items[i]) for i, p in self._points.items()]

    def __iter__(self) -> Iterator[EntityId]:
        return iter(self.ids())

    def settings(self) -> dict:
        return {
            "cell_deg": self.cell_deg,
            "knn_seed": self.knn_seed,
            "knn_seed_radius_m": self.knn_seed_radius_m,
            "knn_max_radius_m": self.knn_max_radius_m,
        }

    @classmethod
    def from_entries(
        cls, entries: Iterable[tuple[EntityId, GeoPoint, T | None]], **settings
    ) -> "GridSpatialIndex[T]":
        idx = cls(**settings)
        for id, p, item in entries:
            idx.insert(id, p, item)
        return idx

    def copy(self) -> "GridSpatialIndex[T]":
        return GridSpatialIndex.from_entries(self.entries(), **self.settings())
