from collections.abc import Iterable, Mapping
from typing import Any, Protocol, runtime_checkable

from poi_reach.domain.entities.geography import (
    BoundingBox,
    EntityId,
    GeoPoint,
    RoadEdge,
)


# ------------- Indexes --------------------
@runtime_checkable
class SpatialIndex(Protocol):
    """
    Responsibilities:
      • Keep located entities keyed by id; insert/update/remove.
      • Exact bounding-box lookup, radius and k-nearest queries.
    Units: degrees for coordinates, meters for distances.
    """

    def insert(self, id: EntityId, point: GeoPoint, item: Any = None) -> None: ...
    def update(self, id: EntityId, point: GeoPoint) -> None: ...
    def remove(self, id: EntityId) -> Any: ...
    def get(self, id: EntityId) -> Any: ...
    def point(self, id: EntityId) -> GeoPoint: ...
    def query_bounding_box(self, box: BoundingBox) -> set[EntityId]: ...
    def query_radius(
        self, center: GeoPoint, radius_m: float, *, sort: bool = True, items: bool = False
    ) -> list: ...
    def query_k_nearest(self, center: GeoPoint, k: int, *, items: bool = False) -> list: ...
    def __len__(self) -> int: ...
    def __contains__(self, id: EntityId) -> bool: ...


@runtime_checkable
class RoadNetwork(Protocol):
    """Read side of a road graph; what path search and the engine need."""

    def has_node(self, id: EntityId) -> bool: ...
    def node_point(self, id: EntityId) -> GeoPoint: ...
    def neighbors(self, id: EntityId) -> tuple[RoadEdge, ...]: ...
    def nearest_node(self, point: GeoPoint) -> EntityId: ...


# ------------- Path search --------------------
@runtime_checkable
class CostFunction(Protocol):
    """
    Traversal cost of one edge. Must be >= 0; cutoffs are expressed in the
    same units.
    """

    units: str

    def cost(self, edge: RoadEdge) -> float: ...


# ------------- External feeders --------------------
@runtime_checkable
class PoiSource(Protocol):
    """Anything that yields POI rows: {"id", "name", "lat", "lon", "tags"}."""

    def poi_rows(self) -> Iterable[Mapping[str, Any]]: ...


@runtime_checkable
class RoadSource(Protocol):
    """Node rows {"id", "lat", "lon"} and edge rows {"source", "target", "length_m", ...}."""

    def node_rows(self) -> Iterable[Mapping[str, Any]]: ...
    def edge_rows(self) -> Iterable[Mapping[str, Any]]: ...


# ------------- Observability --------------------
class QueryHooks(Protocol):
    def query_start(self, *, query_id: int, request) -> None: ...
    def candidates(self, *, query_id: int, count: int, stage: str) -> None: ...
    def candidate_dropped(self, *, query_id: int, poi_id: EntityId, reason: str) -> None: ...
    def query_end(self, *, query_id: int, result, wall_ms: float) -> None: ...
    def error(self, *, query_id: int, exc: BaseException) -> None: ...

