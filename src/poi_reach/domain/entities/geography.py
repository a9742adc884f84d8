from collections.abc import Hashable, Mapping
from dataclasses import dataclass, field

EntityId = Hashable  # ids within one index must be mutually orderable (ties sort by id)


# Core geometry types used by indexes and the graph
@dataclass(frozen=True)
class GeoPoint:
    lat: float  # degrees, WGS84
    lon: float

    def __post_init__(self):
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"latitude {self.lat!r} outside [-90, 90]")
        if not -180.0 <= self.lon <= 180.0:
            raise ValueError(f"longitude {self.lon!r} outside [-180, 180]")


@dataclass(frozen=True)
class BoundingBox:
    """
    Lat/lon rectangle. min_lon > max_lon means the box wraps across the
    antimeridian (e.g. 170 .. -170).
    """

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def __post_init__(self):
        if self.min_lat > self.max_lat:
            raise ValueError(f"min_lat {self.min_lat} > max_lat {self.max_lat}")

    @property
    def wraps(self) -> bool:
        return self.min_lon > self.max_lon

    def split(self) -> tuple["BoundingBox", ...]:
        if not self.wraps:
            return (self,)
        return (
            BoundingBox(self.min_lat, self.max_lat, self.min_lon, 180.0),
            BoundingBox(self.min_lat, self.max_lat, -180.0, self.max_lon),
        )

    def contains(self, p: GeoPoint) -> bool:
        if not self.min_lat <= p.lat <= self.max_lat:
            return False
        if self.wraps:
            return p.lon >= self.min_lon or p.lon <= self.max_lon
        return self.min_lon <= p.lon <= self.max_lon

    def as_tuple(self) -> tuple[float, float, float, float]:
        return self.min_lat, self.max_lat, self.min_lon, self.max_lon


@dataclass(frozen=True)
class POI:
    id: EntityId
    name: str
    location: GeoPoint
    tags: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # own copy; equality is mapping equality, so tag order is irrelevant
        object.__setattr__(self, "tags", dict(self.tags))

    def __hash__(self):
        return hash((self.id, self.name, self.location))


@dataclass(frozen=True)
class RoadNode:
    id: EntityId
    location: GeoPoint


@dataclass(frozen=True)
class RoadEdge:
    source: EntityId
    target: EntityId
    length_m: float
    directed: bool = False  # False => stored as two traversals
    edge_id: int | None = None
    speed_mps: float | None = None  # None => cost function default


@dataclass(frozen=True)
class Route:
    nodes: tuple[EntityId, ...]
    edges: tuple[RoadEdge, ...]
    length_m: float
    cost: float  # in the cost function's units; equals length_m for LengthCost

    @property
    def source(self) -> EntityId:
        return self.nodes[0]

    @property
    def target(self) -> EntityId:
        return self.nodes[-1]
