# poi_reach/app/query.py
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from poi_reach.domain.entities.geography import POI, EntityId, GeoPoint, Route


class NoReachabilityModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    kind: Literal["none"] = "none"


class GraphReachabilityModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    kind: Literal["graph"] = "graph"
    cutoff: float = Field(ge=0.0)  # cost units of the path finder (meters by default)


ReachabilityUnion = Annotated[
    NoReachabilityModel | GraphReachabilityModel, Field(discriminator="kind")
]


class QueryRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)
    center: GeoPoint
    radius_m: float | None = Field(default=None, ge=0.0)
    k: int | None = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)
    reachability: ReachabilityUnion = Field(default_factory=NoReachabilityModel)
    include_routes: bool = False

    @field_validator("center", mode="before")
    @classmethod
    def _pair_to_point(cls, v):
        # (lat, lon) pairs are accepted alongside {"lat": .., "lon": ..}
        if isinstance(v, (list, tuple)) and len(v) == 2:
            return {"lat": v[0], "lon": v[1]}
        return v

    @model_validator(mode="after")
    def _need_radius_or_k(self):
        if self.radius_m is None and self.k is None:
            raise ValueError("a query needs radius_m, k, or both")
        return self

    @property
    def cutoff(self) -> float | None:
        if isinstance(self.reachability, GraphReachabilityModel):
            return self.reachability.cutoff
        return None

    @property
    def wants_reachability(self) -> bool:
        return self.cutoff is not None


@dataclass(frozen=True)
class QueryHit:
    poi: POI
    distance_m: float  # straight line from the query center
    path_length_m: float | None = None
    path_cost: float | None = None  # ranking key under reachability
    route: Route | None = None

    @property
    def rank_key(self):
        primary = self.path_cost if self.path_cost is not None else self.distance_m
        return (primary, self.poi.id)


@dataclass
class QueryResult:
    hits: list[QueryHit]
    total: int  # ranked results before offset/k were applied
    offset: int = 0
    timed_out: tuple[EntityId, ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[QueryHit]:
        return iter(self.hits)

    def __len__(self) -> int:
        return len(self.hits)

    def __getitem__(self, i: int) -> QueryHit:
        return self.hits[i]

    def ids(self) -> list[EntityId]:
        return [h.poi.id for h in self.hits]
