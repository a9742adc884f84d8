import os
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from poi_reach.domain.geodesy import HALF_CIRCUMFERENCE_M


class LogModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False  # per-candidate drop events
    record_queries: bool = False  # emit QueryServed analytics events
    events_file: str | None = None  # JSONL target for recorded events; stdout when unset


# ----------------- INDEXES ---------------------


class GridIndexModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    kind: Literal["grid"] = "grid"
    cell_deg: float = Field(default=0.01, gt=0.0, le=90.0)
    knn_seed: Literal["density", "fixed"] = "density"
    knn_seed_radius_m: float = Field(default=500.0, gt=0.0)
    knn_max_radius_m: float = Field(default=HALF_CIRCUMFERENCE_M, gt=0.0)

    @field_validator("knn_max_radius_m")
    @classmethod
    def _max_not_below_seed(cls, v: float, info: ValidationInfo) -> float:
        seed = info.data.get("knn_seed_radius_m")
        if seed is not None and v < seed:
            raise ValueError("knn_max_radius_m must be >= knn_seed_radius_m")
        return v


IndexUnion = Annotated[GridIndexModel, Field(discriminator="kind")]


class GraphModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    node_index: IndexUnion = Field(default_factory=GridIndexModel)


# ----------------- COST FUNCTIONS ---------------------


class CostLengthModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    kind: Literal["length"] = "length"


class CostTravelTimeModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    kind: Literal["travel_time"] = "travel_time"
    default_speed_mps: float = Field(default=13.9, gt=0.0)
    min_speed_mps: float = Field(default=0.1, gt=0.0)  # clamp to avoid div by 0


CostUnion = Annotated[CostLengthModel | CostTravelTimeModel, Field(discriminator="kind")]


class PathFinderModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    cost: CostUnion = Field(default_factory=CostLengthModel)


# ------------------ ENGINE -----------------------------


class EngineModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    workers: int = Field(default=4, ge=1)
    candidate_timeout_s: float | None = Field(default=None, gt=0.0)
    strategy: Literal["per_candidate", "single_source"] = "per_candidate"
    # k-only reachability queries over-fetch this many straight-line candidates per k
    knn_overfetch: int = Field(default=4, ge=1)
    # k-only length queries also take POIs this far from their road node
    snap_slack_m: float = Field(default=500.0, ge=0.0)


# ------------------ SNAPSHOTS -----------------------------


class SnapshotByPath(BaseModel):
    model_config = ConfigDict(extra="forbid")
    by: Literal["path"] = "path"
    file: str
    fmt: Literal["json", "pickle"] = "json"
    must_exist: bool = True

    @field_validator("file")
    @classmethod
    def _expand(cls, v: str) -> str:
        return os.path.expandvars(os.path.expanduser(v))


# ------------------------------------------------------------------


class AppModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str = "poi_reach"
    run_id: str = "local"
    log: LogModel = LogModel()
    poi_index: IndexUnion = Field(default_factory=GridIndexModel)
    graph: GraphModel = Field(default_factory=GraphModel)
    path_finder: PathFinderModel = Field(default_factory=PathFinderModel)
    engine: EngineModel = Field(default_factory=EngineModel)
    snapshot: SnapshotByPath | None = None
