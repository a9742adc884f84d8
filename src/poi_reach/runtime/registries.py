# runtime/registries.py
from collections.abc import Callable

from poi_reach.app.protocols import CostFunction, SpatialIndex
from poi_reach.config.models import (
    CostLengthModel,
    CostTravelTimeModel,
    CostUnion,
    GridIndexModel,
    IndexUnion,
)
from poi_reach.domain.graph.path_finder import LengthCost, TravelTimeCost
from poi_reach.domain.index.spatial_index import GridSpatialIndex

CostFactory = Callable[[CostUnion], CostFunction]
IndexFactory = Callable[[IndexUnion], SpatialIndex]

_cost_registry: dict[str, CostFactory] = {}
_index_registry: dict[str, IndexFactory] = {}


# ------------------- Cost function registries ---------------------------


def register_cost(kind: str):
    def deco(fn: CostFactory):
        _cost_registry[kind] = fn
        return fn

    return deco


def make_cost(cfg: CostUnion) -> CostFunction:
    try:
        factory = _cost_registry[cfg.kind]
    except KeyError:
        raise ValueError(f"Unknown cost kind {cfg.kind!r}") from None
    return factory(cfg)


@register_cost("length")
def _make_length(cfg: CostLengthModel):
    return LengthCost()


@register_cost("travel_time")
def _make_travel_time(cfg: CostTravelTimeModel):
    return TravelTimeCost(cfg.default_speed_mps, cfg.min_speed_mps)


# ------------------- Spatial index registries ---------------------------


def register_index(kind: str):
    def deco(fn: IndexFactory):
        _index_registry[kind] = fn
        return fn

    return deco


def make_index(cfg: IndexUnion) -> SpatialIndex:
    try:
        factory = _index_registry[cfg.kind]
    except KeyError:
        raise ValueError(f"Unknown index kind {cfg.kind!r}") from None
    return factory(cfg)


@register_index("grid")
def _make_grid(cfg: GridIndexModel):
    return GridSpatialIndex(
        cell_deg=cfg.cell_deg,
        knn_seed=cfg.knn_seed,
        knn_seed_radius_m=cfg.knn_seed_radius_m,
        knn_max_radius_m=cfg.knn_max_radius_m,
    )
