# poi_reach/io/loader.py
"""
Bulk loading of already-extracted POI and road rows.

Rows are plain mappings (from CSV readers, database cursors, OSM extract
tooling...). A batch is validated in full before anything is inserted: one
bad row rejects the batch with a LoaderError naming the row.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from poi_reach.app.protocols import PoiSource, RoadSource, SpatialIndex
from poi_reach.domain.entities.geography import POI, GeoPoint
from poi_reach.domain.geodesy import distance
from poi_reach.domain.graph.road_graph import RoadGraph
from poi_reach.errors import LoaderError

log = logging.getLogger("poi_reach.loader")

RowId = int | str


class PoiRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)
    id: RowId
    name: str = ""
    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)
    tags: dict[str, str] = Field(default_factory=dict)

    def to_poi(self) -> POI:
        return POI(self.id, self.name, GeoPoint(self.lat, self.lon), self.tags)


class NodeRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)
    id: RowId
    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)


class EdgeRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)
    source: RowId
    target: RowId
    length_m: float | None = Field(default=None, ge=0.0)  # None => geodesic length
    directed: bool = False
    speed_mps: float | None = Field(default=None, gt=0.0)
    edge_id: int | None = None


def _parse(model: type[BaseModel], rows: Iterable[Mapping[str, Any]], what: str) -> list:
    out = []
    for i, row in enumerate(rows):
        try:
            out.append(model.model_validate(row))
        except ValidationError as exc:
            raise LoaderError(f"invalid {what}: {exc.errors()[0]['msg']}", row=i) from exc
    return out


def load_pois(index: SpatialIndex, rows: Iterable[Mapping[str, Any]], *, replace=False) -> int:
    """
    Insert POI rows into `index`. Ids already present are an error unless
    `replace` is set, in which case the row moves/overwrites the old entry.
    """
    records = _parse(PoiRecord, rows, "POI")
    seen: set = set()
    for i, rec in enumerate(records):
        if rec.id in seen or (not replace and rec.id in index):
            raise LoaderError(f"duplicate POI id {rec.id!r}", row=i)
        seen.add(rec.id)
    for rec in records:
        poi = rec.to_poi()
        index.insert(poi.id, poi.location, poi)
    log.info("loaded %d POIs", len(records))
    return len(records)


def load_roads(
    graph: RoadGraph,
    nodes: Iterable[Mapping[str, Any]],
    edges: Iterable[Mapping[str, Any]],
) -> tuple[int, int]:
    """Add node and edge rows to `graph`; every edge endpoint must resolve."""
    node_recs = _parse(NodeRecord, nodes, "road node")
    edge_recs = _parse(EdgeRecord, edges, "road edge")

    points: dict[RowId, GeoPoint] = {}
    for i, rec in enumerate(node_recs):
        if rec.id in points or graph.has_node(rec.id):
            raise LoaderError(f"duplicate node id {rec.id!r}", row=i)
        points[rec.id] = GeoPoint(rec.lat, rec.lon)

    edge_ids: set[int] = {e.edge_id for e in graph.edges()}
    for i, rec in enumerate(edge_recs):
        for end in (rec.source, rec.target):
            if end not in points and not graph.has_node(end):
                raise LoaderError(f"edge endpoint {end!r} is not a node", row=i)
        if rec.edge_id is not None:
            if rec.edge_id in edge_ids:
                raise LoaderError(f"duplicate edge id {rec.edge_id!r}", row=i)
            edge_ids.add(rec.edge_id)

    for node_id, p in points.items():
        graph.add_node(node_id, p)
    # explicit edge ids first so auto-assigned ids cannot collide with them
    for rec in sorted(edge_recs, key=lambda r: r.edge_id is None):
        length = rec.length_m
        if length is None:
            length = distance(graph.node_point(rec.source), graph.node_point(rec.target))
        graph.add_edge(
            rec.source,
            rec.target,
            length,
            rec.directed,
            speed_mps=rec.speed_mps,
            edge_id=rec.edge_id,
        )
    log.info("loaded %d road nodes, %d edges", len(node_recs), len(edge_recs))
    return len(node_recs), len(edge_recs)


def load_sources(
    index: SpatialIndex,
    graph: RoadGraph,
    pois: PoiSource | None = None,
    roads: RoadSource | None = None,
) -> None:
    if pois is not None:
        load_pois(index, pois.poi_rows())
    if roads is not None:
        load_roads(graph, roads.node_rows(), roads.edge_rows())
