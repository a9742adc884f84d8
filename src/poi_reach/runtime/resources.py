# poi_reach/runtime/resources.py
import json
import os
import pickle
from dataclasses import dataclass

from poi_reach.domain.entities.geography import POI, EntityId, GeoPoint, RoadEdge
from poi_reach.domain.graph.road_graph import RoadGraph
from poi_reach.domain.index.spatial_index import GridSpatialIndex

SNAPSHOT_VERSION = 1


@dataclass
class Snapshot:
    pois: GridSpatialIndex[POI]
    graph: RoadGraph


# ------------------- Encoding --------------------------------
# JSON floats are written with repr(), which round-trips exactly.


def _entry_to_json(id: EntityId, point: GeoPoint, item) -> dict:
    row = {"id": id, "lat": point.lat, "lon": point.lon}
    if isinstance(item, POI):
        row["name"] = item.name
        row["tags"] = dict(item.tags)
    return row


def _edge_to_json(e: RoadEdge) -> dict:
    return {
        "source": e.source,
        "target": e.target,
        "length_m": e.length_m,
        "directed": e.directed,
        "edge_id": e.edge_id,
        "speed_mps": e.speed_mps,
    }


def to_payload(pois: GridSpatialIndex[POI], graph: RoadGraph) -> dict:
    return {
        "version": SNAPSHOT_VERSION,
        "poi_index": pois.settings(),
        "node_index": graph.node_index_settings(),
        "pois": [_entry_to_json(*entry) for entry in pois.entries()],
        "nodes": [
            {"id": n.id, "lat": n.location.lat, "lon": n.location.lon} for n in graph.nodes()
        ],
        "edges": [_edge_to_json(e) for e in graph.edges()],
    }


def from_payload(payload: dict) -> Snapshot:
    version = payload.get("version")
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported snapshot version {version!r}")
    pois: GridSpatialIndex[POI] = GridSpatialIndex(**payload["poi_index"])
    for row in payload["pois"]:
        point = GeoPoint(row["lat"], row["lon"])
        item = POI(row["id"], row["name"], point, row["tags"]) if "name" in row else None
        pois.insert(row["id"], point, item)
    graph = RoadGraph(node_index=GridSpatialIndex(**payload["node_index"]))
    for row in payload["nodes"]:
        graph.add_node(row["id"], GeoPoint(row["lat"], row["lon"]))
    for row in payload["edges"]:
        graph.add_edge(
            row["source"],
            row["target"],
            row["length_m"],
            row["directed"],
            speed_mps=row["speed_mps"],
            edge_id=row["edge_id"],
        )
    return Snapshot(pois, graph)


def _check_json_ids(payload: dict) -> None:
    # JSON keeps int and str ids; anything else comes back as a different value
    for what in ("pois", "nodes"):
        for row in payload[what]:
            id = row["id"]
            if isinstance(id, bool) or not isinstance(id, (int, str)):
                raise ValueError(
                    f"{what[:-1]} id {id!r} does not survive JSON; use int/str ids or fmt='pickle'"
                )


# ------------------- Files -----------------------------------


def save_snapshot(path: str, pois: GridSpatialIndex[POI], graph: RoadGraph, fmt: str = "json"):
    if fmt not in ("json", "pickle"):
        raise ValueError(f"Unsupported snapshot fmt {fmt!r}")
    payload = to_payload(pois, graph)
    if fmt == "json":
        _check_json_ids(payload)
    tmp = f"{path}.tmp"
    try:
        if fmt == "json":
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(payload, f)
        else:
            with open(tmp, "wb") as f:
                pickle.dump(payload, f, protocol=pickle.HIGHEST_PROTOCOL)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


def load_snapshot(path: str, fmt: str = "json") -> Snapshot:
    if fmt == "json":
        with open(path, encoding="utf-8") as f:
            return from_payload(json.load(f))
    if fmt == "pickle":
        with open(path, "rb") as f:
            return from_payload(pickle.load(f))
    raise ValueError(f"Unsupported snapshot fmt {fmt!r}")
