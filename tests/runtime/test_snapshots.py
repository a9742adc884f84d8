# tests/runtime/test_snapshots.py
import json

import pytest

from poi_reach.domain.entities.geography import GeoPoint
from poi_reach.domain.index.spatial_index import GridSpatialIndex
from poi_reach.runtime.resources import (
    SNAPSHOT_VERSION,
    from_payload,
    load_snapshot,
    save_snapshot,
    to_payload,
)
from poi_reach.runtime.rng import RNGRegistry
from poi_reach.runtime.synthetic import box_around, grid_road_graph, random_pois

CENTER = GeoPoint(-23.55, -46.63)


@pytest.fixture
def world():
    rng = RNGRegistry(4)
    pois = GridSpatialIndex(cell_deg=0.002, knn_seed="fixed", knn_seed_radius_m=250.0)
    for p in random_pois(rng.stream("pois"), 40, box_around(CENTER, 1_000.0)):
        pois.insert(p.id, p.location, p)
    graph = grid_road_graph(CENTER, 5, 5, 120.0, rng=rng.stream("drops"), drop_fraction=0.2)
    graph.add_edge(0, 24, 999.0, directed=True, speed_mps=4.5)
    return pois, graph


def _same(a_pois, a_graph, b_pois, b_graph):
    by_id = lambda e: e[0]  # noqa: E731
    assert sorted(b_pois.entries(), key=by_id) == sorted(a_pois.entries(), key=by_id)
    assert b_pois.settings() == a_pois.settings()
    assert list(b_graph.nodes()) == list(a_graph.nodes())
    assert b_graph.edges() == a_graph.edges()
    assert b_graph.edge_count == a_graph.edge_count
    assert b_graph.node_index_settings() == a_graph.node_index_settings()


@pytest.mark.parametrize("fmt", ["json", "pickle"])
def test_snapshot_roundtrip(tmp_path, world, fmt):
    pois, graph = world
    path = tmp_path / f"world.{fmt}"
    save_snapshot(str(path), pois, graph, fmt)
    assert not (tmp_path / f"world.{fmt}.tmp").exists()
    snap = load_snapshot(str(path), fmt)
    _same(pois, graph, snap.pois, snap.graph)


def test_pickle_keeps_tuple_ids(tmp_path):
    pois = GridSpatialIndex()
    pois.insert(("osm", 1), GeoPoint(1.0, 2.0), None)
    graph = grid_road_graph(CENTER, 1, 2, 50.0)
    path = tmp_path / "ids.pkl"
    save_snapshot(str(path), pois, graph, "pickle")
    assert load_snapshot(str(path), "pickle").pois.point(("osm", 1)) == GeoPoint(1.0, 2.0)


def test_payload_is_plain_json(world):
    pois, graph = world
    payload = json.loads(json.dumps(to_payload(pois, graph)))
    assert payload["version"] == SNAPSHOT_VERSION
    assert len(payload["pois"]) == 40 and len(payload["nodes"]) == 25
    snap = from_payload(payload)
    _same(pois, graph, snap.pois, snap.graph)


def test_unknown_version_and_format(tmp_path, world):
    pois, graph = world
    payload = to_payload(pois, graph)
    payload["version"] = 99
    with pytest.raises(ValueError):
        from_payload(payload)
    with pytest.raises(ValueError):
        save_snapshot(str(tmp_path / "x"), pois, graph, "yaml")
    with pytest.raises(ValueError):
        load_snapshot(str(tmp_path / "x"), "yaml")


@pytest.mark.parametrize("fmt", ["json", "pickle"])
def test_bare_entries_roundtrip(tmp_path, world, fmt):
    pois, graph = world
    pois.insert(10_000, GeoPoint(-23.551, -46.631))
    path = tmp_path / f"bare.{fmt}"
    save_snapshot(str(path), pois, graph, fmt)
    snap = load_snapshot(str(path), fmt)
    assert snap.pois.point(10_000) == GeoPoint(-23.551, -46.631)
    assert snap.pois.get(10_000) is None
    _same(pois, graph, snap.pois, snap.graph)


def test_json_rejects_ids_it_cannot_keep(tmp_path):
    pois = GridSpatialIndex()
    pois.insert(("osm", 1), GeoPoint(1.0, 2.0))
    path = tmp_path / "ids.json"
    with pytest.raises(ValueError):
        save_snapshot(str(path), pois, grid_road_graph(CENTER, 1, 2, 50.0), "json")
    assert list(tmp_path.iterdir()) == []


class _NoPickle:
    def __reduce__(self):
        raise RuntimeError("not picklable")


def test_failed_write_leaves_no_files(tmp_path, world):
    pois, graph = world
    path = tmp_path / "world.pkl"
    save_snapshot(str(path), pois, graph, "pickle")
    before = path.read_bytes()

    pois.insert(_NoPickle(), GeoPoint(-23.55, -46.63))
    with pytest.raises(RuntimeError):
        save_snapshot(str(path), pois, graph, "pickle")
    assert not (tmp_path / "world.pkl.tmp").exists()
    assert path.read_bytes() == before
