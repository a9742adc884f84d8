# tests/app/test_build_from_config.py
import json

import pytest
from pydantic import ValidationError

from poi_reach.app.build import build
from poi_reach.domain.entities.geography import GeoPoint
from poi_reach.domain.graph.path_finder import TravelTimeCost
from poi_reach.io.loader import load_pois, load_roads
from poi_reach.io.query_logging import NoopHooks, QueryLogging
from poi_reach.io.recorder import MemorySink, Recorder

POIS = [
    {"id": 1, "name": "cafe", "lat": 0.0, "lon": 0.0005},
    {"id": 2, "name": "school", "lat": 0.0, "lon": 0.0095},
]
NODES = [
    {"id": "n0", "lat": 0.0, "lon": 0.0},
    {"id": "n1", "lat": 0.0, "lon": 0.005},
    {"id": "n2", "lat": 0.0, "lon": 0.01},
]
EDGES = [{"source": "n0", "target": "n1"}, {"source": "n1", "target": "n2", "length_m": 700.0}]


def _populate(app):
    load_pois(app.pois, POIS)
    load_roads(app.graph, NODES, EDGES)


def test_build_runs():
    cfg = {
        "name": "test",
        "run_id": "t-1",
        "poi_index": {"kind": "grid", "cell_deg": 0.005},
        "engine": {"workers": 2},
    }
    app = build(cfg, use_logging=False)
    assert isinstance(app.hooks, NoopHooks)
    assert app.pois.cell_deg == 0.005
    _populate(app)
    res = app.engine.nearest_reachable((0.0, 0.0), 2_000.0, k=5)
    assert res.ids() == [1, 2]
    assert res[1].path_length_m == pytest.approx(556.0 + 700.0, abs=1.0)
    app.close()


def test_defaults_build_without_config():
    app = build(use_logging=False)
    assert app.config.engine.strategy == "per_candidate"
    assert app.engine.workers == 4
    assert app.engine.snap_slack_m == 500.0
    assert len(app.pois) == 0 and app.graph.node_count == 0


def test_cost_kind_selects_path_finder_cost():
    cfg = {"path_finder": {"cost": {"kind": "travel_time", "default_speed_mps": 5.0}}}
    app = build(cfg, use_logging=False)
    assert isinstance(app.path_finder.cost_fn, TravelTimeCost)
    assert app.path_finder.cost_fn.default_speed_mps == 5.0


def test_bad_config_is_rejected():
    with pytest.raises(ValidationError):
        build({"engine": {"workers": 0}})
    with pytest.raises(ValidationError):
        build({"poi_index": {"kind": "rtree"}})
    with pytest.raises(ValidationError):
        build({"surprise": True})
    with pytest.raises(ValidationError):
        build({"poi_index": {"knn_seed_radius_m": 5_000.0, "knn_max_radius_m": 100.0}})


def test_logging_hooks_record_queries():
    sink = MemorySink()
    app = build({"run_id": "rec"}, recorder=Recorder(sink))
    assert isinstance(app.hooks, QueryLogging)
    _populate(app)
    app.engine.nearest((0.0, 0.0), 1)
    (ev,) = sink.events
    assert ev.name == "QueryServed" and ev.run_id == "rec"
    assert (ev.returned, ev.total, ev.k) == (1, 1, 1)


def test_snapshot_roundtrip_through_config(tmp_path):
    path = tmp_path / "city.json"
    app = build({"snapshot": {"file": str(path), "must_exist": False}}, use_logging=False)
    _populate(app)
    before = app.engine.nearest_reachable((0.0, 0.0), 2_000.0, k=5)
    app.save()
    assert path.exists()

    again = build({"snapshot": {"file": str(path)}}, use_logging=False)
    assert len(again.pois) == 2 and again.graph.node_count == 3
    after = again.engine.nearest_reachable((0.0, 0.0), 2_000.0, k=5)
    assert [(h.poi, h.path_length_m) for h in after] == [(h.poi, h.path_length_m) for h in before]


def test_missing_snapshot_must_exist(tmp_path):
    with pytest.raises(FileNotFoundError):
        build({"snapshot": {"file": str(tmp_path / "nope.json")}}, use_logging=False)


def test_save_needs_a_path():
    app = build(use_logging=False)
    with pytest.raises(ValueError):
        app.save()


def test_recorded_queries_go_to_the_events_file(tmp_path):
    events = tmp_path / "events.jsonl"
    app = build({"run_id": "f-1", "log": {"record_queries": True, "events_file": str(events)}})
    _populate(app)
    app.engine.nearest((0.0, 0.0), 2)
    app.close()
    (line,) = events.read_text(encoding="utf-8").splitlines()
    assert json.loads(line)["name"] == "QueryServed"
    assert json.loads(line)["run_id"] == "f-1"


def test_bare_index_entries_survive_save(tmp_path):
    path = tmp_path / "bare.json"
    app = build(use_logging=False)
    app.pois.insert("x", GeoPoint(0.0, 0.0))
    app.save(str(path))
    again = build({"snapshot": {"file": str(path)}}, use_logging=False)
    assert again.pois.point("x") == GeoPoint(0.0, 0.0)
    assert again.engine.nearest((0.0, 0.0), 1)[0].poi.name == "x"
