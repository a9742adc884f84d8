import io
import json
import logging

import pytest

from poi_reach.app.engine import HybridSearchEngine
from poi_reach.domain.entities.geography import POI, GeoPoint
from poi_reach.domain.graph.road_graph import RoadGraph
from poi_reach.domain.index.spatial_index import GridSpatialIndex
from poi_reach.errors import NoCandidates
from poi_reach.io.query_events import QueryFailed, QueryServed
from poi_reach.io.query_logging import QueryLogging
from poi_reach.io.recorder import JsonlSink, MemorySink, Recorder


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def logger():
    log = logging.getLogger("poi_reach.test_query_logging")
    log.setLevel(logging.DEBUG)
    log.propagate = False
    handler = _ListHandler()
    log.addHandler(handler)
    yield log, handler
    log.removeHandler(handler)


def _engine(hooks):
    idx = GridSpatialIndex()
    for i in range(3):
        p = POI(i, f"poi-{i}", GeoPoint(0.0, 0.003 * i))
        idx.insert(p.id, p.location, p)
    g = RoadGraph()
    g.add_node("a", GeoPoint(0.0, 0.0))
    g.add_node("b", GeoPoint(0.0, 0.003))
    g.add_node("c", GeoPoint(0.0, 0.006))
    g.add_edge("a", "b", 400.0)
    return HybridSearchEngine(idx, g, hooks=hooks)


def test_served_query_is_logged_and_recorded(logger):
    log, handler = logger
    sink = MemorySink()
    hooks = QueryLogging(run_id="r-1", logger=log, recorder=Recorder(sink))
    _engine(hooks).search({"center": (0.0, 0.0), "radius_m": 1_000.0, "k": 2})

    msgs = [r.getMessage() for r in handler.records]
    assert msgs == ["query_start", "candidates", "query_served"]
    served = handler.records[-1]
    assert served.levelno == logging.INFO
    assert served.extra["run_id"] == "r-1"
    assert served.extra["returned"] == 2 and served.extra["total"] == 3

    (ev,) = sink.events
    assert isinstance(ev, QueryServed)
    assert (ev.query_id, ev.candidates, ev.returned, ev.radius_m) == (1, 3, 2, 1_000.0)
    assert ev.center == (0.0, 0.0)


def test_drops_are_logged_only_in_debug(logger):
    log, handler = logger
    req = {
        "center": (0.0, 0.0),
        "radius_m": 1_000.0,
        "reachability": {"kind": "graph", "cutoff": 1_000.0},
    }
    _engine(QueryLogging(logger=log)).search(req)
    assert "candidate_dropped" not in [r.getMessage() for r in handler.records]

    handler.records.clear()
    res = _engine(QueryLogging(logger=log, debug=True)).search(req)
    assert res.ids() == [0, 1]
    dropped = [r for r in handler.records if r.getMessage() == "candidate_dropped"]
    assert [(r.extra["poi_id"], r.extra["reason"]) for r in dropped] == [(2, "unreachable")]
    stages = [r.extra["stage"] for r in handler.records if r.getMessage() == "candidates"]
    assert stages == ["spatial", "reachable"]


def test_failures_are_logged_and_recorded(logger):
    log, handler = logger
    sink = MemorySink()
    engine = _engine(QueryLogging(logger=log, recorder=Recorder(sink)))
    with pytest.raises(NoCandidates):
        engine.search({"center": (45.0, 45.0), "radius_m": 10.0})
    failed = handler.records[-1]
    assert failed.getMessage() == "query_failed"
    assert failed.levelno == logging.INFO
    assert failed.extra["reason"] == "NoCandidates"
    (ev,) = sink.events
    assert isinstance(ev, QueryFailed) and ev.reason == "NoCandidates"


def test_jsonl_sink_writes_one_line_per_event():
    buf = io.StringIO()
    ev = QueryFailed(run_id="x", query_id=4, name="QueryFailed", error="e", reason="R")
    Recorder(JsonlSink(buf)).emit(ev)
    assert json.loads(buf.getvalue()) == {
        "run_id": "x",
        "query_id": 4,
        "name": "QueryFailed",
        "error": "e",
        "reason": "R",
    }


def test_broken_sink_does_not_fail_the_query(caplog):
    class Broken:
        def write(self, ev):
            raise OSError("disk full")

    good = MemorySink()
    rec = Recorder(Broken(), good)
    with caplog.at_level(logging.ERROR, logger="poi_reach.recorder"):
        rec.emit(QueryFailed(run_id="x", query_id=1, name="QueryFailed", error="e", reason="R"))
    assert len(good.events) == 1
    assert rec.failures == 1
    assert "Broken" in caplog.text


def test_recorder_counts_events_by_name(logger):
    log, _ = logger
    sink = MemorySink()
    rec = Recorder(sink)
    engine = _engine(QueryLogging(logger=log, recorder=rec))
    engine.search({"center": (0.0, 0.0), "k": 1})
    engine.search({"center": (0.0, 0.0), "k": 3})
    with pytest.raises(NoCandidates):
        engine.search({"center": (45.0, 45.0), "radius_m": 10.0})
    assert rec.counts == {"QueryServed": 2, "QueryFailed": 1}
    assert [ev.query_id for ev in sink.named("QueryServed")] == [1, 2]
    assert rec.failures == 0
