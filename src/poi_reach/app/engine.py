# poi_reach/app/engine.py
import itertools
import threading
import time
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Literal

from poi_reach.app.protocols import QueryHooks, SpatialIndex
from poi_reach.app.query import QueryHit, QueryRequest, QueryResult
from poi_reach.domain.entities.geography import POI, EntityId, Route
from poi_reach.domain.geodesy import distance
from poi_reach.domain.graph.path_finder import PathFinder
from poi_reach.domain.graph.road_graph import RoadGraph, RoadGraphSnapshot
from poi_reach.errors import NoCandidates, SearchTimeout
from poi_reach.io.query_logging import NoopHooks

Candidate = tuple[EntityId, float, POI]  # (poi id, straight-line m, poi)

_TIMED_OUT = object()


class HybridSearchEngine:
    """
    Nearest-POI queries with optional road-network reachability.

    Per query: spatial candidates -> (reachability) nearest road node for the
    center and for each candidate, bounded path search per distinct node on a
    worker pool over one immutable graph snapshot -> rank -> offset/k.

    The engine holds no per-query state. Its worker pool is created on first
    use and released by close() (or by leaving a `with` block).
    """

    def __init__(
        self,
        pois: SpatialIndex,
        graph: RoadGraph | None = None,
        path_finder: PathFinder | None = None,
        *,
        workers: int = 4,
        candidate_timeout_s: float | None = None,
        strategy: Literal["per_candidate", "single_source"] = "per_candidate",
        knn_overfetch: int = 4,
        snap_slack_m: float = 500.0,
        hooks: QueryHooks | None = None,
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if strategy not in ("per_candidate", "single_source"):
            raise ValueError(f"Unknown strategy {strategy!r}")
        if snap_slack_m < 0:
            raise ValueError("snap_slack_m must be >= 0")
        self.pois, self.graph = pois, graph
        self.path_finder = path_finder or PathFinder()
        self.workers, self.candidate_timeout_s = workers, candidate_timeout_s
        self.strategy, self.knn_overfetch = strategy, knn_overfetch
        self.snap_slack_m = snap_slack_m
        self.hooks = hooks or NoopHooks()
        self._seq = itertools.count(1)
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()

    # ------------------- Lifecycle -------------------------------

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.workers, thread_name_prefix="poi-reach"
                )
            return self._executor

    def close(self) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ------------------- POI mutation ----------------------------

    def add_poi(self, poi: POI) -> None:
        self.pois.insert(poi.id, poi.location, poi)

    def remove_poi(self, poi_id: EntityId) -> POI:
        return self.pois.remove(poi_id)

    def get_poi(self, poi_id: EntityId) -> POI:
        return self.pois.get(poi_id)

    # ------------------- Query surface ---------------------------

    def search(self, request: QueryRequest | Mapping) -> QueryResult:
        req = request if isinstance(request, QueryRequest) else QueryRequest.model_validate(request)
        qid = next(self._seq)
        t0 = time.perf_counter()
        self.hooks.query_start(query_id=qid, request=req)
        try:
            result = self._run(qid, req)
        except Exception as exc:
            self.hooks.error(query_id=qid, exc=exc)
            raise
        self.hooks.query_end(
            query_id=qid, result=result, wall_ms=(time.perf_counter() - t0) * 1000
        )
        return result

    def nearest(self, center, k: int, **kw) -> QueryResult:
        return self.search({"center": center, "k": k, **kw})

    def nearest_reachable(self, center, cutoff: float, **kw) -> QueryResult:
        return self.search(
            {"center": center, "reachability": {"kind": "graph", "cutoff": cutoff}, **kw}
        )

    # ------------------- Stages ----------------------------------

    def _run(self, qid: int, req: QueryRequest) -> QueryResult:
        if not req.wants_reachability:
            candidates = self._candidates(req)
            self.hooks.candidates(query_id=qid, count=len(candidates), stage="spatial")
            _require(candidates, req)
            hits = [QueryHit(_as_poi(pid, poi, self.pois), d) for pid, d, poi in candidates]
            return _page(hits, req)

        if self.graph is None:
            raise ValueError("reachability requested but the engine has no road graph")
        snap = self.graph.snapshot()
        origin = snap.nearest_node(req.center)
        candidates = self._candidates(req, snap, origin)
        self.hooks.candidates(query_id=qid, count=len(candidates), stage="spatial")
        _require(candidates, req)

        hits, timed_out = self._reachable(qid, req, snap, origin, candidates)
        self.hooks.candidates(query_id=qid, count=len(hits), stage="reachable")
        hits.sort(key=lambda h: h.rank_key)
        return _page(hits, req, timed_out)

    def _candidates(
        self,
        req: QueryRequest,
        snap: RoadGraphSnapshot | None = None,
        origin: EntityId | None = None,
    ) -> list[Candidate]:
        if req.radius_m is not None:
            return self.pois.query_radius(req.center, req.radius_m, items=True)
        want = req.k + req.offset
        if snap is None:
            return self.pois.query_k_nearest(req.center, want, items=True)
        if self.path_finder.cost_fn.units == "m":
            # routes run node to node: center -> origin, road <= cutoff, node -> POI
            reach = distance(req.center, snap.node_point(origin)) + req.cutoff + self.snap_slack_m
            return self.pois.query_radius(req.center, reach, items=True)
        return self.pois.query_k_nearest(req.center, want * self.knn_overfetch, items=True)

    def _reachable(
        self,
        qid: int,
        req: QueryRequest,
        snap: RoadGraphSnapshot,
        origin: EntityId,
        candidates: list[Candidate],
    ) -> tuple[list[QueryHit], list[EntityId]]:
        by_node: dict[EntityId, list[Candidate]] = {}
        for pid, d, poi in candidates:
            poi = _as_poi(pid, poi, self.pois)
            by_node.setdefault(snap.nearest_node(poi.location), []).append((pid, d, poi))

        if self.strategy == "single_source":
            tree = self.path_finder.shortest_path_tree(snap, origin, req.cutoff)
            outcomes = {node: tree.route_to(node) for node in by_node}
        else:
            outcomes = self._search_each(snap, origin, list(by_node), req.cutoff)

        hits: list[QueryHit] = []
        timed_out: list[EntityId] = []
        for node, group in by_node.items():
            route = outcomes[node]
            for pid, d, poi in group:
                if route is _TIMED_OUT:
                    timed_out.append(pid)
                    self.hooks.candidate_dropped(query_id=qid, poi_id=pid, reason="timeout")
                elif route is None:
                    self.hooks.candidate_dropped(query_id=qid, poi_id=pid, reason="unreachable")
                else:
                    hits.append(
                        QueryHit(
                            poi,
                            d,
                            path_length_m=route.length_m,
                            path_cost=route.cost,
                            route=route if req.include_routes else None,
                        )
                    )
        timed_out.sort()
        return hits, timed_out

    def _search_each(
        self, snap: RoadGraphSnapshot, origin: EntityId, nodes: list[EntityId], cutoff: float
    ) -> dict:
        """One bounded search per target node, fanned out and joined before returning."""
        cancel = threading.Event()
        pool = self._pool()
        futures: dict[EntityId, Future] = {
            node: pool.submit(self._search_one, snap, origin, node, cutoff, cancel)
            for node in nodes
        }
        outcomes: dict = {}
        try:
            for node, fut in futures.items():
                outcomes[node] = fut.result()
        finally:
            # stops stragglers if a worker raised; a no-op once all are done
            cancel.set()
        return outcomes

    def _search_one(
        self,
        snap: RoadGraphSnapshot,
        origin: EntityId,
        node: EntityId,
        cutoff: float,
        cancel: threading.Event,
    ) -> Route | None | object:
        deadline = (
            time.monotonic() + self.candidate_timeout_s
            if self.candidate_timeout_s is not None
            else None
        )
        try:
            return self.path_finder.shortest_path(
                snap, origin, node, cutoff, deadline=deadline, cancel=cancel
            )
        except SearchTimeout:
            return _TIMED_OUT


def _as_poi(pid: EntityId, item, index: SpatialIndex) -> POI:
    if isinstance(item, POI):
        return item
    # bare entry without a payload
    return POI(pid, str(pid), index.point(pid))


def _require(candidates: list[Candidate], req: QueryRequest) -> None:
    if not candidates:
        raise NoCandidates(f"no POIs near ({req.center.lat}, {req.center.lon})")


def _page(hits: list[QueryHit], req: QueryRequest, timed_out=()) -> QueryResult:
    end = req.offset + req.k if req.k is not None else None
    return QueryResult(
        hits=hits[req.offset : end],
        total=len(hits),
        offset=req.offset,
        timed_out=tuple(timed_out),
    )

