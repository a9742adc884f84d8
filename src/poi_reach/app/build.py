# poi_reach/app/build.py
import os
from collections.abc import Mapping
from dataclasses import dataclass

from poi_reach.app.engine import HybridSearchEngine
from poi_reach.config.models import AppModel
from poi_reach.domain.entities.geography import POI
from poi_reach.domain.graph.path_finder import PathFinder
from poi_reach.domain.graph.road_graph import RoadGraph
from poi_reach.domain.index.spatial_index import GridSpatialIndex
from poi_reach.io.query_logging import NoopHooks, QueryLogging
from poi_reach.io.recorder import JsonlSink, Recorder
from poi_reach.runtime.registries import make_cost, make_index
from poi_reach.runtime.resources import load_snapshot, save_snapshot


@dataclass
class App:
    config: AppModel
    pois: GridSpatialIndex[POI]
    graph: RoadGraph
    path_finder: PathFinder
    engine: HybridSearchEngine
    hooks: QueryLogging | NoopHooks

    def save(self, path: str | None = None, fmt: str | None = None) -> None:
        snap = self.config.snapshot
        if path is None and snap is None:
            raise ValueError("no snapshot path given or configured")
        save_snapshot(
            path or snap.file, self.pois, self.graph, fmt or (snap.fmt if snap else "json")
        )

    def close(self) -> None:
        self.engine.close()
        if isinstance(self.hooks, QueryLogging) and self.hooks.recorder is not None:
            self.hooks.recorder.close()


def build(
    cfg: AppModel | Mapping | None = None,
    *,
    use_logging: bool = True,
    recorder: Recorder | None = None,
) -> App:
    # 0) Validate config
    if cfg is None:
        model = AppModel()
    else:
        model = cfg if isinstance(cfg, AppModel) else AppModel.model_validate(cfg)

    # 1) Indexes: from a snapshot file when one is configured and present
    snap_cfg = model.snapshot
    if snap_cfg is not None and os.path.exists(snap_cfg.file):
        loaded = load_snapshot(snap_cfg.file, snap_cfg.fmt)
        pois, graph = loaded.pois, loaded.graph
    elif snap_cfg is not None and snap_cfg.must_exist:
        raise FileNotFoundError(snap_cfg.file)
    else:
        pois = make_index(model.poi_index)
        graph = RoadGraph(node_index=make_index(model.graph.node_index))

    # 2) Path search
    path_finder = PathFinder(make_cost(model.path_finder.cost))

    # 3) Hooks (structured logs + optional analytics)
    if use_logging:
        if recorder is None and model.log.record_queries:
            path = model.log.events_file
            recorder = Recorder(JsonlSink(path=path) if path else JsonlSink())
        hooks = QueryLogging(
            run_id=model.run_id,
            level=model.log.level,
            debug=model.log.debug,
            recorder=recorder,
        )
    else:
        hooks = NoopHooks()

    # 4) Engine
    engine = HybridSearchEngine(
        pois,
        graph,
        path_finder,
        workers=model.engine.workers,
        candidate_timeout_s=model.engine.candidate_timeout_s,
        strategy=model.engine.strategy,
        knn_overfetch=model.engine.knn_overfetch,
        snap_slack_m=model.engine.snap_slack_m,
        hooks=hooks,
    )
    return App(model, pois, graph, path_finder, engine, hooks)
