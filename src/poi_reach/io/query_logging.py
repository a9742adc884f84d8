# poi_reach/io/query_logging.py
import json
import logging
import sys

from poi_reach.io.query_events import QueryFailed, QueryServed
from poi_reach.io.recorder import Recorder


def _default_json_logger(name="poi_reach", level="INFO"):
    logger = logging.getLogger(name)
    if not logger.handlers:
        h = logging.StreamHandler(sys.stdout)

        class _JsonFormatter(logging.Formatter):
            def format(self, record: logging.LogRecord) -> str:
                payload = {
                    "ts": self.formatTime(record),
                    "level": record.levelname,
                    "msg": record.getMessage(),
                    "logger": record.name,
                }
                extra = getattr(record, "extra", None)
                if isinstance(extra, dict):
                    payload.update(extra)
                if record.exc_info:
                    # sink failures and the like carry a traceback
                    payload["exc"] = self.formatException(record.exc_info)
                return json.dumps(payload, default=str)

        h.setFormatter(_JsonFormatter())
        logger.addHandler(h)
        logger.setLevel(level)
    return logger


class NoopHooks:
    def query_start(self, **_):
        pass

    def candidates(self, **_):
        pass

    def candidate_dropped(self, **_):
        pass

    def query_end(self, **_):
        pass

    def error(self, **_):
        pass


class QueryLogging(NoopHooks):
    """
    One place to shape and emit structured logs for queries, plus analytics
    events through an optional Recorder.
    """

    def __init__(
        self,
        run_id: str = "local",
        level: str = "INFO",
        debug: bool = False,
        logger: logging.Logger | None = None,
        recorder: Recorder | None = None,
    ):
        self.run_id, self.debug, self.recorder = run_id, debug, recorder
        self.log = logger or _default_json_logger(level=level)
        self._requests: dict[int, object] = {}
        self._candidates: dict[int, int] = {}

    # --------------- Helpers -----------------------------

    def _emit(self, level: str, msg: str, **extra):
        self.log.log(getattr(logging, level), msg, extra={"extra": {"run_id": self.run_id, **extra}})

    @staticmethod
    def _shape_request(req) -> dict:
        return {
            "center": (req.center.lat, req.center.lon),
            "radius_m": req.radius_m,
            "k": req.k,
            "offset": req.offset,
            "cutoff": req.cutoff,
        }

    # --------------------------------------------------------

    def query_start(self, *, query_id: int, request):
        self._requests[query_id] = request
        self._emit("DEBUG", "query_start", query_id=query_id, **self._shape_request(request))

    def candidates(self, *, query_id: int, count: int, stage: str):
        if stage == "spatial":
            self._candidates[query_id] = count
        self._emit("DEBUG", "candidates", query_id=query_id, stage=stage, count=count)

    def candidate_dropped(self, *, query_id: int, poi_id, reason: str):
        if self.debug:
            self._emit("DEBUG", "candidate_dropped", query_id=query_id, poi_id=poi_id, reason=reason)

    def query_end(self, *, query_id: int, result, wall_ms: float):
        req = self._requests.pop(query_id, None)
        candidates = self._candidates.pop(query_id, 0)
        self._emit(
            "INFO",
            "query_served",
            query_id=query_id,
            returned=len(result),
            total=result.total,
            timed_out=len(result.timed_out),
            wall_ms=round(wall_ms, 3),
        )
        if self.recorder and req is not None:
            self.recorder.emit(
                QueryServed(
                    run_id=self.run_id,
                    query_id=query_id,
                    name="QueryServed",
                    center=(req.center.lat, req.center.lon),
                    radius_m=req.radius_m,
                    k=req.k,
                    cutoff=req.cutoff,
                    candidates=candidates,
                    returned=len(result),
                    total=result.total,
                    timed_out=len(result.timed_out),
                    wall_ms=wall_ms,
                )
            )

    def error(self, *, query_id: int, exc: BaseException):
        self._requests.pop(query_id, None)
        self._candidates.pop(query_id, None)
        reason = type(exc).__name__
        level = "INFO" if reason in ("NoCandidates", "InsufficientCoverage") else "ERROR"
        self._emit(level, "query_failed", query_id=query_id, reason=reason, error=str(exc))
        if self.recorder:
            self.recorder.emit(
                QueryFailed(
                    run_id=self.run_id,
                    query_id=query_id,
                    name="QueryFailed",
                    error=str(exc),
                    reason=reason,
                )
            )
