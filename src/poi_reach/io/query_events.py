# poi_reach/io/query_events.py

from dataclasses import dataclass


# Base type for analytics events
@dataclass
class QueryEvent:
    run_id: str
    query_id: int
    name: str  # stable event name


@dataclass
class QueryServed(QueryEvent):
    center: tuple[float, float]
    radius_m: float | None
    k: int | None
    cutoff: float | None
    candidates: int
    returned: int
    total: int
    timed_out: int
    wall_ms: float


@dataclass
class QueryFailed(QueryEvent):
    error: str
    reason: str
