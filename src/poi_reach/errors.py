# poi_reach/errors.py


class PoiReachError(Exception):
    """Base class for every error raised by poi_reach."""


class NotFound(PoiReachError, KeyError):
    """remove/update on an id the index does not hold."""


class DuplicateId(PoiReachError, ValueError):
    pass


class UnknownNode(PoiReachError, KeyError):
    """Edge endpoint or search endpoint is not a node of the graph."""


class EmptyGraph(PoiReachError):
    pass


class InvalidWeight(PoiReachError, ValueError):
    """Negative (or NaN) edge length or traversal cost."""


class InsufficientCoverage(PoiReachError):
    """k-nearest search hit its max radius before finding k entities."""

    def __init__(self, k: int, found: int, max_radius_m: float):
        super().__init__(f"found {found} of {k} entities within {max_radius_m:.1f} m")
        self.k, self.found, self.max_radius_m = k, found, max_radius_m


class NoCandidates(PoiReachError):
    """Candidate generation produced nothing to rank."""


class SearchTimeout(PoiReachError):
    pass


class LoaderError(PoiReachError, ValueError):
    def __init__(self, msg: str, *, row: int | None = None):
        super().__init__(msg if row is None else f"row {row}: {msg}")
        self.row = row
