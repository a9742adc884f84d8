# poi_reach/runtime/synthetic.py
import numpy as np

from poi_reach.domain.entities.geography import POI, BoundingBox, GeoPoint
from poi_reach.domain.geodesy import M_PER_DEG, distance, meters_per_degree
from poi_reach.domain.graph.road_graph import RoadGraph

CATEGORIES = ("cafe", "pharmacy", "school", "fuel", "park")


def random_points(rng: np.random.Generator, n: int, box: BoundingBox) -> list[GeoPoint]:
    if box.wraps:
        raise ValueError("sampling box must not wrap the antimeridian")
    lats = rng.uniform(box.min_lat, box.max_lat, size=n)
    lons = rng.uniform(box.min_lon, box.max_lon, size=n)
    return [GeoPoint(float(a), float(b)) for a, b in zip(lats, lons)]


def random_pois(rng: np.random.Generator, n: int, box: BoundingBox) -> list[POI]:
    """POIs with integer ids 0..n-1 and a random `amenity` tag."""
    cats = rng.integers(0, len(CATEGORIES), size=n)
    return [
        POI(i, f"poi-{i}", p, {"amenity": CATEGORIES[int(c)]})
        for i, (p, c) in enumerate(zip(random_points(rng, n, box), cats))
    ]


def grid_road_graph(
    origin: GeoPoint,
    rows: int,
    cols: int,
    spacing_m: float,
    *,
    rng: np.random.Generator | None = None,
    drop_fraction: float = 0.0,
    detour: float = 1.0,
    first_id: int = 0,
) -> RoadGraph:
    """
    rows x cols lattice of undirected streets north/east of `origin`; node id
    = first_id + r * cols + c. With `rng`, each street is dropped with
    probability `drop_fraction`. Edge length = geodesic length * detour.
    """
    if detour < 1.0:
        raise ValueError("detour must be >= 1 so road length never beats the straight line")
    m_lat, m_lon = meters_per_degree(origin.lat)
    dlat, dlon = spacing_m / m_lat, spacing_m / m_lon
    g = RoadGraph()
    for r in range(rows):
        for c in range(cols):
            p = GeoPoint(origin.lat + r * dlat, origin.lon + c * dlon)
            g.add_node(first_id + r * cols + c, p)
    for r in range(rows):
        for c in range(cols):
            u = first_id + r * cols + c
            for v in (u + 1 if c + 1 < cols else None, u + cols if r + 1 < rows else None):
                if v is None:
                    continue
                if rng is not None and drop_fraction > 0 and rng.random() < drop_fraction:
                    continue
                g.add_edge(u, v, distance(g.node_point(u), g.node_point(v)) * detour)
    return g


def random_road_graph(
    rng: np.random.Generator, n_nodes: int, n_edges: int, box: BoundingBox, *, directed_share=0.3
) -> RoadGraph:
    """Sparse random graph; edges may be directed and lengths carry a random detour."""
    g = RoadGraph()
    for i, p in enumerate(random_points(rng, n_nodes, box)):
        g.add_node(i, p)
    for _ in range(n_edges):
        u, v = (int(x) for x in rng.integers(0, n_nodes, size=2))
        length = distance(g.node_point(u), g.node_point(v)) * float(rng.uniform(1.0, 1.5))
        g.add_edge(u, v, length, directed=bool(rng.random() < directed_share))
    return g


def box_around(center: GeoPoint, half_size_m: float) -> BoundingBox:
    m_lat, m_lon = M_PER_DEG, meters_per_degree(center.lat)[1]
    return BoundingBox(
        center.lat - half_size_m / m_lat,
        center.lat + half_size_m / m_lat,
        center.lon - half_size_m / m_lon,
        center.lon + half_size_m / m_lon,
    )
