# poi_reach/domain/geodesy.py
import math

import numpy as np

from poi_reach.domain.entities.geography import BoundingBox, GeoPoint

EARTH_RADIUS_M = 6_371_008.8  # mean radius
M_PER_DEG = EARTH_RADIUS_M * math.pi / 180.0
HALF_CIRCUMFERENCE_M = math.pi * EARTH_RADIUS_M

_BOX_PAD = 1e-9  # relative widening of every bbox delta
_BOX_PAD_DEG = 1e-12


def distance(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle (haversine) distance in meters."""
    if a == b:
        return 0.0
    phi1, phi2 = math.radians(a.lat), math.radians(b.lat)
    dphi = phi2 - phi1
    dlam = math.radians(b.lon - a.lon)
    h = math.sin(dphi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2.0) ** 2
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(max(0.0, h))))


def distances_from(center: GeoPoint, lats, lons) -> np.ndarray:
    """Vectorized haversine from one point to many (degrees in, meters out)."""
    lat = np.radians(np.asarray(lats, dtype=float))
    lon = np.radians(np.asarray(lons, dtype=float))
    phi0, lam0 = math.radians(center.lat), math.radians(center.lon)
    h = np.sin((lat - phi0) / 2.0) ** 2 + math.cos(phi0) * np.cos(lat) * np.sin(
        (lon - lam0) / 2.0
    ) ** 2
    return 2.0 * EARTH_RADIUS_M * np.arcsin(np.minimum(1.0, np.sqrt(np.maximum(0.0, h))))


def meters_per_degree(lat: float) -> tuple[float, float]:
    """Local (m per degree latitude, m per degree longitude) at `lat`."""
    return M_PER_DEG, M_PER_DEG * math.cos(math.radians(lat))


def bounding_box(center: GeoPoint, radius_m: float) -> BoundingBox:
    """
    Lat/lon box that contains every point within `radius_m` of `center`.

    Deltas start from the local meters-per-degree at center.lat and are widened
    to the exact spherical extent of the disc where that is larger, so the box
    never under-approximates. Latitude is clamped to [-90, 90]; a disc touching
    a pole spans every longitude. A box crossing the antimeridian wraps
    (min_lon > max_lon).
    """
    if radius_m < 0 or math.isnan(radius_m):
        raise ValueError(f"radius must be >= 0, got {radius_m!r}")
    if radius_m >= HALF_CIRCUMFERENCE_M:
        return BoundingBox(-90.0, 90.0, -180.0, 180.0)

    m_lat, m_lon = meters_per_degree(center.lat)
    dlat = radius_m / m_lat * (1.0 + _BOX_PAD) + _BOX_PAD_DEG
    min_lat, max_lat = center.lat - dlat, center.lat + dlat
    if min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(max(-90.0, min_lat), min(90.0, max_lat), -180.0, 180.0)

    # exact half-width in longitude of a spherical cap: asin(sin d / cos phi)
    d = radius_m / EARTH_RADIUS_M
    cos_phi = math.cos(math.radians(center.lat))
    ratio = math.sin(d) / cos_phi
    if ratio >= 1.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)
    dlon_exact = math.degrees(math.asin(ratio))
    dlon_local = radius_m / m_lon if m_lon > 0 else 180.0
    dlon = max(dlon_exact, dlon_local) * (1.0 + _BOX_PAD) + _BOX_PAD_DEG
    if dlon >= 180.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)

    min_lon, max_lon = center.lon - dlon, center.lon + dlon
    if min_lon < -180.0:
        min_lon += 360.0
    if max_lon > 180.0:
        max_lon -= 360.0
    return BoundingBox(min_lat, max_lat, min_lon, max_lon)
