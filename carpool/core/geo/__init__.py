# carpool/core/geo/__init__.py
"""
Геометрия и маршруты.
"""

from carpool.core.geo.kernel import (
    GeoPoint,
    Route,
    SegmentProjection,
    bearing_degrees,
    bearing_difference,
    closest_point_on_segment,
    decode_polyline,
    haversine_meters,
)

__all__ = [
    "GeoPoint",
    "Route",
    "SegmentProjection",
    "bearing_degrees",
    "bearing_difference",
    "closest_point_on_segment",
    "decode_polyline",
    "haversine_meters",
]
