# carpool/core/matching/__init__.py
"""
Геометрический подбор попутных поездок.
"""

from carpool.core.matching.service import MatchingPolicy, RouteMatcher, RoutePosition, locate_point

__all__ = ["MatchingPolicy", "RouteMatcher", "RoutePosition", "locate_point"]
