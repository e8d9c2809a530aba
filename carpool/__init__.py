# carpool/__init__.py
"""
Carpool: движок подбора совместных поездок и распределения стоимости.
"""

__version__ = "1.0.0"
