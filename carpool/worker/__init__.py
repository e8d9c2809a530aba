# carpool/worker/__init__.py
"""
Фоновые воркеры обслуживания поездок.
"""

from carpool.worker.base import PeriodicWorker
from carpool.worker.sweepers import PaymentCheckWorker, TripExpiryWorker

__all__ = ["PeriodicWorker", "PaymentCheckWorker", "TripExpiryWorker"]
