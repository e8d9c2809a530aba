# carpool/core/__init__.py
"""
Доменное ядро: геометрия, подбор, тарифы, поездки, уведомления.
"""
