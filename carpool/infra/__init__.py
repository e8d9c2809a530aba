# carpool/infra/__init__.py
"""
Инфраструктурные адаптеры: PostgreSQL, Redis, RabbitMQ.
"""
