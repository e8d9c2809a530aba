# carpool/common/__init__.py
"""
Общие компоненты: константы, логирование, ошибки.
"""
