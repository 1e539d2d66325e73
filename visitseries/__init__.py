"""Recurring visit series: expansion, propagation, reconciliation and pricing"""

__version__ = "1.0.0"
