"""Bookings domain - recurring visit series"""

from .router import router

__all__ = ["router"]
