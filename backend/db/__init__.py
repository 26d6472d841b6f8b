"""
Database Layer
Local persistence for triggers, settings, history and evaluation state.
"""

from .sqlite import NotificationStorage, get_storage

__all__ = ["NotificationStorage", "get_storage"]
