"""
Root config module: re-exports settings so scripts can `from config import get_settings`.
"""

from core.config import Settings, get_settings

__all__ = ["Settings", "get_settings"]
