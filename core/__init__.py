"""
Core package: configuration, tokens, revocation, routing and middleware.
Kept free of route modules so it can be compiled against any registry.
"""

from core.config import get_settings

__all__ = ["get_settings"]
