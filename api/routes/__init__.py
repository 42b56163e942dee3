"""
Route modules. Importing them declares their controllers into the default
registry; main.create_app compiles and mounts them.
"""

from api.routes.auth import auth as auth_controller
from api.routes.health import health as health_controller

__all__ = ["auth_controller", "health_controller"]
