"""
Declarative routing: controllers and routes are declared as metadata on
import, then compiled and mounted once by register_routes().
"""

from core.routing.compiler import RouteCompiler, RouteRegistrationResult, register_routes
from core.routing.decorators import (
    ApiDoc,
    ApiResponse,
    Auth,
    Controller,
    Delete,
    Get,
    Head,
    Options,
    Patch,
    Post,
    Public,
    Put,
    RateLimit,
    UseMiddleware,
    Validate,
)
from core.routing.metadata import (
    AUTHENTICATE,
    ControllerDescriptor,
    HTTPMethod,
    MetadataRegistry,
    RouteDescriptor,
    default_registry,
)

__all__ = [
    "AUTHENTICATE",
    "ApiDoc",
    "ApiResponse",
    "Auth",
    "Controller",
    "ControllerDescriptor",
    "Delete",
    "Get",
    "HTTPMethod",
    "Head",
    "MetadataRegistry",
    "Options",
    "Patch",
    "Post",
    "Public",
    "Put",
    "RateLimit",
    "RouteCompiler",
    "RouteDescriptor",
    "RouteRegistrationResult",
    "UseMiddleware",
    "Validate",
    "default_registry",
    "register_routes",
]
