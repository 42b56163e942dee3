"""
Declaration surface for route modules.

    auth = Controller("/auth", description="Authentication")

    @auth.post("/login", description="Log in")
    @RateLimit(window_ms=15 * 60 * 1000, max=5)
    @Validate(LoginRequest)
    @Public()
    async def login(request: Request) -> ServiceResponse: ...

Every call here runs at import time and only records metadata; nothing is
mounted until core.routing.compiler consumes the registry.
"""

from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import BaseModel

from core.exceptions import RegistrationError
from core.ratelimit import RateLimitOptions
from core.routing.metadata import (
    AUTHENTICATE,
    ControllerDescriptor,
    HTTPMethod,
    MetadataRegistry,
    MiddlewareRef,
    default_registry,
    route_options,
)

T = TypeVar("T")
Handler = Callable[..., Any]


def Controller(
    prefix: str,
    *,
    middlewares: list[MiddlewareRef] | None = None,
    description: str | None = None,
    is_system_route: bool = False,
    tags: list[str] | None = None,
    registry: MetadataRegistry | None = None,
) -> ControllerDescriptor:
    """Create and register a controller. Routes are declared with controller.get/post/..."""
    target = registry or default_registry
    controller = ControllerDescriptor(
        prefix=prefix,
        middlewares=list(middlewares or []),
        description=description,
        is_system_route=is_system_route,
        tags=list(tags or []),
        registry=target,
    )
    target.register(controller)
    return controller


def _method_decorator(method: HTTPMethod) -> Callable[..., Callable[[Handler], Handler]]:
    def declare(
        controller: ControllerDescriptor,
        path: str,
        *,
        middlewares: list[MiddlewareRef] | None = None,
        description: str | None = None,
    ) -> Callable[[Handler], Handler]:
        return controller.route(method, path, middlewares=middlewares, description=description)

    declare.__name__ = method.value.capitalize()
    declare.__doc__ = f"Declare a {method.value} route on controller."
    return declare


Get = _method_decorator(HTTPMethod.GET)
Post = _method_decorator(HTTPMethod.POST)
Put = _method_decorator(HTTPMethod.PUT)
Patch = _method_decorator(HTTPMethod.PATCH)
Delete = _method_decorator(HTTPMethod.DELETE)
Options = _method_decorator(HTTPMethod.OPTIONS)
Head = _method_decorator(HTTPMethod.HEAD)


def UseMiddleware(*middlewares: MiddlewareRef) -> Callable[[T], T]:
    """
    Attach middleware to a handler (route scope) or a controller (controller scope).
    Stacked calls run outermost-first: the decorator listed on top runs first.
    """
    for middleware in middlewares:
        if middleware is not AUTHENTICATE and not callable(middleware):
            raise RegistrationError(f"Middleware {middleware!r} is not callable")

    def apply(target: T) -> T:
        if isinstance(target, ControllerDescriptor):
            target.prepend_middlewares(list(middlewares))
        elif callable(target):
            route_options(target).middlewares[:0] = middlewares
        else:
            raise RegistrationError(f"UseMiddleware cannot be applied to {target!r}")
        return target

    return apply


def Auth() -> Callable[[T], T]:
    """Require a valid, unrevoked bearer token."""
    return UseMiddleware(AUTHENTICATE)


def Public() -> Callable[[Handler], Handler]:
    """Exempt a route from authentication even when its controller requires it."""

    def apply(handler: Handler) -> Handler:
        route_options(handler).public = True
        return handler

    return apply


def Validate(schema: type[BaseModel]) -> Callable[[Handler], Handler]:
    """
    Validate {"body", "query", "params"} of the request against a pydantic model
    before any authorization-dependent middleware runs.
    """
    if not (isinstance(schema, type) and issubclass(schema, BaseModel)):
        raise RegistrationError(f"Validate expects a pydantic model, got {schema!r}")

    def apply(handler: Handler) -> Handler:
        route_options(handler).validation = schema
        return handler

    return apply


def RateLimit(*, window_ms: int, max: int, message: str | None = None) -> Callable[[Handler], Handler]:
    """Route-specific limit, checked before everything else in the chain."""
    options = RateLimitOptions(window_ms=window_ms, max=max, message=message)

    def apply(handler: Handler) -> Handler:
        route_options(handler).rate_limit = options
        return handler

    return apply


def ApiDoc(
    *,
    summary: str | None = None,
    description: str | None = None,
    tags: list[str] | None = None,
    deprecated: bool = False,
    responses: dict[int, dict[str, Any]] | None = None,
) -> Callable[[Handler], Handler]:
    """OpenAPI metadata. Never consulted by dispatch."""

    def apply(handler: Handler) -> Handler:
        doc = route_options(handler).doc
        doc.summary = summary
        doc.description = description
        doc.tags.extend(tags or [])
        doc.deprecated = deprecated
        doc.responses.update(responses or {})
        return handler

    return apply


def ApiResponse(status_code: int, description: str, example: Any = None) -> Callable[[Handler], Handler]:
    """Document one response status for a route."""

    def apply(handler: Handler) -> Handler:
        response: dict[str, Any] = {"description": description}
        if example is not None:
            response["content"] = {"application/json": {"example": example}}
        route_options(handler).doc.responses[status_code] = response
        return handler

    return apply
