"""
Route metadata: controller/route descriptors and the registry that collects them.

Descriptors are filled in while route modules are imported and frozen when the
registry is handed to the compiler. Nothing here touches FastAPI; compilation
lives in core.routing.compiler.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel

from core.exceptions import RegistrationError
from core.middleware import RouteMiddleware
from core.ratelimit import RateLimitOptions


class HTTPMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    OPTIONS = "OPTIONS"
    HEAD = "HEAD"


class _Authenticate:
    """Placeholder for the AuthorizationMiddleware, injected at compile time."""

    _instance: "_Authenticate | None" = None

    def __new__(cls) -> "_Authenticate":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "AUTHENTICATE"


AUTHENTICATE = _Authenticate()

MiddlewareRef = RouteMiddleware | _Authenticate


@dataclass
class DocMetadata:
    """Documentation-only metadata, read by the OpenAPI generator and never by dispatch."""

    summary: str | None = None
    description: str | None = None
    tags: list[str] = field(default_factory=list)
    deprecated: bool = False
    responses: dict[int, dict[str, Any]] = field(default_factory=dict)


@dataclass
class RouteOptions:
    """Method-scoped declarations gathered from Validate/RateLimit/UseMiddleware/Public/ApiDoc."""

    middlewares: list[MiddlewareRef] = field(default_factory=list)
    validation: type[BaseModel] | None = None
    rate_limit: RateLimitOptions | None = None
    public: bool = False
    doc: DocMetadata = field(default_factory=DocMetadata)


ROUTE_OPTIONS_ATTR = "__route_options__"


def route_options(handler: Callable[..., Any]) -> RouteOptions:
    """Pending options stored on the handler, created on first use.

    Method-scoped decorators and the route decorator share this object, so
    they may be stacked in any order.
    """
    options = getattr(handler, ROUTE_OPTIONS_ATTR, None)
    if options is None:
        options = RouteOptions()
        setattr(handler, ROUTE_OPTIONS_ATTR, options)
    return options


@dataclass
class RouteDescriptor:
    method: HTTPMethod
    path: str
    handler: Callable[..., Any]
    description: str | None = None
    options: RouteOptions = field(default_factory=RouteOptions)
    middlewares: list[MiddlewareRef] = field(default_factory=list)

    @property
    def name(self) -> str:
        return getattr(self.handler, "__name__", repr(self.handler))

    @property
    def route_middlewares(self) -> list[MiddlewareRef]:
        """Decorator-supplied middleware first, then the route declaration's own list."""
        return [*self.options.middlewares, *self.middlewares]


@dataclass(eq=False)
class ControllerDescriptor:
    """
    A path prefix with its shared middleware and ordered routes.
    Compared by identity: two controllers with the same prefix are distinct.
    """

    prefix: str
    middlewares: list[MiddlewareRef] | tuple[MiddlewareRef, ...] = field(default_factory=list)
    routes: list[RouteDescriptor] | tuple[RouteDescriptor, ...] = field(default_factory=list)
    description: str | None = None
    is_system_route: bool = False
    tags: list[str] = field(default_factory=list)
    registry: "MetadataRegistry | None" = field(default=None, repr=False)
    frozen: bool = False

    def add_route(self, route: RouteDescriptor) -> None:
        self._ensure_mutable()
        for existing in self.routes:
            if existing.method == route.method and existing.path == route.path:
                raise RegistrationError(
                    f"Duplicate route {route.method.value} {self.prefix}{route.path}",
                    details={"existing": existing.name, "duplicate": route.name},
                )
        self.routes.append(route)

    def prepend_middlewares(self, middlewares: list[MiddlewareRef]) -> None:
        self._ensure_mutable()
        self.middlewares[:0] = middlewares

    def freeze(self) -> None:
        self.middlewares = tuple(self.middlewares)
        self.routes = tuple(self.routes)
        self.frozen = True

    def _ensure_mutable(self) -> None:
        if self.frozen:
            raise RegistrationError(f"Controller {self.prefix!r} is already compiled")

    # Route decorators: controller.get("/path") etc.

    def route(
        self,
        method: HTTPMethod | str,
        path: str,
        *,
        middlewares: list[MiddlewareRef] | None = None,
        description: str | None = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        def decorator(handler: Callable[..., Any]) -> Callable[..., Any]:
            route = RouteDescriptor(
                method=HTTPMethod(method.upper()),
                path=path,
                handler=handler,
                description=description,
                options=route_options(handler),
                middlewares=list(middlewares or []),
            )
            (self.registry or default_registry).declare_route(self, route)
            return handler

        return decorator

    def get(self, path: str, **kwargs: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(HTTPMethod.GET, path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(HTTPMethod.POST, path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(HTTPMethod.PUT, path, **kwargs)

    def patch(self, path: str, **kwargs: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(HTTPMethod.PATCH, path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(HTTPMethod.DELETE, path, **kwargs)

    def options(self, path: str, **kwargs: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(HTTPMethod.OPTIONS, path, **kwargs)

    def head(self, path: str, **kwargs: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.route(HTTPMethod.HEAD, path, **kwargs)


class MetadataRegistry:
    """
    Ordered, write-once collection of controllers.
    Route modules declare into it on import; get_all() freezes it for compilation.
    """

    def __init__(self) -> None:
        self._controllers: dict[int, Any] = {}
        self._frozen = False

    def register(self, controller: Any) -> None:
        """Idempotent: registering the same controller object twice keeps one entry."""
        self._ensure_open()
        self._controllers.setdefault(id(controller), controller)

    def declare_route(self, controller: ControllerDescriptor, route: RouteDescriptor) -> None:
        self._ensure_open()
        self.register(controller)
        controller.add_route(route)

    def get_all(self) -> tuple[Any, ...]:
        self._frozen = True
        controllers = tuple(self._controllers.values())
        for controller in controllers:
            if isinstance(controller, ControllerDescriptor):
                controller.freeze()
        return controllers

    @property
    def frozen(self) -> bool:
        return self._frozen

    def clear(self) -> None:
        """Reset for tests."""
        self._controllers.clear()
        self._frozen = False

    def __len__(self) -> int:
        return len(self._controllers)

    def __contains__(self, controller: Any) -> bool:
        return id(controller) in self._controllers

    def _ensure_open(self) -> None:
        if self._frozen:
            raise RegistrationError("Route registry is frozen; declare routes before compiling")


default_registry = MetadataRegistry()
