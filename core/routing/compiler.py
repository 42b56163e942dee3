"""
Compiles registry metadata into FastAPI routes.

Each route gets exactly one composed chain, in this order:

    route RateLimitGuard -> API-wide RateLimitGuard -> validation
        -> controller middleware -> route middleware -> handler

Validation runs before any authorization-dependent middleware. The
AUTHENTICATE placeholder is swapped for the injected AuthorizationMiddleware
(or dropped on Public() routes).

A controller or route whose metadata cannot be resolved is logged and
skipped; the rest of the route table still mounts.
"""

import inspect
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.routing import APIRouter
from starlette.concurrency import run_in_threadpool

from core.error_handler import render_error
from core.exceptions import RegistrationError
from core.middleware import CallNext, RouteMiddleware
from core.ratelimit import RateLimitGuard, client_key
from core.routing.metadata import (
    AUTHENTICATE,
    ControllerDescriptor,
    MetadataRegistry,
    MiddlewareRef,
    RouteDescriptor,
)
from core.validation import validate_request
from models.schemas import ServiceResponse
from utils.logging import get_logger

logger = get_logger(__name__)

_PATH_PARAM = re.compile(r":([A-Za-z_][A-Za-z0-9_]*)")
_VALID_PATH = re.compile(r"^(/[A-Za-z0-9_\-.~:{}]*)*$")


def to_fastapi_path(path: str) -> str:
    """'/users/:userId' -> '/users/{userId}'."""
    return _PATH_PARAM.sub(r"{\1}", path)


def join_paths(*parts: str) -> str:
    """Concatenate path segments; a bare '/' route maps to the controller root."""
    joined = "".join(p for p in parts if p and p != "/")
    return joined or "/"


@dataclass
class CompiledRoute:
    descriptor: RouteDescriptor
    path: str
    middlewares: list[RouteMiddleware]
    endpoint: Callable[[Request], Any]

    @property
    def method(self) -> str:
        return self.descriptor.method.value


@dataclass
class CompiledController:
    descriptor: ControllerDescriptor
    mount_path: str
    routes: list[CompiledRoute] = field(default_factory=list)


@dataclass
class RouteRegistrationResult:
    api_routes: list[dict[str, Any]] = field(default_factory=list)
    system_routes: list[dict[str, Any]] = field(default_factory=list)


async def _invoke(middleware: RouteMiddleware, call_next: CallNext, request: Request) -> Response:
    return await middleware(request, call_next)


def _as_response(result: Any) -> Response:
    if isinstance(result, Response):
        return result
    if isinstance(result, ServiceResponse):
        return result.to_response()
    return ServiceResponse.ok("OK", result).to_response()


def _terminal(handler: Callable[..., Any]) -> CallNext:
    """Adapt a handler (async or sync, returning data or a Response) to call_next."""

    async def call_handler(request: Request) -> Response:
        if inspect.iscoroutinefunction(handler):
            result = await handler(request)
        else:
            result = await run_in_threadpool(handler, request)
        return _as_response(result)

    return call_handler


def compose(middlewares: list[RouteMiddleware], handler: Callable[..., Any]) -> CallNext:
    """Fold middlewares around the handler; middlewares[0] runs first."""
    call: CallNext = _terminal(handler)
    for middleware in reversed(middlewares):
        call = partial(_invoke, middleware, call)
    return call


def _endpoint(chain: CallNext) -> Callable[[Request], Any]:
    async def endpoint(request: Request) -> Response:
        try:
            return await chain(request)
        except Exception as exc:
            return await render_error(request, exc)

    return endpoint


class RouteCompiler:
    """Turns registry metadata into mountable routes. Holds the injected middleware."""

    def __init__(
        self,
        api_prefix: str = "/api",
        *,
        authenticate: RouteMiddleware | None = None,
        global_rate_limit: RateLimitGuard | None = None,
        key_func: Callable[[Request], str] = client_key,
    ) -> None:
        self.api_prefix = api_prefix.rstrip("/")
        self._authenticate = authenticate
        self._global_rate_limit = global_rate_limit
        self._key_func = key_func

    def compile(self, registry: MetadataRegistry) -> list[CompiledController]:
        compiled: list[CompiledController] = []
        for controller in registry.get_all():
            try:
                compiled.append(self.compile_controller(controller))
            except RegistrationError as e:
                logger.warning(
                    "controller_skipped",
                    extra={"controller": repr(controller)[:200], "reason": e.message},
                )
        return compiled

    def compile_controller(self, controller: Any) -> CompiledController:
        descriptor = self._resolve(controller)
        result = CompiledController(descriptor=descriptor, mount_path=self.mount_path(descriptor))
        for route in descriptor.routes:
            try:
                result.routes.append(self.compile_route(descriptor, route, result.mount_path))
            except RegistrationError as e:
                logger.warning(
                    "route_skipped",
                    extra={
                        "controller": descriptor.prefix,
                        "handler": route.name,
                        "reason": e.message,
                    },
                )
        return result

    def compile_route(self, controller: ControllerDescriptor, route: RouteDescriptor, mount_path: str) -> CompiledRoute:
        if not callable(route.handler):
            raise RegistrationError(f"Handler {route.name!r} is not callable")
        if not route.path.startswith("/") or not _VALID_PATH.match(route.path):
            raise RegistrationError(f"Invalid route path {route.path!r}")
        middlewares = self.build_middlewares(controller, route)
        return CompiledRoute(
            descriptor=route,
            path=to_fastapi_path(join_paths(mount_path, route.path)),
            middlewares=middlewares,
            endpoint=_endpoint(compose(middlewares, route.handler)),
        )

    def build_middlewares(self, controller: ControllerDescriptor, route: RouteDescriptor) -> list[RouteMiddleware]:
        chain: list[RouteMiddleware] = []
        options = route.options
        if options.rate_limit is not None:
            chain.append(
                RateLimitGuard(
                    options.rate_limit,
                    key_func=self._key_func,
                    name=f"{route.method.value} {controller.prefix}{route.path}",
                )
            )
        if self._global_rate_limit is not None and not controller.is_system_route:
            chain.append(self._global_rate_limit)
        if options.validation is not None:
            chain.append(validate_request(options.validation))
        for ref in [*controller.middlewares, *route.route_middlewares]:
            resolved = self._resolve_middleware(ref, public=options.public)
            if resolved is not None:
                chain.append(resolved)
        return chain

    def mount_path(self, controller: ControllerDescriptor) -> str:
        if controller.is_system_route:
            return controller.prefix
        return f"{self.api_prefix}{controller.prefix}"

    def mount(self, app: FastAPI | APIRouter, compiled: CompiledController) -> None:
        descriptor = compiled.descriptor
        default_tags = descriptor.tags or [descriptor.description or descriptor.prefix.strip("/") or "root"]
        for route in compiled.routes:
            doc = route.descriptor.options.doc
            app.add_api_route(
                route.path,
                route.endpoint,
                methods=[route.method],
                name=route.descriptor.name,
                summary=doc.summary or route.descriptor.description,
                description=doc.description or route.descriptor.description,
                tags=doc.tags or default_tags,
                deprecated=doc.deprecated or None,
                responses=doc.responses or None,
                include_in_schema=route.method not in ("HEAD", "OPTIONS"),
            )
            logger.debug(
                "route_registered",
                extra={
                    "route_method": route.method,
                    "route_path": route.path,
                    "middlewares": len(route.middlewares),
                },
            )

    def _resolve(self, controller: Any) -> ControllerDescriptor:
        if not isinstance(controller, ControllerDescriptor):
            raise RegistrationError("Controller metadata not found")
        prefix = controller.prefix
        if not isinstance(prefix, str) or (prefix and not prefix.startswith("/")) or not _VALID_PATH.match(prefix):
            raise RegistrationError(f"Invalid controller prefix {prefix!r}")
        return controller

    def _resolve_middleware(self, ref: MiddlewareRef, *, public: bool) -> RouteMiddleware | None:
        if ref is AUTHENTICATE:
            if public:
                return None
            if self._authenticate is None:
                raise RegistrationError("Route requires authentication but no AuthorizationMiddleware was provided")
            return self._authenticate
        if not callable(ref):
            raise RegistrationError(f"Middleware {ref!r} is not callable")
        return ref


def register_routes(
    app: FastAPI | APIRouter,
    registry: MetadataRegistry,
    compiler: RouteCompiler,
) -> RouteRegistrationResult:
    """Compile every registered controller and mount it; returns the mount table."""
    result = RouteRegistrationResult()
    for compiled in compiler.compile(registry):
        compiler.mount(app, compiled)
        info = {
            "path": compiled.mount_path or "/",
            "description": compiled.descriptor.description,
            "routes": len(compiled.routes),
        }
        if compiled.descriptor.is_system_route:
            result.system_routes.append(info)
        else:
            result.api_routes.append(info)
    logger.info(
        "routes_registered",
        extra={"api_controllers": len(result.api_routes), "system_controllers": len(result.system_routes)},
    )
    return result
