"""
Request-shape validation middleware.

The declared pydantic model is validated against
{"body": <json body or None>, "query": {...}, "params": {...}}, so one schema
can constrain any part of the request. The validated model is left on
request.state.validated for the handler.
"""

import json
from typing import Any

from fastapi import Request, Response
from pydantic import BaseModel, ValidationError

from core.exceptions import RequestValidationFailed
from core.middleware import CallNext, RouteMiddleware


async def read_json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise RequestValidationFailed(
            "Malformed JSON body",
            details=[{"path": "body", "message": "is not valid JSON"}],
        ) from e


def format_errors(error: ValidationError) -> list[dict[str, str]]:
    return [
        {"path": ".".join(str(part) for part in issue["loc"]), "message": issue["msg"]}
        for issue in error.errors()
    ]


def validate_request(schema: type[BaseModel]) -> RouteMiddleware:
    async def validation_guard(request: Request, call_next: CallNext) -> Response:
        payload = {
            "body": await read_json_body(request),
            "query": dict(request.query_params),
            "params": dict(request.path_params),
        }
        try:
            request.state.validated = schema.model_validate(payload)
        except ValidationError as e:
            raise RequestValidationFailed(details=format_errors(e)) from e
        return await call_next(request)

    validation_guard.__qualname__ = f"validate_request({schema.__name__})"
    return validation_guard
