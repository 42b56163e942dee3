"""
Response envelopes shared by every route.
Success: {success, message, data, statusCode}; failure adds code/details.
"""

from datetime import UTC, datetime
from typing import Any

from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field


class ServiceResponse(BaseModel):
    """Standard success payload. Handlers may return one directly."""

    success: bool = True
    message: str = "OK"
    data: Any = None
    status_code: int = Field(default=200, alias="statusCode")

    model_config = {"populate_by_name": True}

    @classmethod
    def ok(cls, message: str, data: Any = None, status_code: int = 200) -> "ServiceResponse":
        return cls(success=True, message=message, data=data, status_code=status_code)

    def to_response(self, headers: dict[str, str] | None = None) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content=self.model_dump(mode="json", by_alias=True),
            headers=headers,
        )


class ErrorResponse(BaseModel):
    """Standard error payload for API responses."""

    success: bool = False
    code: str
    message: str
    status_code: int = Field(alias="statusCode")
    details: Any = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    model_config = {"populate_by_name": True, "extra": "forbid"}

    def to_response(self, headers: dict[str, str] | None = None) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content=self.model_dump(mode="json", by_alias=True, exclude_none=True),
            headers=headers,
        )
