from __future__ import annotations

from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import get_setting

T = TypeVar("T")


class ApiError(BaseModel):
    """Standard error payload for admin API responses."""

    code: str = Field(default="error")
    message: str
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="ignore")


class ApiMeta(BaseModel):
    """Optional metadata attached to responses."""

    request_id: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class ApiResponse(BaseModel, Generic[T]):
    """Envelope used by the admin endpoints."""

    ok: bool
    data: Optional[T] = None
    error: Optional[ApiError] = None
    meta: ApiMeta = Field(default_factory=ApiMeta)

    model_config = ConfigDict(extra="ignore")


def ok(data: T = None, *, meta: Optional[ApiMeta] = None) -> Dict[str, Any]:
    """Create a success envelope as a JSON-serializable dict."""

    payload = ApiResponse[T](ok=True, data=data, error=None, meta=meta or ApiMeta())
    return payload.model_dump(mode="json")


def fail(
    message: str,
    *,
    code: str = "error",
    details: Optional[Dict[str, Any]] = None,
    meta: Optional[ApiMeta] = None,
) -> Dict[str, Any]:
    """Create an error envelope as a JSON-serializable dict."""

    payload = ApiResponse[None](
        ok=False,
        data=None,
        error=ApiError(code=code, message=message, details=details),
        meta=meta or ApiMeta(),
    )
    return payload.model_dump(mode="json")


# --- public company API -----------------------------------------------------


class ErrorBody(BaseModel):
    """Plain error body of the public endpoints: ``{"error": ..., "message": ...}``."""

    error: str
    message: str


def error_body(code: str, message: str) -> Dict[str, Any]:
    return ErrorBody(error=code, message=message).model_dump()


class SearchParams(BaseModel):
    """Query-string parameters of ``GET /search``.

    ``q`` is trimmed before its length is checked. ``limit`` is clamped by the
    search service, so any integer (or nothing) is accepted here.
    """

    q: str = Field(
        min_length=int(get_setting("QUERY_MIN_LENGTH")),
        max_length=int(get_setting("QUERY_MAX_LENGTH")),
    )
    limit: Optional[int] = None
    include_inactive: bool = False

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    @field_validator("limit", mode="before")
    @classmethod
    def _lenient_limit(cls, v: Any) -> Optional[int]:
        if v is None:
            return None
        try:
            return int(str(v).strip())
        except ValueError:
            return None

    @field_validator("include_inactive", mode="before")
    @classmethod
    def _flag(cls, v: Any) -> bool:
        return str(v).strip().lower() == "true"


class CompanySummaryOut(BaseModel):
    identifier: str
    name: str
    legal_form: Optional[str] = None
    city: Optional[str] = None
    is_active: bool


class SearchResponse(BaseModel):
    results: List[CompanySummaryOut]
    query: str
    count: int
    timing: int = Field(description="Milliseconds spent in the search call")


class StatsResponse(BaseModel):
    total: int
    active: int


class ImportTriggerRequest(BaseModel):
    mode: Literal["full", "test"] = "test"

    model_config = ConfigDict(extra="ignore")


class ImportTriggerResponse(BaseModel):
    job_id: str
    status: str
    message: Optional[str] = None
