"""Pydantic schemas for request engine inputs and results."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from feedcore.core.errors import ErrorKind

HttpMethod = Literal["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"]


class RequestOptions(BaseModel):
    """Options for a single logical request."""

    model_config = ConfigDict(frozen=True)

    method: HttpMethod = Field(default="GET", description="HTTP method.")
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Extra headers; a User-Api-Key here overrides the stored credential.",
    )
    body: dict[str, Any] | list[Any] | str | None = Field(
        default=None,
        description="JSON payload (object, array, or pre-serialized JSON string).",
    )
    params: dict[str, Any] | None = Field(
        default=None,
        description="Query string parameters.",
    )
    use_cache: bool = Field(
        default=True,
        description="Allow serving and storing this call in the response cache.",
    )

    @property
    def is_write(self) -> bool:
        return self.method not in ("GET", "HEAD")


class RequestResult(BaseModel):
    """Uniform outcome of a request. Failures are values, not exceptions."""

    model_config = ConfigDict(frozen=True)

    success: bool
    data: Any = None
    error: str | None = None
    errors: list[str] | None = None
    status: int | None = None
    error_kind: ErrorKind | None = None
    cached: bool = False
    attempts: int = 0

    @classmethod
    def ok(cls, data: Any, *, status: int | None = None, cached: bool = False, attempts: int = 0) -> "RequestResult":
        return cls(success=True, data=data, status=status, cached=cached, attempts=attempts)

    @classmethod
    def fail(
        cls,
        kind: ErrorKind,
        error: str,
        *,
        status: int | None = None,
        errors: list[str] | None = None,
        attempts: int = 0,
    ) -> "RequestResult":
        return cls(
            success=False,
            error=error,
            errors=errors,
            status=status,
            error_kind=kind,
            attempts=attempts,
        )
