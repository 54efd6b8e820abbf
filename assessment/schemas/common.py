"""Shared / generic schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base for quiz, attempt and progress payloads.

    Fields are snake_case in Python and camelCase on the wire; input accepts
    either spelling.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ErrorResponse(BaseModel):
    """Standard error envelope returned for every handled failure."""

    success: bool = False
    error_code: str
    message: str
    details: dict[str, Any] | None = None


class Pagination(ApiModel):
    current: int
    pages: int
    total: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(current=page, pages=(total + limit - 1) // limit if limit else 0, total=total)


class SuccessResponse(BaseModel):
    success: bool = True
    message: str
