from datetime import datetime, timezone
from math import ceil
from typing import Generic, Optional, TypeVar

from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

T = TypeVar("T")

ISBN_PATTERN = r"^\d{13}$"

# Range of the INTEGER columns on PostgreSQL.
INT_MIN = -(2**31)
INT_MAX = 2**31 - 1


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _not_blank(value: Optional[str]) -> Optional[str]:
    if value is not None and not value.strip():
        raise ValueError("must not be blank")
    return value


class Book(WireModel):
    id: int
    title: str
    author: str
    category: str
    publisher: Optional[str] = None
    isbn: Optional[str] = None
    price: int
    stock_quantity: int
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at", "updated_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive values for timezone-aware columns.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class CreateBook(WireModel):
    title: str = Field(max_length=200)
    author: str = Field(max_length=100)
    category: str = Field(max_length=50)
    publisher: Optional[str] = Field(default=None, max_length=100)
    isbn: Optional[str] = Field(default=None, pattern=ISBN_PATTERN)
    price: int = Field(ge=0, le=INT_MAX)
    stock_quantity: int = Field(ge=0, le=INT_MAX)
    description: Optional[str] = None

    @field_validator("title", "author", "category")
    @classmethod
    def required_text(cls, value: str) -> str:
        return _not_blank(value)


class UpdateBook(WireModel):
    title: str = Field(max_length=200)
    author: str = Field(max_length=100)
    category: str = Field(max_length=50)
    publisher: Optional[str] = Field(default=None, max_length=100)
    price: int = Field(ge=0, le=INT_MAX)
    description: Optional[str] = None

    @field_validator("title", "author", "category")
    @classmethod
    def required_text(cls, value: str) -> str:
        return _not_blank(value)


class CategoryCount(WireModel):
    category: str
    count: int


class Page(WireModel, Generic[T]):
    content: list[T]
    page: int
    size: int
    total_elements: int
    total_pages: int

    @classmethod
    def build(cls, content: list[T], page: int, size: int, total: int) -> "Page[T]":
        return cls(
            content=content,
            page=page,
            size=size,
            total_elements=total,
            total_pages=ceil(total / size) if size else 0,
        )


class ApiResponse(WireModel, Generic[T]):
    success: bool
    message: str
    data: Optional[T] = None

    @classmethod
    def ok(cls, message: str, data: Optional[T] = None) -> "ApiResponse[T]":
        return cls(success=True, message=message, data=data)


class FieldError(WireModel):
    field: str
    message: str


class ErrorResponse(WireModel):
    status: int
    error: str
    message: str
    field_errors: Optional[list[FieldError]] = None


def collect_field_errors(exc: ValidationError | RequestValidationError) -> list[FieldError]:
    """Flatten pydantic/FastAPI validation errors into one entry per offending field."""
    errors = []
    for error in exc.errors():
        location = error.get("loc") or ("request",)
        errors.append(FieldError(field=str(location[-1]), message=error.get("msg", "Invalid value")))
    return errors
