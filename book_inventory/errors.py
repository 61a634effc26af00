from typing import Optional

from .models import FieldError


class BookServiceError(Exception):
    status_code = 400
    error = "Bad Request"

    def __init__(self, message: str, field_errors: Optional[list[FieldError]] = None):
        super().__init__(message)
        self.message = message
        self.field_errors = field_errors


class BookNotFoundError(BookServiceError):
    status_code = 404
    error = "Not Found"

    def __init__(self, book_id: int):
        super().__init__(f"Book not found. ID: {book_id}")
        self.book_id = book_id


class DuplicateIsbnError(BookServiceError):
    status_code = 409
    error = "Conflict"

    def __init__(self, isbn: str):
        super().__init__(f"A book with ISBN {isbn} already exists.")
        self.isbn = isbn


class InsufficientStockError(BookServiceError):
    def __init__(self, book_id: int, available: int, requested: int):
        super().__init__(f"Insufficient stock. Current stock: {available}")
        self.book_id = book_id
        self.available = available
        self.requested = requested


class InvalidRequestError(BookServiceError):
    def __init__(self, field: str, message: str):
        super().__init__("Invalid input.", [FieldError(field=field, message=message)])
