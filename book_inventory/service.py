import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError

from .entities import BookRecord, utcnow
from .errors import BookNotFoundError, DuplicateIsbnError, InsufficientStockError, InvalidRequestError
from .models import INT_MAX, Book, CategoryCount, CreateBook, Page, UpdateBook
from .repository import NEWEST_FIRST, BookRepository, Sort

logger = logging.getLogger(__name__)


def apply_update(record: BookRecord, payload: UpdateBook) -> None:
    """Overwrite the editable fields; isbn and stock are left alone."""
    record.title = payload.title
    record.author = payload.author
    record.category = payload.category
    record.publisher = payload.publisher
    record.price = payload.price
    record.description = payload.description
    record.updated_at = utcnow()


def _check_stock_bound(stock: int) -> None:
    if stock > INT_MAX:
        raise InvalidRequestError("quantity", f"Resulting stock must not exceed {INT_MAX}")


def add_stock(record: BookRecord, quantity: int) -> None:
    _check_stock_bound(record.stock_quantity + quantity)
    record.stock_quantity += quantity
    record.updated_at = utcnow()


def remove_stock(record: BookRecord, quantity: int) -> None:
    if quantity > record.stock_quantity:
        raise InsufficientStockError(record.id, record.stock_quantity, quantity)
    _check_stock_bound(record.stock_quantity - quantity)
    record.stock_quantity -= quantity
    record.updated_at = utcnow()


class BookService:
    def __init__(self, repository: BookRepository):
        self.repository = repository

    def create(self, payload: CreateBook) -> Book:
        if payload.isbn and self.repository.exists_by_isbn(payload.isbn):
            raise DuplicateIsbnError(payload.isbn)

        record = BookRecord(**payload.model_dump())
        try:
            record = self.repository.save(record)
        except IntegrityError as exc:
            self.repository.rollback()
            if payload.isbn and self.repository.exists_by_isbn(payload.isbn):
                raise DuplicateIsbnError(payload.isbn) from exc
            raise
        logger.info("book.created", extra={"book_id": record.id, "isbn": record.isbn})
        return self._to_schema(record)

    def get(self, book_id: int) -> Book:
        return self._to_schema(self._load(book_id))

    def list_all(self) -> list[Book]:
        return self._to_schemas(self.repository.list_all())

    def search(self, keyword: Optional[str], page: int, size: int, sort: Sort = NEWEST_FIRST) -> Page[Book]:
        records, total = self.repository.search(keyword, page * size, size, sort)
        return Page[Book].build(self._to_schemas(records), page, size, total)

    def search_by_conditions(
        self,
        title: Optional[str],
        author: Optional[str],
        category: Optional[str],
        page: int,
        size: int,
    ) -> Page[Book]:
        records, total = self.repository.search_by_conditions(title, author, category, page * size, size)
        return Page[Book].build(self._to_schemas(records), page, size, total)

    def search_by_title(self, title: str) -> list[Book]:
        return self._to_schemas(self.repository.find_by_title_containing(title))

    def search_by_author(self, author: str) -> list[Book]:
        return self._to_schemas(self.repository.find_by_author_containing(author))

    def search_by_category(self, category: str) -> list[Book]:
        return self._to_schemas(self.repository.find_by_category(category))

    def search_by_price_range(self, min_price: int, max_price: int) -> list[Book]:
        return self._to_schemas(self.repository.find_by_price_range(min_price, max_price))

    def list_in_stock(self) -> list[Book]:
        return self._to_schemas(self.repository.find_in_stock())

    def count_by_category(self) -> list[CategoryCount]:
        return [CategoryCount(category=category, count=count) for category, count in self.repository.count_by_category()]

    def update(self, book_id: int, payload: UpdateBook) -> Book:
        record = self._load(book_id)
        apply_update(record, payload)
        record = self.repository.save(record)
        logger.info("book.updated", extra={"book_id": book_id})
        return self._to_schema(record)

    def delete(self, book_id: int) -> None:
        record = self._load(book_id)
        self.repository.delete(record)
        logger.info("book.deleted", extra={"book_id": book_id})

    def increase_stock(self, book_id: int, quantity: int) -> Book:
        record = self._load(book_id)
        add_stock(record, quantity)
        return self._save_stock(record, quantity)

    def decrease_stock(self, book_id: int, quantity: int) -> Book:
        record = self._load(book_id)
        remove_stock(record, quantity)
        return self._save_stock(record, -quantity)

    def _save_stock(self, record: BookRecord, delta: int) -> Book:
        record = self.repository.save(record)
        logger.info(
            "book.stock_changed",
            extra={"book_id": record.id, "delta": delta, "stock_quantity": record.stock_quantity},
        )
        return self._to_schema(record)

    def _load(self, book_id: int) -> BookRecord:
        record = self.repository.get(book_id)
        if record is None:
            raise BookNotFoundError(book_id)
        return record

    @staticmethod
    def _to_schema(record: BookRecord) -> Book:
        return Book.model_validate(record, from_attributes=True)

    def _to_schemas(self, records: list[BookRecord]) -> list[Book]:
        return [self._to_schema(record) for record in records]
