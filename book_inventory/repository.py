from typing import NamedTuple, Optional

from sqlalchemy import ColumnElement, Select, and_, func, or_, select, true
from sqlalchemy.orm import Session

from .entities import BookRecord

SORTABLE_COLUMNS = {
    "id": BookRecord.id,
    "title": BookRecord.title,
    "author": BookRecord.author,
    "category": BookRecord.category,
    "price": BookRecord.price,
    "stockQuantity": BookRecord.stock_quantity,
    "createdAt": BookRecord.created_at,
    "updatedAt": BookRecord.updated_at,
}


class Sort(NamedTuple):
    field: str = "createdAt"
    descending: bool = True

    @classmethod
    def parse(cls, spec: Optional[str]) -> "Sort":
        """Parse ``field[,asc|desc]``; raises ValueError for unknown fields or directions."""
        if not spec or not spec.strip():
            return cls()
        field, _, direction = (part.strip() for part in spec.partition(","))
        if field not in SORTABLE_COLUMNS:
            raise ValueError(f"Unsupported sort field '{field}'")
        direction = (direction or "asc").lower()
        if direction not in ("asc", "desc"):
            raise ValueError(f"Unsupported sort direction '{direction}'")
        return cls(field=field, descending=direction == "desc")

    def clauses(self) -> list:
        column = SORTABLE_COLUMNS[self.field]
        primary = column.desc() if self.descending else column.asc()
        if self.field == "id":
            return [primary]
        tiebreak = BookRecord.id.desc() if self.descending else BookRecord.id.asc()
        return [primary, tiebreak]


NEWEST_FIRST = Sort()


def _has_text(value: Optional[str]) -> bool:
    return value is not None and bool(value.strip())


def condition_predicate(
    title: Optional[str] = None,
    author: Optional[str] = None,
    category: Optional[str] = None,
) -> ColumnElement[bool]:
    predicate: ColumnElement[bool] = true()
    if _has_text(title):
        predicate = and_(predicate, BookRecord.title.icontains(title, autoescape=True))
    if _has_text(author):
        predicate = and_(predicate, BookRecord.author.icontains(author, autoescape=True))
    if _has_text(category):
        predicate = and_(predicate, BookRecord.category == category)
    return predicate


class BookRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, book_id: int) -> Optional[BookRecord]:
        return self.session.get(BookRecord, book_id)

    def list_all(self) -> list[BookRecord]:
        return list(self.session.execute(select(BookRecord)).scalars().all())

    def exists_by_isbn(self, isbn: str) -> bool:
        stmt = select(BookRecord.id).where(BookRecord.isbn == isbn).limit(1)
        return self.session.execute(stmt).first() is not None

    def save(self, record: BookRecord) -> BookRecord:
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return record

    def delete(self, record: BookRecord) -> None:
        self.session.delete(record)
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    def find_by_title_containing(self, title: str) -> list[BookRecord]:
        return self._all(select(BookRecord).where(BookRecord.title.contains(title, autoescape=True)))

    def find_by_author_containing(self, author: str) -> list[BookRecord]:
        return self._all(select(BookRecord).where(BookRecord.author.contains(author, autoescape=True)))

    def find_by_category(self, category: str) -> list[BookRecord]:
        return self._all(select(BookRecord).where(BookRecord.category == category))

    def find_by_price_range(self, min_price: int, max_price: int) -> list[BookRecord]:
        return self._all(select(BookRecord).where(BookRecord.price.between(min_price, max_price)))

    def find_in_stock(self) -> list[BookRecord]:
        return self._all(select(BookRecord).where(BookRecord.stock_quantity > 0))

    def search(
        self,
        keyword: Optional[str],
        offset: int,
        limit: int,
        sort: Sort = NEWEST_FIRST,
    ) -> tuple[list[BookRecord], int]:
        predicate: ColumnElement[bool] = true()
        if keyword:
            predicate = or_(
                BookRecord.title.contains(keyword, autoescape=True),
                BookRecord.author.contains(keyword, autoescape=True),
            )
        return self._page(predicate, offset, limit, sort)

    def search_by_conditions(
        self,
        title: Optional[str],
        author: Optional[str],
        category: Optional[str],
        offset: int,
        limit: int,
    ) -> tuple[list[BookRecord], int]:
        return self._page(condition_predicate(title, author, category), offset, limit, NEWEST_FIRST)

    def count_by_category(self) -> list[tuple[str, int]]:
        stmt = (
            select(BookRecord.category, func.count(BookRecord.id))
            .group_by(BookRecord.category)
            .order_by(BookRecord.category)
        )
        return [(category, count) for category, count in self.session.execute(stmt).all()]

    def _all(self, stmt: Select) -> list[BookRecord]:
        return list(self.session.execute(stmt).scalars().all())

    def _page(
        self,
        predicate: ColumnElement[bool],
        offset: int,
        limit: int,
        sort: Sort,
    ) -> tuple[list[BookRecord], int]:
        total = self.session.execute(select(func.count()).select_from(BookRecord).where(predicate)).scalar_one()
        stmt = select(BookRecord).where(predicate).order_by(*sort.clauses()).offset(offset).limit(limit)
        return self._all(stmt), total
