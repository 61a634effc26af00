import logging
import uuid
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Path, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import get_settings
from .db import get_session, init_db
from .errors import BookServiceError, InvalidRequestError
from .models import (
    ApiResponse,
    Book,
    CategoryCount,
    CreateBook,
    ErrorResponse,
    FieldError,
    INT_MAX,
    INT_MIN,
    Page,
    UpdateBook,
    collect_field_errors,
)
from .repository import BookRepository, Sort
from .service import BookService
from .telemetry import configure_logging, configure_otel

settings = get_settings()
configure_logging(settings.log_level)

logger = logging.getLogger("book_inventory.api")
request_logger = logging.getLogger("book_inventory.requests")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
INTERNAL_ERROR_MESSAGE = "An internal server error occurred."
BookId = Annotated[int, Path(ge=INT_MIN, le=INT_MAX)]


def get_book_service(session: Session = Depends(get_session)) -> BookService:
    return BookService(BookRepository(session))


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("startup", extra={"app": settings.app_name, "version": settings.version})
    yield


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Book inventory API: CRUD, search and stock tracking backed by a relational store.",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)
configure_otel(app, settings)

if settings.allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
    )


def _error_response(
    status_code: int,
    message: str,
    field_errors: Optional[list[FieldError]] = None,
    error: Optional[str] = None,
) -> JSONResponse:
    body = ErrorResponse(
        status=status_code,
        error=error or HTTPStatus(status_code).phrase,
        message=message,
        field_errors=field_errors or None,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", by_alias=True, exclude_none=True))


@app.exception_handler(BookServiceError)
async def book_service_error_handler(request: Request, exc: BookServiceError) -> JSONResponse:
    logger.warning(
        "request.failed",
        extra={"path": request.url.path, "error": type(exc).__name__, "detail": exc.message},
    )
    return _error_response(exc.status_code, exc.message, exc.field_errors, exc.error)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    field_errors = collect_field_errors(exc)
    logger.warning(
        "request.invalid",
        extra={"path": request.url.path, "fields": [item.field for item in field_errors]},
    )
    return _error_response(status.HTTP_400_BAD_REQUEST, "Invalid input.", field_errors)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    response = _error_response(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("request.error", extra={"path": request.url.path, "method": request.method})
    # Runs outside the http middlewares, so the request id is applied here.
    response = _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR_MESSAGE)
    response.headers["X-Request-ID"] = _request_id(request)
    request_logger.info(
        "request.end",
        extra={"path": request.url.path, "method": request.method, "status": response.status_code},
    )
    return response


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id") or str(uuid.uuid4())


def _parse_sort(sort: Optional[str]) -> Sort:
    try:
        return Sort.parse(sort)
    except ValueError as exc:
        raise InvalidRequestError("sort", str(exc)) from exc


router_v1 = APIRouter(prefix="/api/v1", tags=["v1"])


@router_v1.get("/health", tags=["health"])
def health() -> dict:
    return {"status": "ok"}


@router_v1.post(
    "/books",
    response_model=ApiResponse[Book],
    status_code=status.HTTP_201_CREATED,
)
def create_book(payload: CreateBook, service: BookService = Depends(get_book_service)) -> ApiResponse[Book]:
    return ApiResponse[Book].ok("Book created successfully.", service.create(payload))


@router_v1.get("/books", response_model=ApiResponse[List[Book]])
def list_books(service: BookService = Depends(get_book_service)) -> ApiResponse[List[Book]]:
    return ApiResponse[List[Book]].ok("Books retrieved.", service.list_all())


@router_v1.get("/books/search", response_model=ApiResponse[Page[Book]])
def search_books(
    keyword: Optional[str] = None,
    page: int = Query(0, ge=0, le=INT_MAX),
    size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    sort: Optional[str] = Query(None, description="field,direction e.g. createdAt,desc"),
    service: BookService = Depends(get_book_service),
) -> ApiResponse[Page[Book]]:
    result = service.search(keyword, page, size, _parse_sort(sort))
    return ApiResponse[Page[Book]].ok("Search completed.", result)


@router_v1.get("/books/search/advanced", response_model=ApiResponse[Page[Book]])
def search_books_advanced(
    title: Optional[str] = None,
    author: Optional[str] = None,
    category: Optional[str] = None,
    page: int = Query(0, ge=0, le=INT_MAX),
    size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    service: BookService = Depends(get_book_service),
) -> ApiResponse[Page[Book]]:
    result = service.search_by_conditions(title, author, category, page, size)
    return ApiResponse[Page[Book]].ok("Search completed.", result)


@router_v1.get("/books/search/title", response_model=ApiResponse[List[Book]])
def search_by_title(title: str, service: BookService = Depends(get_book_service)) -> ApiResponse[List[Book]]:
    return ApiResponse[List[Book]].ok("Title search completed.", service.search_by_title(title))


@router_v1.get("/books/search/author", response_model=ApiResponse[List[Book]])
def search_by_author(author: str, service: BookService = Depends(get_book_service)) -> ApiResponse[List[Book]]:
    return ApiResponse[List[Book]].ok("Author search completed.", service.search_by_author(author))


@router_v1.get("/books/search/category", response_model=ApiResponse[List[Book]])
def search_by_category(category: str, service: BookService = Depends(get_book_service)) -> ApiResponse[List[Book]]:
    return ApiResponse[List[Book]].ok("Category search completed.", service.search_by_category(category))


@router_v1.get("/books/search/price", response_model=ApiResponse[List[Book]])
def search_by_price_range(
    min_price: int = Query(alias="minPrice", ge=INT_MIN, le=INT_MAX),
    max_price: int = Query(alias="maxPrice", ge=INT_MIN, le=INT_MAX),
    service: BookService = Depends(get_book_service),
) -> ApiResponse[List[Book]]:
    result = service.search_by_price_range(min_price, max_price)
    return ApiResponse[List[Book]].ok("Price range search completed.", result)


@router_v1.get("/books/in-stock", response_model=ApiResponse[List[Book]])
def list_in_stock(service: BookService = Depends(get_book_service)) -> ApiResponse[List[Book]]:
    return ApiResponse[List[Book]].ok("In-stock books retrieved.", service.list_in_stock())


@router_v1.get("/books/stats/categories", response_model=ApiResponse[List[CategoryCount]])
def count_by_category(service: BookService = Depends(get_book_service)) -> ApiResponse[List[CategoryCount]]:
    return ApiResponse[List[CategoryCount]].ok("Category counts retrieved.", service.count_by_category())


@router_v1.get("/books/{book_id}", response_model=ApiResponse[Book])
def get_book(book_id: BookId, service: BookService = Depends(get_book_service)) -> ApiResponse[Book]:
    return ApiResponse[Book].ok("Book retrieved.", service.get(book_id))


@router_v1.put("/books/{book_id}", response_model=ApiResponse[Book])
def update_book(
    book_id: BookId,
    payload: UpdateBook,
    service: BookService = Depends(get_book_service),
) -> ApiResponse[Book]:
    return ApiResponse[Book].ok("Book updated successfully.", service.update(book_id, payload))


@router_v1.delete("/books/{book_id}", response_model=ApiResponse[None])
def delete_book(book_id: BookId, service: BookService = Depends(get_book_service)) -> ApiResponse[None]:
    service.delete(book_id)
    return ApiResponse[None].ok("Book deleted successfully.")


@router_v1.post("/books/{book_id}/stock/increase", response_model=ApiResponse[Book])
def increase_stock(
    book_id: BookId,
    quantity: int = Query(ge=INT_MIN, le=INT_MAX),
    service: BookService = Depends(get_book_service),
) -> ApiResponse[Book]:
    return ApiResponse[Book].ok("Stock increased.", service.increase_stock(book_id, quantity))


@router_v1.post("/books/{book_id}/stock/decrease", response_model=ApiResponse[Book])
def decrease_stock(
    book_id: BookId,
    quantity: int = Query(ge=INT_MIN, le=INT_MAX),
    service: BookService = Depends(get_book_service),
) -> ApiResponse[Book]:
    return ApiResponse[Book].ok("Stock decreased.", service.decrease_stock(book_id, quantity))


app.include_router(router_v1)


@app.middleware("http")
async def request_logging_middleware(request, call_next):
    request_logger.info("request.start", extra={"path": request.url.path, "method": request.method})
    response = await call_next(request)
    request_logger.info(
        "request.end",
        extra={"path": request.url.path, "method": request.method, "status": response.status_code},
    )
    return response


@app.middleware("http")
async def request_id_middleware(request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response
