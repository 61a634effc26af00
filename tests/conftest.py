import httpx
import pytest

from book_inventory.app import app, get_book_service
from book_inventory.db import build_engine, get_session, init_db, make_session_factory
from book_inventory.models import CreateBook
from book_inventory.repository import BookRepository
from book_inventory.service import BookService

CLEAN_CODE = {
    "title": "클린 코드",
    "author": "로버트 C. 마틴",
    "category": "프로그래밍",
    "publisher": "인사이트",
    "isbn": "9788966260959",
    "price": 33000,
    "stockQuantity": 100,
    "description": "애자일 소프트웨어 장인 정신",
}

EFFECTIVE_JAVA = {
    "title": "이펙티브 자바",
    "author": "조슈아 블로크",
    "category": "프로그래밍",
    "publisher": "인사이트",
    "isbn": "9788966262281",
    "price": 36000,
    "stockQuantity": 0,
    "description": "자바 플랫폼 Best Practice",
}

MACHINE_LEARNING = {
    "title": "혼자 공부하는 머신러닝",
    "author": "박해선",
    "category": "AI",
    "publisher": "한빛미디어",
    "isbn": "9791162243664",
    "price": 28000,
    "stockQuantity": 70,
    "description": "머신러닝과 딥러닝 입문서",
}


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def engine():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db_session(engine):
    session = make_session_factory(engine)()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def repository(db_session):
    return BookRepository(db_session)


@pytest.fixture()
def service(repository):
    return BookService(repository)


@pytest.fixture()
def seeded(service):
    return [service.create(CreateBook(**payload)) for payload in (CLEAN_CODE, EFFECTIVE_JAVA, MACHINE_LEARNING)]


@pytest.fixture()
def overrides(db_session):
    def _get_test_session():
        try:
            yield db_session
        finally:
            db_session.rollback()

    app.dependency_overrides[get_session] = _get_test_session
    app.dependency_overrides[get_book_service] = lambda: BookService(BookRepository(db_session))
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
async def client(overrides):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
