import httpx
import pytest

from book_inventory.app import app, get_book_service
from conftest import CLEAN_CODE, EFFECTIVE_JAVA, MACHINE_LEARNING


async def _seed(client):
    created = []
    for payload in (CLEAN_CODE, EFFECTIVE_JAVA, MACHINE_LEARNING):
        resp = await client.post("/api/v1/books", json=payload)
        assert resp.status_code == 201, resp.text
        created.append(resp.json()["data"])
    return created


@pytest.mark.anyio
async def test_health(client):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_create_and_get_book(client):
    resp = await client.post("/api/v1/books", json=CLEAN_CODE)
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["message"]
    created = body["data"]
    assert created["title"] == "클린 코드"
    assert created["stockQuantity"] == 100
    assert created["id"] == 1
    assert "createdAt" in created and "updatedAt" in created

    resp = await client.get(f"/api/v1/books/{created['id']}")
    assert resp.status_code == 200
    assert resp.json()["data"]["author"] == "로버트 C. 마틴"


@pytest.mark.anyio
async def test_create_duplicate_isbn_returns_409(client):
    await client.post("/api/v1/books", json=CLEAN_CODE)
    resp = await client.post("/api/v1/books", json=dict(EFFECTIVE_JAVA, isbn=CLEAN_CODE["isbn"]))
    assert resp.status_code == 409
    body = resp.json()
    assert body["status"] == 409
    assert body["error"] == "Conflict"
    assert CLEAN_CODE["isbn"] in body["message"]
    assert "fieldErrors" not in body

    listing = await client.get("/api/v1/books")
    assert len(listing.json()["data"]) == 1


@pytest.mark.anyio
async def test_create_validation_errors_are_collected(client):
    payload = {"title": "", "author": "a" * 101, "category": "c", "isbn": "123", "price": -1}
    resp = await client.post("/api/v1/books", json=payload)
    assert resp.status_code == 400
    body = resp.json()
    assert body["status"] == 400
    assert body["error"] == "Bad Request"
    fields = {item["field"] for item in body["fieldErrors"]}
    assert {"title", "author", "isbn", "price", "stockQuantity"} <= fields
    assert all(item["message"] for item in body["fieldErrors"])


@pytest.mark.anyio
async def test_get_unknown_book_returns_404(client):
    resp = await client.get("/api/v1/books/999")
    assert resp.status_code == 404
    body = resp.json()
    assert body["error"] == "Not Found"
    assert "999" in body["message"]


@pytest.mark.anyio
async def test_non_numeric_id_is_bad_request(client):
    resp = await client.get("/api/v1/books/abc")
    assert resp.status_code == 400
    assert resp.json()["fieldErrors"][0]["field"] == "book_id"


@pytest.mark.anyio
async def test_list_books(client):
    await _seed(client)
    resp = await client.get("/api/v1/books")
    assert resp.status_code == 200
    assert len(resp.json()["data"]) == 3


@pytest.mark.anyio
async def test_keyword_search_pages(client):
    await _seed(client)
    resp = await client.get("/api/v1/books/search", params={"page": 0, "size": 2})
    assert resp.status_code == 200
    page = resp.json()["data"]
    assert page["totalElements"] == 3
    assert page["totalPages"] == 2
    assert page["size"] == 2
    assert [book["title"] for book in page["content"]] == ["혼자 공부하는 머신러닝", "이펙티브 자바"]

    resp = await client.get("/api/v1/books/search", params={"keyword": "클린"})
    assert [book["title"] for book in resp.json()["data"]["content"]] == ["클린 코드"]


@pytest.mark.anyio
async def test_keyword_search_rejects_bad_sort_and_size(client):
    resp = await client.get("/api/v1/books/search", params={"sort": "isbn,asc"})
    assert resp.status_code == 400
    assert resp.json()["fieldErrors"][0]["field"] == "sort"

    resp = await client.get("/api/v1/books/search", params={"size": 0})
    assert resp.status_code == 400
    assert resp.json()["fieldErrors"][0]["field"] == "size"


@pytest.mark.anyio
async def test_advanced_search(client):
    await _seed(client)
    resp = await client.get("/api/v1/books/search/advanced")
    assert resp.json()["data"]["totalElements"] == 3

    resp = await client.get(
        "/api/v1/books/search/advanced",
        params={"title": "자바", "category": "프로그래밍"},
    )
    page = resp.json()["data"]
    assert page["totalElements"] == 1
    assert page["content"][0]["isbn"] == EFFECTIVE_JAVA["isbn"]


@pytest.mark.anyio
async def test_single_field_searches(client):
    await _seed(client)
    resp = await client.get("/api/v1/books/search/title", params={"title": "머신"})
    assert [book["title"] for book in resp.json()["data"]] == ["혼자 공부하는 머신러닝"]

    resp = await client.get("/api/v1/books/search/author", params={"author": "블로크"})
    assert [book["title"] for book in resp.json()["data"]] == ["이펙티브 자바"]

    resp = await client.get("/api/v1/books/search/category", params={"category": "프로그래밍"})
    assert len(resp.json()["data"]) == 2

    resp = await client.get("/api/v1/books/search/price", params={"minPrice": 30000, "maxPrice": 40000})
    assert {book["price"] for book in resp.json()["data"]} == {33000, 36000}


@pytest.mark.anyio
@pytest.mark.parametrize(
    "path, missing",
    [
        ("/api/v1/books/search/title", "title"),
        ("/api/v1/books/search/author", "author"),
        ("/api/v1/books/search/category", "category"),
        ("/api/v1/books/search/price", "minPrice"),
    ],
)
async def test_missing_search_params_are_bad_request(client, path, missing):
    resp = await client.get(path)
    assert resp.status_code == 400
    assert missing in {item["field"] for item in resp.json()["fieldErrors"]}


@pytest.mark.anyio
async def test_in_stock_and_category_stats(client):
    await _seed(client)
    resp = await client.get("/api/v1/books/in-stock")
    assert {book["stockQuantity"] for book in resp.json()["data"]} == {100, 70}

    resp = await client.get("/api/v1/books/stats/categories")
    assert resp.json()["data"] == [{"category": "AI", "count": 1}, {"category": "프로그래밍", "count": 2}]


@pytest.mark.anyio
async def test_update_and_delete_book(client):
    created = (await client.post("/api/v1/books", json=CLEAN_CODE)).json()["data"]
    update = {
        "title": "클린 코드 (개정판)",
        "author": "로버트 C. 마틴",
        "category": "프로그래밍",
        "publisher": "인사이트",
        "price": 35000,
        "description": "개정판",
    }
    resp = await client.put(f"/api/v1/books/{created['id']}", json=update)
    assert resp.status_code == 200
    updated = resp.json()["data"]
    assert updated["title"] == "클린 코드 (개정판)"
    assert updated["price"] == 35000
    assert updated["stockQuantity"] == 100
    assert updated["isbn"] == CLEAN_CODE["isbn"]

    resp = await client.delete(f"/api/v1/books/{created['id']}")
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert resp.json()["data"] is None

    missing = await client.get(f"/api/v1/books/{created['id']}")
    assert missing.status_code == 404


@pytest.mark.anyio
async def test_update_validates_and_checks_existence(client):
    resp = await client.put("/api/v1/books/999", json={"title": "t", "author": "a", "category": "c", "price": 1})
    assert resp.status_code == 404

    created = (await client.post("/api/v1/books", json=CLEAN_CODE)).json()["data"]
    resp = await client.put(f"/api/v1/books/{created['id']}", json={"title": "   ", "author": "a", "category": "c"})
    assert resp.status_code == 400
    assert {"title", "price"} <= {item["field"] for item in resp.json()["fieldErrors"]}


@pytest.mark.anyio
async def test_delete_nonexistent_returns_404(client):
    resp = await client.delete("/api/v1/books/999")
    assert resp.status_code == 404


@pytest.mark.anyio
async def test_stock_endpoints(client):
    created = (await client.post("/api/v1/books", json=CLEAN_CODE)).json()["data"]
    base = f"/api/v1/books/{created['id']}/stock"

    resp = await client.post(f"{base}/increase", params={"quantity": 50})
    assert resp.status_code == 200
    assert resp.json()["data"]["stockQuantity"] == 150

    resp = await client.post(f"{base}/decrease", params={"quantity": 80})
    assert resp.json()["data"]["stockQuantity"] == 70

    resp = await client.post(f"{base}/decrease", params={"quantity": 200})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Bad Request"
    assert "70" in resp.json()["message"]

    current = await client.get(f"/api/v1/books/{created['id']}")
    assert current.json()["data"]["stockQuantity"] == 70


@pytest.mark.anyio
async def test_stock_endpoints_unknown_book_and_missing_quantity(client):
    resp = await client.post("/api/v1/books/999/stock/increase", params={"quantity": 1})
    assert resp.status_code == 404
    resp = await client.post("/api/v1/books/999/stock/decrease", params={"quantity": 1})
    assert resp.status_code == 404
    resp = await client.post("/api/v1/books/1/stock/increase")
    assert resp.status_code == 400
    assert resp.json()["fieldErrors"][0]["field"] == "quantity"


@pytest.mark.anyio
async def test_unknown_route_uses_error_envelope(client):
    resp = await client.get("/api/v1/nowhere")
    assert resp.status_code == 404
    assert resp.json() == {"status": 404, "error": "Not Found", "message": "Not Found"}


@pytest.mark.anyio
async def test_request_id_is_echoed_or_generated(client):
    resp = await client.get("/api/v1/health", headers={"X-Request-ID": "abc-123"})
    assert resp.headers["X-Request-ID"] == "abc-123"
    resp = await client.get("/api/v1/health")
    assert resp.headers["X-Request-ID"]


@pytest.mark.anyio
async def test_unexpected_errors_are_redacted():
    class ExplodingService:
        def list_all(self):
            raise RuntimeError("database password is hunter2")

    app.dependency_overrides[get_book_service] = lambda: ExplodingService()
    try:
        transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as bare_client:
            resp = await bare_client.get("/api/v1/books")
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == "Internal Server Error"
    assert "hunter2" not in body["message"]


@pytest.mark.anyio
async def test_unexpected_errors_keep_request_id():
    class ExplodingService:
        def list_all(self):
            raise RuntimeError("boom")

    app.dependency_overrides[get_book_service] = lambda: ExplodingService()
    try:
        transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as bare_client:
            echoed = await bare_client.get("/api/v1/books", headers={"X-Request-ID": "req-500"})
            generated = await bare_client.get("/api/v1/books")
    finally:
        app.dependency_overrides.clear()

    assert echoed.status_code == 500
    assert echoed.headers["X-Request-ID"] == "req-500"
    assert generated.headers["X-Request-ID"]


@pytest.mark.anyio
@pytest.mark.parametrize("field", ["price", "stockQuantity"])
async def test_create_rejects_integers_beyond_column_range(client, field):
    resp = await client.post("/api/v1/books", json=dict(CLEAN_CODE, **{field: 2**63}))
    assert resp.status_code == 400
    assert [item["field"] for item in resp.json()["fieldErrors"]] == [field]

    resp = await client.post("/api/v1/books", json=dict(CLEAN_CODE, **{field: 2**31}))
    assert resp.status_code == 400

    listing = await client.get("/api/v1/books")
    assert listing.json()["data"] == []


@pytest.mark.anyio
async def test_update_rejects_price_beyond_column_range(client):
    created = (await client.post("/api/v1/books", json=CLEAN_CODE)).json()["data"]
    update = {"title": "t", "author": "a", "category": "c", "price": 2**31}
    resp = await client.put(f"/api/v1/books/{created['id']}", json=update)
    assert resp.status_code == 400
    assert resp.json()["fieldErrors"][0]["field"] == "price"


@pytest.mark.anyio
async def test_increase_rejects_huge_quantity(client):
    created = (await client.post("/api/v1/books", json=CLEAN_CODE)).json()["data"]
    base = f"/api/v1/books/{created['id']}/stock"

    resp = await client.post(f"{base}/increase", params={"quantity": 2**63})
    assert resp.status_code == 400
    assert resp.json()["fieldErrors"][0]["field"] == "quantity"

    resp = await client.post(f"{base}/increase", params={"quantity": 2**31 - 1})
    assert resp.status_code == 400
    assert resp.json()["fieldErrors"][0]["field"] == "quantity"

    current = await client.get(f"/api/v1/books/{created['id']}")
    assert current.json()["data"]["stockQuantity"] == 100


@pytest.mark.anyio
async def test_out_of_range_id_and_price_params_are_bad_request(client):
    resp = await client.get(f"/api/v1/books/{2**63}")
    assert resp.status_code == 400
    assert resp.json()["fieldErrors"][0]["field"] == "book_id"

    resp = await client.get("/api/v1/books/search/price", params={"minPrice": 0, "maxPrice": 2**63})
    assert resp.status_code == 400
    assert resp.json()["fieldErrors"][0]["field"] == "maxPrice"
