import pytest

pytestmark = pytest.mark.integration


def _login(client, email, password):
    response = client.post("/api/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def admin_headers(client):
    client.app.state.services.membership.bootstrap_admin("Ava Admin", "admin@example.com", "admin-pass")
    return _login(client, "admin@example.com", "admin-pass")


@pytest.fixture
def member_headers(client, admin_headers):
    response = client.post("/api/signup", json={"name": "Alice", "email": "alice@example.com", "password": "alice-pass"})
    assert response.status_code == 201
    user_id = response.json()["user"]["id"]
    assert client.put(f"/api/users/{user_id}/approve", headers=admin_headers).status_code == 200
    return _login(client, "alice@example.com", "alice-pass")


def _create_book(client, headers, title="Dune", copies=1, **extra):
    payload = {"title": title, "author": "Frank Herbert", "publication_year": 1965, "total_copies": copies}
    payload.update(extra)
    response = client.post("/api/books", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["id"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["db"] is True


def test_public_books_need_no_token(client, admin_headers):
    _create_book(client, admin_headers, "Dune", copies=2, shelf_number="A-1")
    response = client.get("/api/public/books")
    assert response.status_code == 200
    books = response.json()
    assert [(b["title"], b["available_copies"], b["shelf_number"]) for b in books] == [("Dune", 2, "A-1")]


def test_signup_login_and_pending_restrictions(client, admin_headers):
    response = client.post("/api/signup", json={"name": "Pat", "email": "pat@example.com", "password": "pat-pass"})
    assert response.status_code == 201
    assert response.json()["user"]["role"] == "pending"

    duplicate = client.post("/api/signup", json={"name": "Pat", "email": "pat@example.com", "password": "pat-pass"})
    assert duplicate.status_code == 409
    assert "error" in duplicate.json()

    headers = _login(client, "pat@example.com", "pat-pass")
    assert client.get("/api/me", headers=headers).json()["role"] == "pending"
    book_id = _create_book(client, admin_headers)
    assert client.post("/api/borrows", json={"book_id": book_id}, headers=headers).status_code == 403
    assert client.get("/api/books/search", params={"q": "Dune"}, headers=headers).status_code == 200


def test_login_errors(client, admin_headers):
    assert client.post("/api/login", json={"email": "ghost@example.com", "password": "x"}).status_code == 404
    assert client.post("/api/login", json={"email": "admin@example.com", "password": "nope"}).status_code == 401


def test_missing_or_bad_token(client):
    assert client.get("/api/users").status_code == 401
    response = client.get("/api/users", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
    assert response.json() == {"error": "Token is invalid."}


def test_admin_only_endpoints_reject_members(client, member_headers):
    for path in ("/api/books", "/api/users", "/api/borrows/active", "/api/borrows/history", "/api/stats/books"):
        assert client.get(path, headers=member_headers).status_code == 403, path


def test_request_validation_is_400(client, admin_headers):
    response = client.post("/api/books", json={"title": "No author"}, headers=admin_headers)
    assert response.status_code == 400
    assert "author" in response.json()["error"]


def test_book_crud(client, admin_headers):
    book_id = _create_book(client, admin_headers, "Old Title", copies=2)

    response = client.put(f"/api/books/{book_id}", json={"title": "New Title", "total_copies": 3},
                          headers=admin_headers)
    assert response.status_code == 200
    book = response.json()["book"]
    assert (book["title"], book["available_copies"], book["total_copies"]) == ("New Title", 3, 3)

    assert client.get(f"/api/books/{book_id}").json()["title"] == "New Title"
    assert client.delete(f"/api/books/{book_id}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/books/{book_id}").status_code == 404
    assert client.delete(f"/api/books/{book_id}", headers=admin_headers).status_code == 404


def test_borrow_and_return_flow(client, admin_headers, member_headers):
    book_id = _create_book(client, admin_headers, copies=1)

    response = client.post("/api/borrows", json={"book_id": book_id}, headers=member_headers)
    assert response.status_code == 201
    borrow = response.json()
    assert borrow["due_date"]

    again = client.post("/api/borrows", json={"book_id": book_id}, headers=member_headers)
    assert again.status_code == 409

    mine = client.get("/api/borrows/me", headers=member_headers).json()
    assert [(b["title"], b["status"]) for b in mine] == [("Dune", "borrowed")]

    active = client.get("/api/borrows/active", headers=admin_headers).json()
    assert [(a["member_name"], a["title"]) for a in active] == [("Alice", "Dune")]

    returned = client.post(f"/api/borrows/{borrow['borrow_id']}/return", headers=admin_headers)
    assert returned.status_code == 200
    assert returned.json()["fine"] == 0

    double = client.post(f"/api/borrows/{borrow['borrow_id']}/return", headers=admin_headers)
    assert double.status_code == 409

    history = client.get("/api/borrows/history", headers=admin_headers).json()
    assert len(history) == 1
    assert history[0]["member_email"] == "alice@example.com"

    assert client.get("/api/wallet", headers=member_headers).json() == {"wallet": 0}
    assert client.get("/api/public/books").json()[0]["available_copies"] == 1


def test_borrow_unknown_book(client, member_headers):
    response = client.post("/api/borrows", json={"book_id": 999}, headers=member_headers)
    assert response.status_code == 404


def test_search_endpoint(client, admin_headers):
    for i in range(10):
        _create_book(client, admin_headers, f"Python Recipes {i}")
    assert client.get("/api/books/search", params={"q": "P"}, headers=admin_headers).json() == []
    results = client.get("/api/books/search", params={"q": "python"}, headers=admin_headers).json()
    assert len(results) == 8
    assert client.get("/api/books/search", params={"q": "python"}).status_code == 401


def test_user_administration(client, admin_headers):
    response = client.post("/api/admin/users",
                           json={"name": "Bob", "email": "bob@example.com", "password": "bob-pass"},
                           headers=admin_headers)
    assert response.status_code == 201
    bob = response.json()["user"]
    assert bob["role"] == "member"

    response = client.put(f"/api/admin/users/{bob['id']}", json={"name": "Robert"}, headers=admin_headers)
    assert response.json()["user"]["name"] == "Robert"
    assert client.get(f"/api/admin/users/{bob['id']}", headers=admin_headers).json()["name"] == "Robert"

    emails = [u["email"] for u in client.get("/api/users", headers=admin_headers).json()]
    assert emails == ["bob@example.com", "admin@example.com"]

    bob_headers = _login(client, "bob@example.com", "bob-pass")
    assert client.delete(f"/api/admin/users/{bob['id']}", headers=admin_headers).status_code == 200
    # tokens of deleted accounts stop working
    assert client.get("/api/me", headers=bob_headers).status_code == 401


def test_stats_endpoints(client, admin_headers, member_headers):
    book_id = _create_book(client, admin_headers, copies=2)
    client.post("/api/borrows", json={"book_id": book_id}, headers=member_headers)

    assert client.get("/api/stats/books", headers=admin_headers).json() == {"count": 1}
    assert client.get("/api/stats/users", headers=admin_headers).json() == {"count": 1}
    assert client.get("/api/stats/borrows", headers=admin_headers).json() == {"count": 1}
    summary = client.get("/api/stats/summary", headers=admin_headers).json()
    assert summary["open_borrows"] == 1
    assert summary["overdue_borrows"] == 0


def test_security_headers(client):
    response = client.get("/api/public/books")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert "no-store" not in response.headers.get("Cache-Control", "")
    assert client.get("/api/users").headers["Cache-Control"] == "no-store"
