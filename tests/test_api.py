from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import main
from database import get_db, init_db, make_engine
from main import app
from services import UserService


@pytest.fixture
def client():
    engine = make_engine("sqlite://")
    init_db(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
    engine.dispose()


def _create_user(client: TestClient, username: str = "alice") -> dict:
    response = client.post("/api/user", json={"username": username})
    assert response.status_code == 200
    return response.json()


def test_health(client: TestClient) -> None:
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_user_get_or_create(client: TestClient) -> None:
    first = _create_user(client)
    second = _create_user(client)

    assert first == second
    assert set(first) == {"id", "username", "income", "created_at"}
    assert first["username"] == "alice"
    assert first["income"] == 0


def test_missing_username_is_rejected(client: TestClient) -> None:
    response = client.post("/api/user", json={})
    assert response.status_code == 400
    assert "username" in response.json()["error"]

    response = client.post("/api/user", json={"username": ""})
    assert response.status_code == 400
    assert response.json() == {"error": "Username is required"}


def test_income_and_categories(client: TestClient) -> None:
    user = _create_user(client)

    response = client.put(f"/api/user/{user['id']}/income", json={"income": 500})
    assert response.json() == {"success": True}
    assert _create_user(client)["income"] == 500

    categories = client.get(f"/api/user/{user['id']}/categories").json()
    assert len(categories) == 7
    assert set(categories[0]) == {"id", "user_id", "name", "budget"}
    food = next(c for c in categories if c["name"] == "Food")
    assert food["budget"] == 8000

    response = client.put(f"/api/category/{food['id']}", json={"budget": "8100.50"})
    assert response.json() == {"success": True}
    categories = client.get(f"/api/user/{user['id']}/categories").json()
    assert next(c for c in categories if c["name"] == "Food")["budget"] == 8100.5


def test_transaction_lifecycle(client: TestClient) -> None:
    user = _create_user(client)
    url = f"/api/user/{user['id']}/transactions"

    created = client.post(
        url,
        json={
            "date": "2024-01-01",
            "description": "Coffee",
            "category": "Food",
            "amount": -3.5,
        },
    ).json()
    assert set(created) == {
        "id",
        "user_id",
        "date",
        "description",
        "category",
        "amount",
        "created_at",
    }
    assert created["date"] == "2024-01-01"
    assert created["amount"] == -3.5

    later = client.post(
        url, json={"date": "2024-01-03", "category": "Rent", "amount": -1200}
    ).json()
    assert [t["id"] for t in client.get(url).json()] == [later["id"], created["id"]]

    response = client.put(
        f"/api/transaction/{created['id']}",
        json={"date": "2024-01-05", "description": "Tea", "category": "Food", "amount": -2},
    )
    assert response.json() == {"success": True}
    listed = client.get(url).json()
    assert listed[0]["id"] == created["id"]
    assert listed[0]["description"] == "Tea"

    assert client.delete(f"/api/transaction/{created['id']}").json() == {"success": True}
    assert client.delete(f"/api/transaction/{created['id']}").json() == {"success": True}
    assert [t["id"] for t in client.get(url).json()] == [later["id"]]


def test_malformed_transaction_is_rejected(client: TestClient) -> None:
    user = _create_user(client)
    url = f"/api/user/{user['id']}/transactions"

    response = client.post(url, json={"date": "not-a-date", "amount": 5})
    assert response.status_code == 400
    assert response.json()["error"].startswith("date:")

    response = client.post(url, json={"date": "2024-01-01"})
    assert response.status_code == 400
    assert response.json()["error"].startswith("amount:")


def test_transaction_for_unknown_user(client: TestClient) -> None:
    response = client.post(
        "/api/user/9999/transactions", json={"date": "2024-01-01", "amount": 5}
    )
    assert response.status_code == 404
    assert response.json() == {"error": "User not found"}


def test_weekly_expenses(client: TestClient) -> None:
    user = _create_user(client)
    url = f"/api/user/{user['id']}/transactions"
    today = date.today().isoformat()
    client.post(url, json={"date": today, "amount": 100})
    client.post(url, json={"date": today, "amount": 50})

    iso_year, iso_week, _ = date.today().isocalendar()
    response = client.get(f"/api/user/{user['id']}/weekly-expenses")
    assert response.status_code == 200
    assert response.json() == [
        {
            "week": f"{iso_year}-{iso_week:02d}",
            "week_num": iso_year * 100 + iso_week,
            "total": 150,
        }
    ]


def test_reset(client: TestClient) -> None:
    user = _create_user(client)
    client.post(
        f"/api/user/{user['id']}/transactions", json={"date": "2024-01-01", "amount": 1}
    )
    client.put(f"/api/user/{user['id']}/income", json={"income": 500})

    response = client.delete(f"/api/user/{user['id']}/reset")
    assert response.json() == {"success": True}
    assert client.get(f"/api/user/{user['id']}/transactions").json() == []
    assert _create_user(client)["income"] == 0


def test_unknown_route_uses_error_envelope(client: TestClient) -> None:
    response = client.get("/api/nope")
    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}


def test_startup_aborts_when_schema_init_fails(monkeypatch) -> None:
    def broken_init_db():
        raise RuntimeError("store unavailable")

    monkeypatch.setattr(main, "init_db", broken_init_db)
    monkeypatch.setattr(main, "dispose_engine", lambda: None)

    with pytest.raises(RuntimeError, match="store unavailable"):
        with TestClient(app):
            pass


def test_lifespan_initializes_then_releases_store(
    client: TestClient, monkeypatch
) -> None:
    events: list[str] = []
    monkeypatch.setattr(main, "init_db", lambda: events.append("init"))
    monkeypatch.setattr(main, "dispose_engine", lambda: events.append("dispose"))

    with client:
        assert events == ["init"]
        assert client.get("/api/health").json() == {"status": "ok"}

    assert events == ["init", "dispose"]


def test_unexpected_error_keeps_envelope_and_cors_headers(
    client: TestClient, monkeypatch
) -> None:
    def explode(self, username):
        raise KeyError("x")

    monkeypatch.setattr(UserService, "get_or_create", explode)

    response = client.post(
        "/api/user",
        json={"username": "alice"},
        headers={"Origin": "http://frontend.test"},
    )
    assert response.status_code == 500
    assert response.json() == {"error": "'x'"}
    assert response.headers["access-control-allow-origin"] == "*"
