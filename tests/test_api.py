from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth import SESSION_COOKIE, issue_session_token
from database import Base, get_db
from main import app


def _client(user_id: int = 1) -> TestClient:
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def _get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    client = TestClient(app)
    if user_id:
        client.cookies.set(SESSION_COOKIE, issue_session_token(user_id))
    return client


def _setup(client: TestClient) -> tuple[int, int]:
    bank = client.post("/api/banks", json={"name": "HDFC"})
    assert bank.status_code == 201
    category = client.post(
        "/api/categories", json={"name": "Rent", "type": "expense"}
    )
    assert category.status_code == 201
    return bank.json()["bank"]["id"], category.json()["category"]["id"]


def test_requests_without_session_are_rejected():
    client = _client(user_id=0)
    response = client.get("/api/banks")
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}

    client.cookies.set(SESSION_COOKIE, "not-a-token")
    response = client.get("/api/banks")
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid session"}


def test_not_found_and_validation_errors_use_error_body():
    client = _client()
    missing = client.get("/api/banks/999")
    assert missing.status_code == 404
    assert missing.json() == {"error": "Bank not found"}

    bank_id, category_id = _setup(client)
    invalid = client.post(
        "/api/transactions",
        json={
            "bank_id": bank_id,
            "category_id": category_id,
            "type": "expense",
            "amount_cents": -5,
            "transaction_date": "2025-03-01",
        },
    )
    assert invalid.status_code == 400
    assert invalid.json()["error"] == "Invalid request"


def test_resources_are_scoped_to_session_user():
    client = _client()
    bank_id, _ = _setup(client)
    client.cookies.set(SESSION_COOKIE, issue_session_token(2))
    assert client.get(f"/api/banks/{bank_id}").status_code == 404
    assert client.get("/api/banks").json() == {"banks": []}


def test_category_in_use_returns_conflict():
    client = _client()
    bank_id, category_id = _setup(client)
    created = client.post(
        "/api/transactions",
        json={
            "bank_id": bank_id,
            "category_id": category_id,
            "type": "expense",
            "amount_cents": 1200,
            "transaction_date": "2025-03-01",
            "labels": ["home"],
        },
    )
    assert created.status_code == 201
    assert created.json()["transaction"]["labels"][0]["name"] == "home"

    response = client.delete(f"/api/categories/{category_id}")
    assert response.status_code == 409
    assert "error" in response.json()


def test_bill_payment_flow():
    client = _client()
    bank_id, category_id = _setup(client)
    bill = client.post(
        "/api/bills",
        json={
            "name": "Rent",
            "amount_cents": 100000,
            "category_id": category_id,
            "recurrence": "monthly",
            "start_date": "2030-01-01",
        },
    )
    assert bill.status_code == 201
    assert bill.json()["bill"]["recurrence_label"] == "Monthly"
    bill_id = bill.json()["bill"]["id"]

    payments = client.get(f"/api/bills/{bill_id}/payments").json()["payments"]
    assert payments
    payment_id = payments[0]["id"]
    body = {
        "paid_amount_cents": 100000,
        "paid_date": "2030-01-01",
        "bank_id": bank_id,
    }

    rejected = client.post(
        f"/api/bills/payments/{payment_id}/pay", json={**body, "extra": 1}
    )
    assert rejected.status_code == 400

    paid = client.post(f"/api/bills/payments/{payment_id}/pay", json=body)
    assert paid.status_code == 200
    assert paid.json()["payment"]["status"] == "paid"
    transaction_id = paid.json()["transaction"]["id"]
    assert paid.json()["payment"]["transaction_id"] == transaction_id

    again = client.post(f"/api/bills/payments/{payment_id}/pay", json=body)
    assert again.status_code == 400
    assert "error" in again.json()

    unpaid = client.delete(f"/api/bills/payments/{payment_id}/pay")
    assert unpaid.status_code == 200
    assert unpaid.json()["payment"]["status"] != "paid"
    assert unpaid.json()["payment"]["transaction_id"] is None
    assert client.get(f"/api/transactions/{transaction_id}").status_code == 404


def test_export_formats():
    client = _client()
    bank_id, category_id = _setup(client)
    client.post(
        "/api/transactions",
        json={
            "bank_id": bank_id,
            "category_id": category_id,
            "type": "expense",
            "amount_cents": 1250,
            "transaction_date": "2025-03-01",
            "description": "=SUM(A1)",
        },
    )

    exported = client.get("/api/user/export")
    assert exported.status_code == 200
    data = exported.json()
    assert data["version"] == "1.0"
    assert len(data["transactions"]) == 1
    assert data["banks"][0]["name"] == "HDFC"

    csv_response = client.get("/api/user/export", params={"format": "csv"})
    assert csv_response.status_code == 200
    assert csv_response.headers["content-type"].startswith("text/csv")
    lines = csv_response.text.splitlines()
    assert lines[0] == "Date,Type,Amount,Category,Bank,Description,Notes,Labels"
    assert lines[1].startswith("2025-03-01,expense,12.50,Rent,HDFC,")
    assert "\t=SUM(A1)" in lines[1]

    assert client.get("/api/user/export", params={"format": "xml"}).status_code == 400
