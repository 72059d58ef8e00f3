from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from main import app
from services import local_today


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
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


def _signup(client: TestClient, email: str) -> dict[str, str]:
    resp = client.post("/api/auth/signup", json={"email": email, "password": "secret1"})
    assert resp.status_code == 201
    return {"Authorization": f"Bearer {resp.json()['token']}"}


def test_signup_login_and_me(client) -> None:
    resp = client.post("/api/auth/signup", json={"email": "asha@gmail.com", "password": "secret1"})
    body = resp.json()
    assert resp.status_code == 201
    assert body["status"] == "success"
    assert body["data"]["user"]["email"] == "asha@gmail.com"

    dup = client.post("/api/auth/signup", json={"email": "asha@gmail.com", "password": "secret1"})
    assert dup.status_code == 400
    assert dup.json() == {"status": "fail", "message": "Email already in use"}

    short = client.post("/api/auth/signup", json={"email": "x@gmail.com", "password": "123"})
    assert short.status_code == 400
    assert short.json()["status"] == "fail"

    bad = client.post("/api/auth/login", json={"email": "asha@gmail.com", "password": "nope12"})
    assert bad.status_code == 401
    assert bad.json()["code"] == "invalid_credentials"
    assert bad.json()["message"] == "Invalid email or password"

    good = client.post("/api/auth/login", json={"email": "asha@gmail.com", "password": "secret1"})
    headers = {"Authorization": f"Bearer {good.json()['token']}"}
    me = client.get("/api/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["data"]["user"]["email"] == "asha@gmail.com"


def test_missing_and_invalid_tokens(client) -> None:
    resp = client.get("/api/transactions")
    assert resp.status_code == 401
    assert resp.json()["code"] == "token_missing"

    resp = client.get("/api/transactions", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "token_invalid"


def test_transaction_lifecycle_and_gst_breakdown(client) -> None:
    headers = _signup(client, "asha@gmail.com")
    resp = client.post(
        "/api/transactions",
        json={
            "amount": 118,
            "category": "Shopping",
            "paymentMode": "UPI",
            "upiId": "store@apl",
            "description": "Headphones",
        },
        headers=headers,
    )
    assert resp.status_code == 201
    txn = resp.json()["data"]
    assert txn["gstRate"] == 18
    assert txn["baseAmount"] == 100.0
    assert txn["gstAmount"] == 18.0
    assert txn["upiId"] == "store@apl"

    listing = client.get("/api/transactions", headers=headers).json()
    assert listing["results"] == 1

    assert client.put(f"/api/transactions/{txn['id']}", json={}, headers=headers).status_code == 405

    invalid = client.post(
        "/api/transactions",
        json={"amount": -5, "category": "Food", "paymentMode": "Cash"},
        headers=headers,
    )
    assert invalid.status_code == 400
    assert invalid.json()["message"].startswith("amount")

    other = _signup(client, "ravi@gmail.com")
    forbidden = client.get(f"/api/transactions/{txn['id']}", headers=other)
    assert forbidden.status_code == 403
    assert forbidden.json()["status"] == "fail"

    assert client.get("/api/transactions/9999", headers=headers).status_code == 404
    assert client.delete(f"/api/transactions/{txn['id']}", headers=headers).status_code == 200
    assert client.get("/api/transactions", headers=headers).json()["results"] == 0


def test_budget_status_and_alert_notification(client) -> None:
    headers = _signup(client, "asha@gmail.com")
    created = client.post("/api/budget", json={"category": "Food", "amount": 5000}, headers=headers)
    assert created.status_code == 201
    dup = client.post("/api/budget", json={"category": "Food", "amount": 10}, headers=headers)
    assert dup.status_code == 400

    client.post(
        "/api/transactions",
        json={"amount": 4200, "category": "Food", "paymentMode": "Cash"},
        headers=headers,
    )

    status = client.get("/api/budget/status", headers=headers).json()["data"]
    assert status["month"] == local_today().strftime("%Y-%m")
    assert status["budgetStatus"] == [
        {
            "category": "Food",
            "limit": 5000.0,
            "spent": 4200.0,
            "remaining": 800.0,
            "percentUsed": 84.0,
            "status": "warning",
        }
    ]

    assert client.get("/api/budget/status?month=2026-13", headers=headers).status_code == 400

    notes = client.get("/api/notifications", headers=headers).json()["data"]
    assert notes["unreadCount"] == 1
    assert notes["notifications"][0]["type"] == "budget_alert"

    tips = client.get("/api/budget/tips", headers=headers).json()["data"]
    assert any(tip["title"] == "Food Budget Nearly Used" for tip in tips)

    note_id = notes["notifications"][0]["id"]
    read = client.put(f"/api/notifications/{note_id}/read", headers=headers)
    assert read.json()["data"]["isRead"] is True
    unread = client.get("/api/notifications?unreadOnly=true", headers=headers).json()["data"]
    assert unread["notifications"] == []


def test_goal_contribution_flow(client) -> None:
    headers = _signup(client, "asha@gmail.com")
    target_date = (local_today() + timedelta(days=200)).isoformat()
    goal = client.post(
        "/api/savings-goals",
        json={"name": "Emergency", "targetAmount": 10000, "targetDate": target_date, "category": "Emergency Fund"},
        headers=headers,
    ).json()["data"]
    assert goal["progressPercentage"] == 0
    assert goal["isPastDue"] is False

    first = client.post(f"/api/savings-goals/{goal['id']}/contribute", json={"amount": 9000}, headers=headers)
    assert first.json()["data"]["isCompleted"] is False
    second = client.post(f"/api/savings-goals/{goal['id']}/contribute", json={"amount": 1500}, headers=headers)
    data = second.json()["data"]
    assert data["currentAmount"] == 10500.0
    assert data["isCompleted"] is True
    assert data["progressPercentage"] == 105.0

    notes = client.get("/api/notifications", headers=headers).json()["data"]["notifications"]
    assert [n["type"] for n in notes] == ["goal_completed"]
    assert notes[0]["isPriority"] is True

    zero = client.post(f"/api/savings-goals/{goal['id']}/contribute", json={"amount": 0}, headers=headers)
    assert zero.status_code == 400

    other = _signup(client, "ravi@gmail.com")
    resp = client.post(f"/api/savings-goals/{goal['id']}/contribute", json={"amount": 1}, headers=other)
    assert resp.status_code == 403


def test_csv_import_and_export(client) -> None:
    headers = _signup(client, "asha@gmail.com")
    content = (
        "Date,Amount,Category,PaymentMode,UpiId,Description\n"
        "2026-10-01,250,Food,Cash,,Lunch\n"
        "2026-10-02,80,Transport,UPI,metro@paytm,Metro\n"
    )
    files = {"file": ("october.csv", content, "text/csv")}
    preview = client.post("/api/transactions/import/preview", files=files, headers=headers)
    assert preview.status_code == 200
    assert len(preview.json()["data"]["rows"]) == 2

    commit = client.post("/api/transactions/import/commit", files=files, headers=headers)
    assert commit.status_code == 201
    assert commit.json()["data"] == {"imported": 2}

    broken = {"file": ("bad.csv", content + "oops,1,Food,Cash,,x\n", "text/csv")}
    rejected = client.post("/api/transactions/import/commit", files=broken, headers=headers)
    assert rejected.status_code == 400
    assert client.get("/api/transactions", headers=headers).json()["results"] == 2

    export = client.get("/api/transactions/export.csv", headers=headers)
    assert export.headers["content-type"].startswith("text/csv")
    assert export.text.splitlines()[0].startswith("Date,Amount,Category")


def test_sync_income_insights_reports_and_upi(client) -> None:
    headers = _signup(client, "asha@gmail.com")
    sync = client.post(
        "/api/transactions/sync",
        json={
            "transactions": [
                {"clientId": "q1", "amount": 40, "category": "Food", "paymentMode": "Cash"},
                {"clientId": "q2", "amount": -1, "category": "Food", "paymentMode": "Cash"},
            ]
        },
        headers=headers,
    ).json()["data"]
    assert sync["synced"] == 1
    assert sync["failed"] == 1

    income = client.post(
        "/api/income", json={"amount": 50000, "source": "Salary", "isRecurring": True}, headers=headers
    )
    assert income.status_code == 201
    assert income.json()["data"]["recurringFrequency"] == "monthly"

    stats = client.get("/api/income/stats", headers=headers).json()["data"]
    assert stats["currentMonth"] == {"total": 50000.0, "count": 1}

    insights = client.get("/api/insights/spending", headers=headers).json()["data"]
    assert insights["trends"]["currentMonthTotal"] == 40.0

    report = client.get(f"/api/reports/annual?year={local_today().year}", headers=headers).json()["data"]
    assert report["transactionCount"] == 1

    upi = client.post("/api/upi/verify", json={"upiId": "chai@ybl"}, headers=headers).json()["data"]
    assert upi["merchantName"] == "PhonePe"


def test_advisor_unavailable_without_key(client) -> None:
    headers = _signup(client, "asha@gmail.com")
    resp = client.post("/api/advisor", json={"question": "How do I save more?"}, headers=headers)
    assert resp.status_code == 503
    assert resp.json()["status"] == "error"


def test_cross_user_writes_are_forbidden_and_change_nothing(client) -> None:
    headers = _signup(client, "asha@gmail.com")
    other = _signup(client, "ravi@gmail.com")
    target_date = (local_today() + timedelta(days=200)).isoformat()
    goal = client.post(
        "/api/savings-goals",
        json={"name": "Emergency", "targetAmount": 10000, "targetDate": target_date},
        headers=headers,
    ).json()["data"]
    income = client.post(
        "/api/income", json={"amount": 50000, "source": "Salary"}, headers=headers
    ).json()["data"]
    client.post("/api/budget", json={"category": "Food", "amount": 100}, headers=headers)
    client.post(
        "/api/transactions",
        json={"amount": 90, "category": "Food", "paymentMode": "Cash"},
        headers=headers,
    )
    note = client.get("/api/notifications", headers=headers).json()["data"]["notifications"][0]

    attempts = [
        client.put(f"/api/savings-goals/{goal['id']}", json={"name": "Mine"}, headers=other),
        client.delete(f"/api/savings-goals/{goal['id']}", headers=other),
        client.put(f"/api/income/{income['id']}", json={"amount": 1}, headers=other),
        client.put(f"/api/notifications/{note['id']}/read", headers=other),
    ]
    assert [resp.status_code for resp in attempts] == [403, 403, 403, 403]

    kept = client.get(f"/api/savings-goals/{goal['id']}", headers=headers).json()["data"]
    assert kept["name"] == "Emergency"
    incomes = client.get("/api/income", headers=headers).json()["data"]
    assert [i["amount"] for i in incomes] == [50000.0]
    notes = client.get("/api/notifications", headers=headers).json()["data"]
    assert notes["unreadCount"] == 1


def test_amounts_below_one_paisa_are_rejected(client) -> None:
    headers = _signup(client, "asha@gmail.com")
    resp = client.post("/api/budget", json={"category": "Food", "amount": 0.004}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["status"] == "fail"
    assert client.get("/api/budget", headers=headers).json()["data"] == []
