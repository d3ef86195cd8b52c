import os
import tempfile
from datetime import date
from decimal import Decimal

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="expense-uploads-")
os.environ["OPENAI_API_KEY"] = "test-key"
os.environ["GMAIL_CLIENT_ID"] = "test-client-id"
os.environ["GMAIL_CLIENT_SECRET"] = "test-client-secret"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["INGESTION_WORKERS"] = "1"
os.environ["BUDGET_ALERT_COOLDOWN_MINUTES"] = "0"

import pytest
from fastapi.testclient import TestClient
from expense_app.database import Base, engine, SessionLocal
from expense_app.main import app
from expense_app.models.models import User
from expense_app.models.finance import BudgetPeriod
from expense_app.services import expense_store

USER_ID = "user-1"
AUTH_HEADERS = {
    "X-User-Id": USER_ID,
    "X-User-Email": "ana@example.com",
    "X-User-First-Name": "Ana",
}

@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        expense_store.seed_default_categories(session)
    finally:
        session.close()
    yield

@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def user(db):
    user = User(id=USER_ID, email="ana@example.com", first_name="Ana")
    db.add(user)
    db.commit()
    return user

@pytest.fixture
def client():
    # No context manager: the lifespan (and its worker threads) stays off
    return TestClient(app)

@pytest.fixture
def no_smtp(monkeypatch):
    """Records welcome/alert e-mails instead of opening SMTP connections."""
    sent = []
    from expense_app.services import email_service

    def fake_send(to_email, subject, html_content):
        sent.append({"to": to_email, "subject": subject, "html": html_content})
        return True

    monkeypatch.setattr(email_service, "_send_html", fake_send)
    return sent

def category_id(db, name):
    return expense_store.get_category_by_name(db, name).id

def add_expense(db, user_id, amount, day=None, category=None, description="Item"):
    expense = expense_store.create_expense(
        db,
        user_id,
        description,
        Decimal(amount),
        expense_date=day,
        category_id=category_id(db, category) if category else None,
        is_manual=True,
    )
    db.commit()
    return expense

def add_goal(db, user_id, amount="100.00", category=None, start_date=date(2024, 3, 1),
             period=BudgetPeriod.MONTHLY, **extra):
    data = {
        "name": extra.pop("name", "Monthly budget"),
        "amount": Decimal(amount),
        "period": period,
        "start_date": start_date,
        "category_id": category_id(db, category) if category else None,
    }
    data.update(extra)
    goal = expense_store.create_budget_goal(db, user_id, data)
    db.commit()
    return goal
