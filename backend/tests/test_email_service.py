import smtplib
from decimal import Decimal
from expense_app.schemas import BudgetAlert
from expense_app.services import email_service

def make_alert(spent="85.00", amount="100.00"):
    spent, amount = Decimal(spent), Decimal(amount)
    return BudgetAlert(
        user_email="ana@example.com",
        user_name="Ana",
        budget_name="Groceries",
        spent=spent,
        budget_amount=amount,
        percentage=spent / amount * 100,
        category="Groceries",
    )

def test_warning_template_and_subject():
    alert = make_alert()
    html = email_service.render_budget_alert(alert)

    assert "Hello Ana!" in html
    assert "Budget Warning" in html
    assert "$85.00" in html
    assert "$100.00" in html
    assert "85.0%" in html
    assert "$15.00 remaining in your Groceries budget" in html
    assert email_service.budget_alert_subject(alert) == "⚠️ Budget Alert: Groceries at 85.0%"

def test_over_budget_template_and_subject():
    alert = make_alert(spent="130.00")
    html = email_service.render_budget_alert(alert)

    assert "Budget Exceeded" in html
    assert "exceeded your budget by $30.00" in html
    assert "width: 100.0%" in html
    assert "Over Budget" in email_service.budget_alert_subject(alert)

def test_send_without_smtp_credentials_returns_false(monkeypatch):
    monkeypatch.setattr(email_service.settings, "SMTP_USER", "")
    assert email_service.send_budget_alert(make_alert()) is False

class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.sent = []
        FakeSMTP.instances.append(self)

    def starttls(self):
        pass

    def login(self, user, password):
        pass

    def send_message(self, msg):
        self.sent.append(msg)

    def quit(self):
        pass

def test_send_budget_alert_over_smtp(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(email_service.settings, "SMTP_USER", "alerts@example.com")
    monkeypatch.setattr(email_service.settings, "SMTP_PASS", "app-password")
    monkeypatch.setattr(email_service.smtplib, "SMTP", FakeSMTP)

    assert email_service.send_budget_alert(make_alert()) is True

    [msg] = FakeSMTP.instances[0].sent
    assert msg["To"] == "ana@example.com"
    assert msg["Subject"].startswith("⚠️ Budget Alert")

def test_send_failure_is_logged_not_raised(monkeypatch):
    class RefusingSMTP(FakeSMTP):
        def send_message(self, msg):
            raise smtplib.SMTPRecipientsRefused({})

    monkeypatch.setattr(email_service.settings, "SMTP_USER", "alerts@example.com")
    monkeypatch.setattr(email_service.settings, "SMTP_PASS", "app-password")
    monkeypatch.setattr(email_service.smtplib, "SMTP", RefusingSMTP)

    assert email_service.send_welcome_email("ana@example.com", "Ana") is False
