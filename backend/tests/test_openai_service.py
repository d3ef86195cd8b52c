import json
from datetime import date
from decimal import Decimal
import pytest
import requests
from expense_app.services import openai_service
from expense_app.services.openai_service import ExtractionError, NotAReceipt

class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload

def completion(content):
    return FakeResponse({"choices": [{"message": {"content": content}}]})

@pytest.fixture
def reply_with(monkeypatch):
    """Makes call_openai_chat return `content` (or raise it) and records the messages."""
    calls = []

    def install(content):
        def fake_call(messages, max_tokens=None, json_mode=False):
            calls.append({"messages": messages, "json_mode": json_mode})
            if isinstance(content, Exception):
                raise content
            return content
        monkeypatch.setattr(openai_service, "call_openai_chat", fake_call)
        return calls

    return install

def test_call_openai_chat_posts_json_mode_request(monkeypatch):
    captured = {}

    def fake_post(url, headers=None, json=None, timeout=None):
        captured.update(url=url, headers=headers, json=json, timeout=timeout)
        return completion('{"ok": true}')

    monkeypatch.setattr(openai_service.requests, "post", fake_post)

    content = openai_service.call_openai_chat([{"role": "user", "content": "hi"}], max_tokens=50, json_mode=True)

    assert content == '{"ok": true}'
    assert captured["headers"]["Authorization"] == "Bearer test-key"
    assert captured["json"]["response_format"] == {"type": "json_object"}
    assert captured["json"]["max_tokens"] == 50
    assert captured["timeout"] == openai_service.settings.OPENAI_TIMEOUT_SECONDS

def test_normalize_fills_placeholders():
    data = openai_service.normalize_receipt_payload(
        {"items": [{"amount": "abc"}, "Gum", {"description": " Water ", "amount": 1.5}, 42]},
        today=date(2024, 3, 20),
    )
    assert data.vendor == "Unknown Vendor"
    assert data.date == date(2024, 3, 20)
    assert data.total == Decimal("0.00")
    assert [(i.description, i.amount) for i in data.items] == [
        ("Unknown Item", Decimal("0.00")),
        ("Gum", Decimal("0.00")),
        ("Water", Decimal("1.50")),
    ]

def test_normalize_parses_date_and_total():
    data = openai_service.normalize_receipt_payload(
        {"vendor": "Shell", "date": "2024-02-29T10:00:00", "total": "$45.10", "items": []}
    )
    assert data.vendor == "Shell"
    assert data.date == date(2024, 2, 29)
    assert data.total == Decimal("45.10")
    assert data.items == []

def test_normalize_bad_date_falls_back_to_today():
    data = openai_service.normalize_receipt_payload({"date": "31/02/2024"}, today=date(2024, 3, 20))
    assert data.date == date(2024, 3, 20)

def test_normalize_clamps_non_finite_amounts():
    data = openai_service.normalize_receipt_payload(json.loads(
        '{"vendor": "Shop", "total": NaN, "items": ['
        '{"description": "Milk", "amount": NaN}, {"description": "Bread", "amount": Infinity}, '
        '{"description": "Eggs", "amount": 2.5}]}'
    ))
    assert data.total == Decimal("0.00")
    assert [(i.description, i.amount) for i in data.items] == [
        ("Milk", Decimal("0.00")),
        ("Bread", Decimal("0.00")),
        ("Eggs", Decimal("2.50")),
    ]

def test_extract_receipt_sends_image_as_data_url(reply_with):
    calls = reply_with(json.dumps({"vendor": "Cafe", "date": "2024-03-01", "total": 5, "items": [
        {"description": "Latte", "amount": 5}
    ]}))

    data = openai_service.extract_receipt(b"\xff\xd8", "image/png")

    assert data.vendor == "Cafe"
    assert data.items[0].amount == Decimal("5.00")
    image_part = calls[0]["messages"][1]["content"][1]
    assert image_part["image_url"]["url"].startswith("data:image/png;base64,")
    assert calls[0]["json_mode"] is True

def test_extract_receipt_wraps_failures(reply_with):
    reply_with(requests.ConnectionError("offline"))
    with pytest.raises(ExtractionError):
        openai_service.extract_receipt(b"img")

def test_extract_receipt_rejects_non_json(reply_with):
    reply_with("sorry, I can't read that")
    with pytest.raises(ExtractionError):
        openai_service.extract_receipt(b"img")

def test_extract_receipt_with_nan_amount_returns_data(reply_with):
    reply_with('{"vendor": "Shop", "total": NaN, "items": [{"description": "Milk", "amount": NaN}]}')
    data = openai_service.extract_receipt(b"img")
    assert data.items[0].amount == Decimal("0.00")

def test_email_extraction_uses_single_amount(reply_with):
    reply_with(json.dumps({"vendor": "Uber", "amount": "18.40", "date": "2024-03-02", "description": "Trip"}))

    data = openai_service.extract_receipt_from_text("Your trip", "Uber Receipts", "Total: $18.40")

    assert data.vendor == "Uber"
    assert data.total == Decimal("18.40")
    assert [(i.description, i.amount) for i in data.items] == [("Trip", Decimal("18.40"))]

def test_email_that_is_not_a_receipt(reply_with):
    reply_with('{"isReceipt": false}')
    with pytest.raises(NotAReceipt):
        openai_service.extract_receipt_from_text("Newsletter", "news@example.com", "Hello")

def test_categorize_maps_label_case_insensitively(reply_with):
    reply_with('{"category": "groceries", "confidence": 0.93}')
    guess = openai_service.categorize_expense("Bananas", "Market")
    assert guess.category == "Groceries"
    assert guess.confidence == pytest.approx(0.93)
    assert not guess.fallback

def test_categorize_unknown_label_becomes_other(reply_with):
    reply_with('{"category": "Crypto", "confidence": 7}')
    guess = openai_service.categorize_expense("Coin", "Exchange")
    assert guess.category == "Other"
    assert guess.confidence == 1.0
    assert not guess.fallback

def test_categorize_missing_confidence_defaults(reply_with):
    reply_with('{"category": "Travel"}')
    assert openai_service.categorize_expense("Flight", "Airline").confidence == 0.5

def test_categorize_failure_is_a_flagged_fallback(reply_with):
    reply_with(requests.Timeout("slow"))
    guess = openai_service.categorize_expense("Anything", "Anywhere")
    assert guess.category == "Other"
    assert guess.confidence == 0.0
    assert guess.fallback

def test_insights_include_context(reply_with):
    calls = reply_with("  You spent most on groceries.  ")
    reply = openai_service.generate_expense_insights(
        [{"description": "Milk", "amount": Decimal("3.00"), "category": "Groceries", "date": "2024-03-01"}],
        [{"name": "Food", "amount": Decimal("100.00"), "spent": Decimal("25.00"), "category": None}],
        "Where does my money go?",
    )
    assert reply == "You spent most on groceries."
    system = calls[0]["messages"][0]["content"]
    assert "Milk - $3.00 (Groceries)" in system
    assert "Food: $25.00/$100.00 (25.0%)" in system

def test_insights_failure_returns_apology(reply_with):
    reply_with(requests.ConnectionError("offline"))
    assert openai_service.generate_expense_insights([], [], "Hi") == openai_service.INSIGHTS_ERROR_REPLY
