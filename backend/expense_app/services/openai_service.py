import base64
import json
import logging
from datetime import date
import requests
from expense_app.core.config import settings
from expense_app.core.budget_calculator import to_money, usage_percentage
from expense_app.core.categories import EXPENSE_CATEGORIES, FALLBACK_CATEGORY, match_category_name
from expense_app.schemas import ReceiptData, ReceiptItem, CategoryGuess

logger = logging.getLogger(__name__)

UNKNOWN_VENDOR = "Unknown Vendor"
UNKNOWN_ITEM = "Unknown Item"
DEFAULT_CONFIDENCE = 0.5
FALLBACK_CONFIDENCE = 0.0
MAX_EMAIL_CHARS = 8000

INSIGHTS_ERROR_REPLY = "I'm sorry, I'm having trouble analyzing your expenses right now. Please try again later."
INSIGHTS_EMPTY_REPLY = "I'm sorry, I couldn't generate insights for your query."

RECEIPT_SYSTEM_PROMPT = """You are an expert at reading receipts and extracting structured data.
Analyze the receipt image and extract key information in JSON format.
Return data in this exact format: {
  "vendor": "store name",
  "date": "YYYY-MM-DD",
  "total": number,
  "items": [
    {
      "description": "item name",
      "amount": number
    }
  ]
}
If you cannot determine a value, use reasonable defaults or empty strings."""

EMAIL_PROMPT = """Extract receipt/purchase information from this email:

Subject: {subject}
From: {sender}
Content: {body}

Extract and return ONLY a JSON object with:
{{
  "vendor": "company name",
  "amount": "total amount as number",
  "date": "purchase date in YYYY-MM-DD format",
  "description": "brief description",
  "items": [{{"description": "item name", "amount": number}}]
}}

If this doesn't look like a receipt/purchase email, return: {{"isReceipt": false}}"""

class ExtractionError(Exception):
    """The AI service could not turn the document into receipt data."""

class NotAReceipt(ExtractionError):
    """The document was read but is not a receipt."""

# =========================================================
# OpenAI REST
# =========================================================

def call_openai_chat(messages, max_tokens=None, json_mode=False):
    headers = {"Authorization": f"Bearer {settings.OPENAI_API_KEY}", "Content-Type": "application/json"}
    payload = {"model": settings.OPENAI_MODEL, "messages": messages, "temperature": 0.2}
    if json_mode:
        payload["response_format"] = {"type": "json_object"}
    if max_tokens:
        payload["max_tokens"] = max_tokens
    r = requests.post(settings.OPENAI_API_URL, headers=headers, json=payload, timeout=settings.OPENAI_TIMEOUT_SECONDS)
    r.raise_for_status()
    return r.json()["choices"][0]["message"]["content"]

def _load_json_object(content):
    result = json.loads(content or "{}")
    if not isinstance(result, dict):
        raise ValueError(f"Expected a JSON object, got {type(result).__name__}")
    return result

def _parse_date(value, fallback):
    if not value:
        return fallback
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return fallback

# =========================================================
# Normalization
# =========================================================

def normalize_receipt_payload(result, today=None):
    """
    Clamps a raw extraction payload to a ReceiptData.
    Missing or garbage fields fall back to placeholders (unknown vendor,
    today's date, zero amounts) instead of failing the receipt.
    """
    today = today or date.today()
    result = result if isinstance(result, dict) else {}

    items = []
    raw_items = result.get("items")
    if isinstance(raw_items, list):
        for raw in raw_items:
            if isinstance(raw, dict):
                description = str(raw.get("description") or "").strip() or UNKNOWN_ITEM
                items.append(ReceiptItem(description=description, amount=to_money(raw.get("amount"))))
            elif isinstance(raw, str) and raw.strip():
                items.append(ReceiptItem(description=raw.strip()))

    return ReceiptData(
        vendor=str(result.get("vendor") or "").strip() or UNKNOWN_VENDOR,
        date=_parse_date(result.get("date"), today),
        total=to_money(result.get("total")),
        items=items,
    )

def _email_payload_to_receipt(result, subject, sender):
    # E-mail extraction answers with a single amount; priced items win when present
    priced = [i for i in (result.get("items") or []) if isinstance(i, dict) and i.get("amount") not in (None, "")]
    total = result.get("total", result.get("amount"))
    if not priced:
        priced = [{"description": result.get("description") or subject or UNKNOWN_ITEM, "amount": total}]
    return {
        "vendor": result.get("vendor") or sender,
        "date": result.get("date"),
        "total": total,
        "items": priced,
    }

# =========================================================
# Adapters
# =========================================================

def extract_receipt(image_bytes, mime_type="image/jpeg"):
    """
    Vision extraction: receipt image -> ReceiptData.
    Raises ExtractionError on transport or parse failure.
    """
    encoded = base64.b64encode(image_bytes).decode("ascii")
    messages = [
        {"role": "system", "content": RECEIPT_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": "Please extract the receipt data from this image:"},
                {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
            ],
        },
    ]
    try:
        result = _load_json_object(call_openai_chat(messages, max_tokens=1000, json_mode=True))
        # pydantic ValidationError is a ValueError
        return normalize_receipt_payload(result)
    except (requests.RequestException, KeyError, IndexError, ValueError) as e:
        logger.error(f"[OPENAI] Receipt OCR failed: {e}")
        raise ExtractionError("Failed to process receipt image") from e

def extract_receipt_from_text(subject, sender, body):
    """
    Same as extract_receipt but for the text of a purchase e-mail.
    Raises NotAReceipt when the model says the e-mail is not a purchase.
    """
    prompt = EMAIL_PROMPT.format(subject=subject, sender=sender, body=(body or "")[:MAX_EMAIL_CHARS])
    try:
        result = _load_json_object(call_openai_chat([{"role": "user", "content": prompt}], json_mode=True))
    except (requests.RequestException, KeyError, IndexError, ValueError) as e:
        logger.error(f"[OPENAI] E-mail extraction failed: {e}")
        raise ExtractionError("Failed to extract receipt from e-mail") from e

    if result.get("isReceipt") is False:
        raise NotAReceipt(f"E-mail '{subject}' is not a receipt")
    try:
        return normalize_receipt_payload(_email_payload_to_receipt(result, subject, sender))
    except ValueError as e:
        logger.error(f"[OPENAI] E-mail extraction returned unusable data: {e}")
        raise ExtractionError("Failed to extract receipt from e-mail") from e

def categorize_expense(description, vendor):
    """
    Picks one of EXPENSE_CATEGORIES for a line item. Never raises: on any
    failure returns "Other" flagged as a fallback.
    """
    messages = [
        {
            "role": "system",
            "content": (
                "You are an expert at categorizing expenses. Given an expense description and vendor, "
                f"choose the most appropriate category from this list: {', '.join(EXPENSE_CATEGORIES)}.\n\n"
                'Return your response in JSON format: {"category": "category name from the list", '
                '"confidence": number between 0 and 1}'
            ),
        },
        {"role": "user", "content": f"Categorize this expense:\nDescription: {description}\nVendor: {vendor}"},
    ]
    try:
        result = _load_json_object(call_openai_chat(messages, max_tokens=200, json_mode=True))
    except Exception as e:
        logger.warning(f"[OPENAI] Categorization failed for '{description}', defaulting to {FALLBACK_CATEGORY}: {e}")
        return CategoryGuess(category=FALLBACK_CATEGORY, confidence=FALLBACK_CONFIDENCE, fallback=True)

    category = match_category_name(result.get("category"))
    if category is None:
        logger.info(f"[OPENAI] Unknown category label {result.get('category')!r} for '{description}'")
        category = FALLBACK_CATEGORY
    try:
        confidence = float(result.get("confidence"))
    except (TypeError, ValueError):
        confidence = DEFAULT_CONFIDENCE
    confidence = min(max(confidence, 0.0), 1.0)
    return CategoryGuess(category=category, confidence=confidence)

def generate_expense_insights(expenses, budgets, query):
    """
    expenses: [{description, amount, category, date}]
    budgets:  [{name, amount, spent, category}]
    """
    expenses_summary = "\n".join(
        f"{e['date']}: {e['description']} - ${e['amount']} ({e['category']})" for e in expenses[:50]
    )
    budgets_summary = "\n".join(
        f"{b['name']}: ${b['spent']}/${b['amount']} ({usage_percentage(b['spent'], b['amount']):.1f}%)"
        for b in budgets
    )
    system = (
        "You are a helpful financial assistant. You help users understand their spending patterns, "
        "track budget goals, and provide financial insights. Be conversational, helpful, and specific with "
        "numbers when providing analysis.\n\n"
        f"Recent Expenses:\n{expenses_summary}\n\n"
        f"Budget Goals:\n{budgets_summary}\n\n"
        "Provide helpful, specific advice based on this financial data."
    )
    try:
        reply = call_openai_chat(
            [{"role": "system", "content": system}, {"role": "user", "content": query}],
            max_tokens=500,
        )
    except Exception as e:
        logger.error(f"[OPENAI] Insights generation failed: {e}")
        return INSIGHTS_ERROR_REPLY
    return (reply or "").strip() or INSIGHTS_EMPTY_REPLY
