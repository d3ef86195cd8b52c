import base64
import hashlib
import hmac
import logging
import re
from datetime import datetime, timedelta
from email.utils import parseaddr
import httplib2
import requests
from oauth2client.client import (
    OAuth2WebServerFlow, OAuth2Credentials, FlowExchangeError, AccessTokenRefreshError
)
from sqlalchemy.orm import Session
from expense_app.core.config import settings
from expense_app.models.models import GmailCredential
from expense_app.models.finance import ReceiptStatus
from expense_app.services import expense_store, openai_service
from expense_app.services.ingestion_service import start_receipt, process_receipt

logger = logging.getLogger(__name__)

GMAIL_SCOPE = "https://www.googleapis.com/auth/gmail.readonly"
GMAIL_API_URL = "https://gmail.googleapis.com/gmail/v1/users/me"
TOKEN_URI = "https://oauth2.googleapis.com/token"
EXPIRY_SKEW = timedelta(seconds=60)

SEARCH_QUERIES = [
    'receipt OR invoice OR "order confirmation" OR "purchase confirmation"',
    'from:(amazon.com OR walmart.com OR target.com OR starbucks.com OR uber.com OR doordash.com)',
    'subject:(receipt OR invoice OR "your order" OR "order #" OR "confirmation")',
    'has:attachment (receipt OR invoice OR pdf)',
]

RECEIPT_INDICATORS = [
    re.compile(r"total[:\s]*\$[\d,.]+", re.I),
    re.compile(r"amount[:\s]*\$[\d,.]+", re.I),
    re.compile(r"order\s*#?\s*\d+", re.I),
    re.compile(r"receipt\s*#?\s*\d+", re.I),
    re.compile(r"transaction\s*id", re.I),
    re.compile(r"\$[\d,.]+"),
]

class GmailAuthError(Exception):
    pass

# =========================================================
# OAuth
# =========================================================

def _flow():
    if not settings.GMAIL_CLIENT_ID or not settings.GMAIL_CLIENT_SECRET:
        raise GmailAuthError("Gmail OAuth client is not configured (GMAIL_CLIENT_ID / GMAIL_CLIENT_SECRET)")
    return OAuth2WebServerFlow(
        client_id=settings.GMAIL_CLIENT_ID,
        client_secret=settings.GMAIL_CLIENT_SECRET,
        scope=GMAIL_SCOPE,
        redirect_uri=settings.GMAIL_REDIRECT_URI,
        token_uri=TOKEN_URI,
        access_type="offline",
        prompt="consent",
    )

def _state_signature(user_id):
    return hmac.new(settings.SECRET_KEY.encode(), user_id.encode(), hashlib.sha256).hexdigest()[:32]

def make_state(user_id):
    return f"{user_id}.{_state_signature(user_id)}"

def read_state(state):
    """Returns the user id carried by a state value, or None if the signature is wrong."""
    if not state or "." not in state:
        return None
    user_id, signature = state.rsplit(".", 1)
    if not hmac.compare_digest(signature, _state_signature(user_id)):
        return None
    return user_id

def get_auth_url(user_id):
    return _flow().step1_get_authorize_url(state=make_state(user_id))

def exchange_code(code):
    """Returns (access_token, refresh_token, token_expiry)."""
    try:
        credentials = _flow().step2_exchange(code)
    except FlowExchangeError as e:
        raise GmailAuthError(f"Authorization code exchange failed: {e}") from e
    return credentials.access_token, credentials.refresh_token, credentials.token_expiry

def _refresh_access_token(refresh_token):
    """Returns (access_token, token_expiry). Raises AccessTokenRefreshError when revoked."""
    credentials = OAuth2Credentials(
        access_token=None,
        client_id=settings.GMAIL_CLIENT_ID,
        client_secret=settings.GMAIL_CLIENT_SECRET,
        refresh_token=refresh_token,
        token_expiry=None,
        token_uri=TOKEN_URI,
        user_agent=None,
    )
    credentials.refresh(httplib2.Http(timeout=settings.HTTP_TIMEOUT_SECONDS))
    return credentials.access_token, credentials.token_expiry

# =========================================================
# Credential store (per user)
# =========================================================

def save_credentials(db: Session, user_id, access_token, refresh_token=None, token_expiry=None):
    row = db.get(GmailCredential, user_id)
    if row is None:
        row = GmailCredential(user_id=user_id, access_token=access_token)
        db.add(row)
    row.access_token = access_token
    # Google only sends a refresh token on the first consent
    if refresh_token:
        row.refresh_token = refresh_token
    row.token_expiry = token_expiry
    db.commit()
    return row

def delete_credentials(db: Session, user_id):
    row = db.get(GmailCredential, user_id)
    if row is not None:
        db.delete(row)
        db.commit()

def get_valid_access_token(db: Session, user_id, now=None):
    """
    Access token for the user's Gmail, refreshed when expired.
    None means the user has to (re)authorize.
    """
    row = db.get(GmailCredential, user_id)
    if row is None:
        return None
    now = now or datetime.utcnow()
    if row.token_expiry is None or row.token_expiry - EXPIRY_SKEW > now:
        return row.access_token

    if not row.refresh_token:
        logger.info(f"[GMAIL] Token expired for {user_id} and no refresh token stored")
        delete_credentials(db, user_id)
        return None

    try:
        access_token, token_expiry = _refresh_access_token(row.refresh_token)
    except AccessTokenRefreshError as e:
        logger.warning(f"[GMAIL] Refresh rejected for {user_id}, dropping credentials: {e}")
        delete_credentials(db, user_id)
        return None
    except (httplib2.HttpLib2Error, OSError) as e:
        logger.error(f"[GMAIL] Refresh failed for {user_id}: {e}")
        return None

    row.access_token = access_token
    row.token_expiry = token_expiry
    db.commit()
    logger.info(f"[GMAIL] Access token refreshed for {user_id}")
    return access_token

# =========================================================
# Gmail REST
# =========================================================

def _decode_base64url(data):
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))

class GmailClient:
    def __init__(self, access_token):
        self.session = requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {access_token}"})

    def _get(self, path, params=None):
        r = self.session.get(f"{GMAIL_API_URL}/{path}", params=params, timeout=settings.HTTP_TIMEOUT_SECONDS)
        r.raise_for_status()
        return r.json()

    def list_message_ids(self, query, max_results):
        data = self._get("messages", {"q": query, "maxResults": max_results})
        return [m["id"] for m in data.get("messages", []) if m.get("id")]

    def get_message(self, message_id):
        return self._get(f"messages/{message_id}", {"format": "full"})

    def get_attachment(self, message_id, attachment_id):
        data = self._get(f"messages/{message_id}/attachments/{attachment_id}")
        return _decode_base64url(data.get("data", ""))

def _walk_parts(part):
    yield part
    for child in part.get("parts") or []:
        yield from _walk_parts(child)

def parse_message(message):
    """
    Flattens a Gmail message into
    {id, subject, sender, image: (attachment_id, mime) | None, text}.
    """
    payload = message.get("payload") or {}
    headers = {h.get("name", "").lower(): h.get("value", "") for h in payload.get("headers") or []}
    name, address = parseaddr(headers.get("from", ""))

    image = None
    texts = []
    for part in _walk_parts(payload):
        mime = part.get("mimeType") or ""
        body = part.get("body") or {}
        if image is None and mime.startswith("image/") and body.get("attachmentId"):
            image = (body["attachmentId"], mime)
        elif mime in ("text/plain", "text/html") and body.get("data"):
            text = _decode_base64url(body["data"]).decode("utf-8", errors="replace")
            if mime == "text/html":
                text = re.sub(r"\s+", " ", re.sub(r"<[^>]+>", " ", text))
            texts.append(text)

    return {
        "id": message.get("id"),
        "subject": headers.get("subject", ""),
        "sender": name or address,
        "image": image,
        "text": "\n".join(texts).strip(),
    }

def looks_like_receipt(text):
    return any(pattern.search(text or "") for pattern in RECEIPT_INDICATORS)

def _extractor_for(client, parsed):
    if parsed["image"]:
        attachment_id, mime = parsed["image"]

        def extract():
            content = client.get_attachment(parsed["id"], attachment_id)
            return openai_service.extract_receipt(content, mime)
        return extract

    if looks_like_receipt(parsed["text"]):
        return lambda: openai_service.extract_receipt_from_text(parsed["subject"], parsed["sender"], parsed["text"])
    return None

# =========================================================
# Import
# =========================================================

def import_receipts(db: Session, user_id, access_token, max_results=None, session_factory=None, client=None):
    """
    Searches the user's mailbox and ingests every receipt-looking message
    not imported before. Runs inside the request; budget alerts are left to
    the caller so they fire once per import.
    Returns {"receipts_found", "receipts_processed"}.
    """
    client = client or GmailClient(access_token)
    max_results = max_results or settings.GMAIL_MAX_RESULTS
    per_query = max(1, max_results // len(SEARCH_QUERIES))

    message_ids = []
    for query in SEARCH_QUERIES:
        try:
            for message_id in client.list_message_ids(query, per_query):
                if message_id not in message_ids:
                    message_ids.append(message_id)
        except requests.RequestException as e:
            logger.error(f'[GMAIL] Search failed for "{query}": {e}')

    processed = 0
    for message_id in message_ids:
        locator = f"gmail:{message_id}"
        if expense_store.receipt_exists_for_source(db, user_id, locator):
            logger.info(f"[GMAIL] Message {message_id} already imported")
            continue
        try:
            parsed = parse_message(client.get_message(message_id))
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[GMAIL] Failed to fetch message {message_id}: {e}")
            continue

        extract = _extractor_for(client, parsed)
        if extract is None:
            logger.info(f"[GMAIL] Message {message_id} has no receipt content")
            continue

        receipt = start_receipt(db, user_id, locator)
        status = process_receipt(receipt.id, extract, session_factory=session_factory, evaluate_budgets=False)
        if status == ReceiptStatus.COMPLETED:
            processed += 1

    logger.info(f"[GMAIL] {user_id}: {len(message_ids)} messages found, {processed} receipts processed")
    return {"receipts_found": len(message_ids), "receipts_processed": processed}
