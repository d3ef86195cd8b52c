import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session
from expense_app.database import get_db
from expense_app.deps import get_current_user
from expense_app.models.models import User
from expense_app.services import expense_store, gmail_service

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/auth")
def get_gmail_auth_url(current_user: User = Depends(get_current_user)):
    try:
        return {"authUrl": gmail_service.get_auth_url(current_user.id)}
    except gmail_service.GmailAuthError as e:
        logger.error(f"[GMAIL] {e}")
        raise HTTPException(status_code=503, detail="Gmail integration is not configured")

@router.get("/callback")
def gmail_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """
    OAuth redirect target. The user is identified by the signed state,
    not by headers, since the browser arrives here straight from Google.
    """
    if error:
        logger.warning(f"[GMAIL] Consent denied: {error}")
        return RedirectResponse("/?gmail_error=true")
    if not code:
        raise HTTPException(status_code=400, detail="Authorization code not provided")

    user_id = gmail_service.read_state(state)
    if user_id is None or expense_store.get_user(db, user_id) is None:
        logger.warning("[GMAIL] Callback with invalid state")
        return RedirectResponse("/?gmail_error=true")

    try:
        access_token, refresh_token, token_expiry = gmail_service.exchange_code(code)
    except gmail_service.GmailAuthError as e:
        logger.error(f"[GMAIL] {e}")
        return RedirectResponse("/?gmail_error=true")

    gmail_service.save_credentials(db, user_id, access_token, refresh_token, token_expiry)
    logger.info(f"[GMAIL] Credentials stored for {user_id}")
    return RedirectResponse("/?gmail_connected=true")

@router.delete("/credentials")
def disconnect_gmail(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    gmail_service.delete_credentials(db, current_user.id)
    return {"success": True}
