import logging
from typing import Optional
from fastapi import Depends, Header, HTTPException, BackgroundTasks
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from expense_app.database import get_db
from expense_app.models.models import User
from expense_app.services import expense_store
from expense_app.services.email_service import send_welcome_email

logger = logging.getLogger(__name__)

def get_current_user(
    background_tasks: BackgroundTasks,
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
    x_user_first_name: Optional[str] = Header(None),
    x_user_last_name: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> User:
    """
    The identity comes from the authenticating proxy in front of the API
    (X-User-* headers). The user row is created on first sight.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        user, created = expense_store.upsert_user(
            db, x_user_id.strip(), email=x_user_email, first_name=x_user_first_name, last_name=x_user_last_name
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[AUTH] Failed to load user {x_user_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch user")

    if created and user.email:
        background_tasks.add_task(send_welcome_email, user.email, user.display_name)
    return user
