import logging
from typing import List
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from expense_app.database import get_db
from expense_app.deps import get_current_user
from expense_app.models.models import User
from expense_app.schemas import (
    ReceiptOut, ReceiptUploadRequest, ReceiptUploadResponse, GmailImportResponse, IngestionStatus, ExpenseOut
)
from expense_app.services import expense_store, gmail_service, storage_service
from expense_app.services.budget_service import check_budget_alerts
from expense_app.services.ingestion_service import start_receipt, image_extractor, ingestion_queue

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("", response_model=List[ReceiptOut])
def get_my_receipts(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return expense_store.get_user_receipts(db, current_user.id)

@router.get("/ingestion", response_model=IngestionStatus)
def get_ingestion_status(current_user: User = Depends(get_current_user)):
    """Counters of the background ingestion workers."""
    return ingestion_queue.stats()

@router.get("/{receipt_id}", response_model=ReceiptOut)
def get_receipt(receipt_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    receipt = expense_store.get_user_receipt(db, current_user.id, receipt_id)
    if not receipt:
        raise HTTPException(status_code=404, detail="Receipt not found")
    return receipt

@router.get("/{receipt_id}/expenses", response_model=List[ExpenseOut])
def get_receipt_expenses(receipt_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    receipt = expense_store.get_user_receipt(db, current_user.id, receipt_id)
    if not receipt:
        raise HTTPException(status_code=404, detail="Receipt not found")
    return expense_store.get_receipt_expenses(db, receipt.id)

@router.post("/upload", response_model=ReceiptUploadResponse)
def upload_receipt(
    payload: ReceiptUploadRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Registers an uploaded image as a pending receipt and queues it.
    Returns as soon as the receipt exists; extraction runs in the background.
    """
    if not payload.receipt_image_url or not payload.receipt_image_url.strip():
        raise HTTPException(status_code=400, detail="receiptImageURL is required")

    try:
        locator = storage_service.normalize_locator(payload.receipt_image_url)
    except storage_service.InvalidLocator as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not storage_service.is_remote(locator) and not storage_service.user_owns_object(current_user.id, locator):
        raise HTTPException(status_code=403, detail="Object does not belong to the current user")

    receipt = start_receipt(db, current_user.id, locator)
    ingestion_queue.submit(receipt.id, image_extractor(locator))

    return ReceiptUploadResponse(receipt_id=receipt.id, object_path=locator)

@router.post("/import-gmail", response_model=GmailImportResponse)
def import_from_gmail(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """
    Imports receipts from the user's mailbox, or hands back the consent URL
    when no usable Gmail credentials are stored.
    """
    access_token = gmail_service.get_valid_access_token(db, current_user.id)
    if access_token is None:
        try:
            auth_url = gmail_service.get_auth_url(current_user.id)
        except gmail_service.GmailAuthError as e:
            logger.error(f"[GMAIL] {e}")
            raise HTTPException(status_code=503, detail="Gmail integration is not configured")
        return GmailImportResponse(
            requires_auth=True,
            auth_url=auth_url,
            message="Gmail authorization required. Please authorize access to import receipts.",
        )

    result = gmail_service.import_receipts(db, current_user.id, access_token)
    # Once per import, not once per receipt
    if result["receipts_processed"]:
        check_budget_alerts(db, current_user.id)

    return GmailImportResponse(
        receipts_found=result["receipts_found"],
        receipts_processed=result["receipts_processed"],
        message=f"Successfully imported {result['receipts_processed']} receipts from Gmail",
    )
