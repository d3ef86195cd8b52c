from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import FileResponse
from expense_app.core.config import settings
from expense_app.deps import get_current_user
from expense_app.models.models import User
from expense_app.schemas import ObjectUploadResponse
from expense_app.services import storage_service

router = APIRouter()

@router.post(f"{settings.API_V1_STR}/objects/upload", response_model=ObjectUploadResponse)
def upload_object(file: UploadFile = File(...), current_user: User = Depends(get_current_user)):
    """
    Stores the image under the caller's prefix. The returned objectPath is
    what /receipts/upload expects as receiptImageURL.
    """
    try:
        object_path = storage_service.save_receipt_image(current_user.id, file.filename, file.file)
    except storage_service.InvalidLocator as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ObjectUploadResponse(upload_url=object_path, object_path=object_path)

@router.get("/objects/{object_path:path}")
def get_object(object_path: str, current_user: User = Depends(get_current_user)):
    full_path = storage_service.OBJECT_PREFIX + object_path
    if not storage_service.user_owns_object(current_user.id, full_path):
        raise HTTPException(status_code=404, detail="Object not found")
    try:
        file_path = storage_service.local_path_for(full_path)
    except storage_service.ObjectNotFound:
        raise HTTPException(status_code=404, detail="Object not found")
    return FileResponse(file_path, media_type=storage_service.guess_mime_type(full_path))
