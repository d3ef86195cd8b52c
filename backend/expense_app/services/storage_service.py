import logging
import mimetypes
import os
import re
import shutil
import uuid
from urllib.parse import urlparse
import requests
from expense_app.core.config import settings

logger = logging.getLogger(__name__)

OBJECT_PREFIX = "/objects/"
RECEIPTS_DIR = "receipts"
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}

class ObjectNotFound(Exception):
    pass

class InvalidLocator(ValueError):
    pass

def _upload_root():
    return os.path.abspath(settings.UPLOAD_DIR)

def _safe_segment(value):
    return re.sub(r"[^A-Za-z0-9_.-]", "_", str(value))

def save_receipt_image(user_id, filename, fileobj):
    """
    Stores an uploaded image as uploads/receipts/<user>/<uuid><ext>.
    Returns the object path (/objects/receipts/...).
    """
    ext = os.path.splitext(filename or "")[1].lower() or ".jpg"
    if ext not in ALLOWED_EXTENSIONS:
        raise InvalidLocator(f"Unsupported image type '{ext}'")

    relative = f"{RECEIPTS_DIR}/{_safe_segment(user_id)}/{uuid.uuid4().hex}{ext}"
    file_path = os.path.join(_upload_root(), *relative.split("/"))
    os.makedirs(os.path.dirname(file_path), exist_ok=True)
    with open(file_path, "wb") as buffer:
        shutil.copyfileobj(fileobj, buffer)

    logger.info(f"[STORAGE] Saved receipt image {relative}")
    return OBJECT_PREFIX + relative

def is_remote(locator):
    return locator.startswith("http://") or locator.startswith("https://")

def _allowed_remote_hosts():
    return {h.strip().lower() for h in settings.REMOTE_IMAGE_HOSTS.split(",") if h.strip()}

def _check_remote(locator):
    host = (urlparse(locator).hostname or "").lower()
    if not host:
        raise InvalidLocator(f"Unsupported image locator '{locator}'")
    allowed = _allowed_remote_hosts()
    if allowed and not any(host == h or host.endswith("." + h) for h in allowed):
        raise InvalidLocator(f"Image host '{host}' is not allowed")

def _object_segments(object_path):
    """Segments after /objects/, or None when the path is not a plain relative path."""
    if not object_path.startswith(OBJECT_PREFIX):
        return None
    parts = object_path[len(OBJECT_PREFIX):].split("/")
    if any(p in ("", ".", "..") or "\\" in p for p in parts):
        return None
    return parts

def normalize_locator(locator):
    """Accepts an object path or an http(s) URL; anything else is rejected."""
    locator = (locator or "").strip()
    if is_remote(locator):
        _check_remote(locator)
        return locator
    if _object_segments(locator):
        return locator
    raise InvalidLocator(f"Unsupported image locator '{locator}'")

def object_owner(object_path):
    """receipts/<owner>/<file> -> owner segment, or None."""
    parts = _object_segments(object_path) or []
    if len(parts) >= 3 and parts[0] == RECEIPTS_DIR:
        return parts[1]
    return None

def user_owns_object(user_id, object_path):
    return object_owner(object_path) == _safe_segment(user_id)

def local_path_for(object_path):
    root = _upload_root()
    relative = object_path[len(OBJECT_PREFIX):] if object_path.startswith(OBJECT_PREFIX) else object_path
    file_path = os.path.abspath(os.path.join(root, *relative.split("/")))
    # No escaping the upload root
    if os.path.commonpath([root, file_path]) != root or not os.path.isfile(file_path):
        raise ObjectNotFound(object_path)
    return file_path

def guess_mime_type(locator, default="image/jpeg"):
    mime, _ = mimetypes.guess_type(locator.split("?", 1)[0])
    return mime or default

def load_object_bytes(locator):
    """Returns (content, mime_type) for an object path or http(s) URL."""
    locator = normalize_locator(locator)
    if is_remote(locator):
        r = requests.get(locator, timeout=settings.HTTP_TIMEOUT_SECONDS)
        r.raise_for_status()
        mime = (r.headers.get("Content-Type") or "").split(";")[0].strip() or guess_mime_type(locator)
        return r.content, mime

    with open(local_path_for(locator), "rb") as f:
        return f.read(), guess_mime_type(locator)
