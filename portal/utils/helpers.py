from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import quote
import hashlib
import re
import unicodedata

def get_utc_now() -> datetime:
    """Get current UTC datetime"""
    return datetime.now(timezone.utc)

def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC; convert aware ones to UTC"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

def format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime to ISO format with timezone"""
    dt = as_utc(dt)
    return dt.isoformat() if dt else None

def hash_id(value: int) -> str:
    """SHA-256 hex digest of an integer id"""
    return hashlib.sha256(str(value).encode("utf-8")).hexdigest()

def sanitize_filename(filename: str) -> str:
    """
    Sanitize a filename by removing invalid characters
    
    Args:
        filename: Original filename
        
    Returns:
        Sanitized filename
    """
    # Remove invalid characters
    filename = re.sub(r'[<>:"/\\|?*]', '', filename)
    # Remove control characters
    filename = "".join(char for char in filename if ord(char) >= 32)
    return filename.strip()

def content_disposition(filename: str) -> str:
    """Attachment header with an ASCII fallback plus the RFC 5987 UTF-8 name"""
    fallback = unicodedata.normalize("NFKD", filename).encode("ascii", "ignore").decode("ascii")
    fallback = re.sub(r'[^A-Za-z0-9._ -]', '', fallback).strip() or "download"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"

def success_response(message: str, data: Any = None) -> Dict[str, Any]:
    """Standard success envelope"""
    body: Dict[str, Any] = {"message": message, "success": True}
    if data is not None:
        body["data"] = data
    return body
