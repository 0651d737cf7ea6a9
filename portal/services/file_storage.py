import logging
import os
import uuid
from fastapi import UploadFile
from typing import Optional

from portal.core.config.settings import get_settings
from portal.utils.helpers import sanitize_filename

logger = logging.getLogger(__name__)


class FileStorageError(Exception):
    pass


class FileStorage:
    """Stores assignment attachments under ``UPLOAD_DIR`` and serves them from ``/uploads``"""

    def __init__(self, upload_dir: Optional[str] = None, url_prefix: str = "/uploads"):
        settings = get_settings()
        self.upload_dir = upload_dir or settings.UPLOAD_DIR
        self.url_prefix = url_prefix.rstrip("/")
        # Create upload directory if it doesn't exist
        os.makedirs(self.upload_dir, exist_ok=True)

    async def upload(self, file: UploadFile, name_hint: str) -> str:
        """
        Save an uploaded file and return its public URL

        Args:
            file: The uploaded file
            name_hint: Prefix used to group files belonging to one record

        Raises:
            FileStorageError: if the file cannot be written
        """
        original = sanitize_filename(os.path.basename(file.filename or "")) or "attachment"
        unique_filename = f"{sanitize_filename(name_hint)}_{uuid.uuid4().hex}_{original}"
        file_path = os.path.join(self.upload_dir, unique_filename)
        try:
            content = await file.read()
            with open(file_path, "wb") as buffer:
                buffer.write(content)
        except OSError as e:
            logger.error(f"Failed to store {original}: {str(e)}")
            raise FileStorageError(f"Failed to store {original}") from e
        return f"{self.url_prefix}/{unique_filename}"

    def delete(self, url: str) -> bool:
        """
        Delete a previously uploaded file by its URL

        Returns:
            True if deletion was successful, False otherwise
        """
        if not url.startswith(self.url_prefix + "/"):
            return False
        file_path = os.path.join(self.upload_dir, os.path.basename(url))
        try:
            if os.path.exists(file_path):
                os.remove(file_path)
                return True
            return False
        except OSError as e:
            logger.warning(f"Could not delete {file_path}: {str(e)}")
            return False
