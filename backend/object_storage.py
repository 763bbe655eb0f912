import os
import time
from typing import Iterable, Optional
from urllib.parse import urljoin, urlparse

from werkzeug.security import safe_join
from werkzeug.utils import secure_filename

DEFAULT_ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}
UPLOAD_ROUTE = "uploads"


class UploadError(ValueError):
    """Raised with a message that can be shown to the admin as-is."""


class ObjectStorage:
    """Binary uploads stored under a local root and served from ``/uploads``."""

    def __init__(self, root: str, allowed_extensions: Optional[Iterable[str]] = None):
        self.root = root
        self.allowed_extensions = set(allowed_extensions or DEFAULT_ALLOWED_EXTENSIONS)
        os.makedirs(self.root, exist_ok=True)

    def allowed_image_extension(self, filename: str) -> bool:
        extension = os.path.splitext(filename)[1].lower().lstrip(".")
        if not extension:
            return False
        return extension in self.allowed_extensions

    def clean_filename(self, upload) -> str:
        if not upload or not getattr(upload, "filename", ""):
            raise UploadError("An image file is required.")

        original_filename = secure_filename(upload.filename)
        if not original_filename:
            raise UploadError("Please choose a valid file name.")

        if not self.allowed_image_extension(original_filename):
            raise UploadError(
                "Unsupported image format. Upload PNG, JPG, JPEG, GIF, or WEBP files."
            )
        return original_filename

    def frame_key(self, frame_id: str, upload) -> str:
        return f"frames/{frame_id}_{self.clean_filename(upload)}"

    def product_key(self, upload) -> str:
        stem, extension = os.path.splitext(self.clean_filename(upload))
        return f"products/{stem}-{int(time.time() * 1000)}{extension}"

    def path_for(self, key: str) -> Optional[str]:
        return safe_join(self.root, key)

    def upload(self, upload, key: str, base_url: str) -> str:
        """Store ``upload`` under ``key`` and return its public URL."""
        destination = self.path_for(key)
        if destination is None:
            raise UploadError("Please choose a valid file name.")

        os.makedirs(os.path.dirname(destination), exist_ok=True)
        try:
            upload.save(destination)
        except OSError as exc:
            raise UploadError(
                "We could not store the uploaded image. Please try again."
            ) from exc

        return urljoin(base_url, f"{UPLOAD_ROUTE}/{key}")

    def key_from_reference(self, reference: Optional[str]) -> Optional[str]:
        if not reference:
            return None
        path = urlparse(str(reference)).path
        marker = f"/{UPLOAD_ROUTE}/"
        if marker not in path:
            return None
        key = path.split(marker, 1)[1]
        return key or None

    def delete(self, reference: Optional[str]) -> bool:
        """Remove a stored object by URL. Foreign references are ignored."""
        key = self.key_from_reference(reference)
        if not key:
            return False
        target = self.path_for(key)
        if target is None:
            return False
        try:
            os.remove(target)
        except FileNotFoundError:
            return False
        return True
