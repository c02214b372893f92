import io
import logging
import os
import re
import secrets
from PIL import Image, UnidentifiedImageError
from config import ALLOWED_MEDIA_TYPES, MAX_UPLOAD_SIZE, MEDIA_NAME_BYTES, MEDIA_COLLISION_RETRIES
from exceptions import CapacityError, NotFoundError, StoreUnavailableError, ValidationError

logger = logging.getLogger(__name__)

MEDIA_REF_PATTERN = re.compile(r"^[0-9a-f]+(-\d+)?\.[a-z0-9]+$")


class MediaGate:
    """Validates uploads and writes them under generated names in the upload directory."""

    def __init__(self, upload_dir: str, max_size: int = MAX_UPLOAD_SIZE,
                 allowed_types: dict = None):
        self.upload_dir = upload_dir
        self.max_size = max_size
        self.allowed_types = allowed_types or ALLOWED_MEDIA_TYPES

    def store(self, data: bytes, declared_mime_type: str, size: int) -> str:
        """Persist an upload and return its media ref (the generated file name)."""
        mime_type = (declared_mime_type or "").split(";")[0].strip().lower()
        if mime_type not in self.allowed_types:
            raise CapacityError("Invalid file type")
        if size > self.max_size or len(data) > self.max_size:
            raise CapacityError("File too large")
        if mime_type.startswith("image/"):
            self._verify_image(data)

        os.makedirs(self.upload_dir, exist_ok=True)
        return self._write_unique(data, self.allowed_types[mime_type])

    def _verify_image(self, data: bytes):
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.verify()
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
            raise ValidationError("Invalid image") from e

    def _write_unique(self, data: bytes, extension: str) -> str:
        basename = secrets.token_hex(MEDIA_NAME_BYTES)
        filename = f"{basename}.{extension}"
        for counter in range(1, MEDIA_COLLISION_RETRIES + 1):
            try:
                # "xb" fails instead of overwriting an existing file
                with open(os.path.join(self.upload_dir, filename), "xb") as fh:
                    fh.write(data)
                return filename
            except FileExistsError:
                filename = f"{basename}-{counter}.{extension}"
        logger.error("Gave up finding a free media name for %s after %s tries", basename, MEDIA_COLLISION_RETRIES)
        raise StoreUnavailableError("Failed to store uploaded file")

    def path_for(self, ref: str) -> str:
        if not ref or not MEDIA_REF_PATTERN.match(ref):
            raise NotFoundError("Media not found")
        path = os.path.join(self.upload_dir, ref)
        if not os.path.isfile(path):
            raise NotFoundError("Media not found")
        return path

    def release(self, ref: str) -> None:
        """Delete a stored file. Missing files are fine."""
        if not ref or not MEDIA_REF_PATTERN.match(ref):
            logger.warning("Refusing to release malformed media ref %r", ref)
            return
        try:
            os.remove(os.path.join(self.upload_dir, ref))
        except FileNotFoundError:
            logger.debug("Media %s already gone", ref)
