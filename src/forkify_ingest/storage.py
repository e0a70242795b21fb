from __future__ import annotations
import logging
import mimetypes
import re
import time
from pathlib import PurePath
from supabase import Client
from forkify_ingest.config import Config
from forkify_ingest.models import ImageSource, StoredImage

logger = logging.getLogger(__name__)


class UploadError(Exception):
    pass


def storage_path(user_id: str, source: ImageSource) -> str:
    name = PurePath(source.filename)
    stem = re.sub(r"[^a-zA-Z0-9.-]", "_", name.stem) or "image"
    ext = name.suffix.lower() or mimetypes.guess_extension(source.content_type) or ".jpg"
    return f"uploads/{user_id}/{int(time.time() * 1000)}_{stem}{ext}"


class ImageStore:
    """Durable storage for recipe photos in a Supabase Storage bucket."""

    def __init__(self, client: Client, config: Config):
        self.client = client
        self.bucket = config.storage_bucket
        self.signed_url_ttl = config.signed_url_ttl

    def upload(self, source: ImageSource, user_id: str) -> StoredImage:
        path = storage_path(user_id, source)
        bucket = self.client.storage.from_(self.bucket)
        try:
            bucket.upload(
                path=path,
                file=source.data,
                file_options={"content-type": source.content_type, "upsert": "false"},
            )
        except Exception as e:
            raise UploadError(f"Failed to upload {source.filename}: {e}") from e

        try:
            signed = bucket.create_signed_url(path, self.signed_url_ttl)
            public_url = bucket.get_public_url(path)
        except Exception as e:
            self._remove(path)
            raise UploadError(f"Failed to create signed URL for {source.filename}: {e}") from e

        signed_url = signed.get("signedURL") or signed.get("signedUrl")
        if not signed_url:
            self._remove(path)
            raise UploadError(f"No signed URL returned for {source.filename}")

        logger.debug("Uploaded %s (%d bytes) to %s", source.filename, len(source.data), path)
        return StoredImage(path=path, public_url=public_url, signed_url=signed_url)

    def _remove(self, path: str) -> None:
        try:
            self.client.storage.from_(self.bucket).remove([path])
        except Exception:
            logger.warning("Could not remove uploaded image %s", path)
