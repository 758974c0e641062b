"""
services/storage/vault.py
Bucketed file vault on local disk.

Keys are derived from a fresh UUID and sharded by its hash so no single
folder grows too large:

    STORAGE_ROOT/<bucket>/a1/b2/c3/<uuid>.jpg   (key = "a1/b2/c3/<uuid>.jpg")
"""

import hashlib
import logging
import uuid
from pathlib import Path
from typing import Iterable, Optional

from config.settings import settings

logger = logging.getLogger(__name__)

AD_IMAGES_BUCKET = "advertisements"
AVATARS_BUCKET = "avatars"
VERIFICATION_BUCKET = "verification-documents"

BUCKETS = {AD_IMAGES_BUCKET, AVATARS_BUCKET, VERIFICATION_BUCKET}
PUBLIC_BUCKETS = {AD_IMAGES_BUCKET, AVATARS_BUCKET}

ALLOWED_MIME_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


class StorageVault:
    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.STORAGE_ROOT)

    def new_key(self, mime_type: str) -> str:
        if mime_type not in ALLOWED_MIME_TYPES:
            raise ValueError(
                f"MIME type '{mime_type}' is not allowed. Allowed types: {sorted(ALLOWED_MIME_TYPES)}"
            )
        object_id = uuid.uuid4()
        digest = hashlib.sha256(str(object_id).encode()).hexdigest()
        return f"{digest[0:2]}/{digest[2:4]}/{digest[4:6]}/{object_id}{ALLOWED_MIME_TYPES[mime_type]}"

    def path_for(self, bucket: str, key: str) -> Path:
        if bucket not in BUCKETS:
            raise ValueError(f"Unknown bucket '{bucket}'")
        path = (self.root / bucket / key).resolve()
        bucket_root = (self.root / bucket).resolve()
        if bucket_root not in path.parents:
            raise ValueError("Object key escapes its bucket")
        return path

    def save(self, bucket: str, key: str, content: bytes) -> Path:
        path = self.path_for(bucket, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(content)
        logger.info(f"Stored {bucket}/{key} ({len(content)} bytes)")
        return path

    def remove(self, bucket: str, keys: Iterable[str]) -> list[str]:
        """Delete files. Returns the keys that could not be removed."""
        failed = []
        for key in keys:
            try:
                self.path_for(bucket, key).unlink(missing_ok=True)
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to remove {bucket}/{key}: {e}")
                failed.append(key)
        return failed

    def exists(self, bucket: str, key: str) -> bool:
        return self.path_for(bucket, key).is_file()

    def read(self, bucket: str, key: str) -> bytes:
        return self.path_for(bucket, key).read_bytes()


def public_url(bucket: str, key: str) -> Optional[str]:
    """URL for public buckets; private buckets (verification documents) have none."""
    if bucket not in PUBLIC_BUCKETS:
        return None
    return f"{settings.STORAGE_PUBLIC_BASE_URL.rstrip('/')}/{bucket}/{key}"


vault = StorageVault()
