import os
import uuid
from typing import Optional

import boto3

from app.utils.security import utcnow
from config import settings

EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


class StorageService:
    """Stores payment screenshots on local disk or in S3 and returns their URL/path."""

    def __init__(self, provider: Optional[str] = None, local_root: Optional[str] = None) -> None:
        self.provider = provider or settings.FILE_STORAGE_PROVIDER
        self.bucket = settings.AWS_S3_BUCKET
        self.public_base = settings.AWS_S3_PUBLIC_BASE_URL
        self.s3 = None
        if self.provider == "s3":
            self.s3 = boto3.client("s3")
        self.local_root = os.path.abspath(local_root or os.path.join(os.getcwd(), settings.UPLOAD_DIR))

    def _make_key(self, prefix: str, ext: str) -> str:
        dt = utcnow().strftime("%Y/%m/%d")
        name = f"{uuid.uuid4().hex}.{ext.lstrip('.')}"
        return f"{prefix.strip('/')}/{dt}/{name}"

    def upload_bytes(self, data: bytes, content_type: Optional[str] = None, prefix: str = "payments") -> str:
        if not data:
            raise ValueError("No data to upload")
        key = self._make_key(prefix, EXTENSIONS.get(content_type or "", "bin"))

        if self.provider == "s3":
            if not self.bucket:
                raise RuntimeError("AWS_S3_BUCKET not configured")
            self.s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type or "application/octet-stream",
            )
            if self.public_base:
                return f"{self.public_base.rstrip('/')}/{key}"
            return f"https://{self.bucket}.s3.amazonaws.com/{key}"

        abs_path = os.path.join(self.local_root, key)
        os.makedirs(os.path.dirname(abs_path), exist_ok=True)
        with open(abs_path, "wb") as f:
            f.write(data)
        return f"/{settings.UPLOAD_DIR.strip('/')}/{key}"
