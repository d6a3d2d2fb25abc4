"""
Storage Service
Blob store for generated images - supports Google Cloud Storage, S3, and
local filesystem. Uploads never overwrite: writing to an existing path fails,
so a retried upload needs a fresh path.
"""

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class BlobExistsError(Exception):
    """Upload target path is already taken."""


class StorageService:
    """Service for file storage operations."""

    def __init__(self, base_path: Optional[str] = None):
        # Priority: GCS > Local > S3
        self.use_gcs = settings.USE_GCS
        self.use_local = settings.USE_LOCAL_STORAGE and not self.use_gcs

        if self.use_gcs:
            from google.cloud import storage
            self.gcs_client = storage.Client(project=settings.GCP_PROJECT_ID)
            self.bucket_assets = self.gcs_client.bucket(settings.GCS_BUCKET_ASSETS)
            logger.info(f"[Storage] Using Google Cloud Storage: {settings.GCS_BUCKET_ASSETS}")

        elif self.use_local:
            self.base_path = Path(base_path or settings.LOCAL_STORAGE_PATH)
            self.base_path.mkdir(parents=True, exist_ok=True)
            logger.info(f"[Storage] Using local storage: {self.base_path}")

        else:
            import boto3
            from botocore.config import Config
            self.s3 = boto3.client(
                "s3",
                endpoint_url=settings.S3_ENDPOINT or None,
                aws_access_key_id=settings.S3_ACCESS_KEY,
                aws_secret_access_key=settings.S3_SECRET_KEY,
                region_name=settings.S3_REGION,
                config=Config(signature_version="s3v4")
            )
            self.bucket = settings.S3_BUCKET
            logger.info(f"[Storage] Using S3: {self.bucket}")

    @property
    def backend(self) -> str:
        if self.use_gcs:
            return "gcs"
        return "local" if self.use_local else "s3"

    @staticmethod
    def generated_image_path(business_id: str, extension: str = "png") -> str:
        """Fresh, collision-free path for a generated image."""
        stamp = datetime.utcnow().strftime("%Y%m%d%H%M%S%f")
        return f"{business_id}/generated/{stamp}_{uuid.uuid4().hex[:8]}.{extension}"

    async def upload_bytes(self, data: bytes, path: str, content_type: str = "image/png") -> str:
        """
        Upload bytes to a new path and return its public URL.

        Raises:
            BlobExistsError: something is already stored at `path`
        """
        if self.use_gcs:
            self._upload_gcs(data, path, content_type)
        elif self.use_local:
            self._upload_local(data, path)
        else:
            self._upload_s3(data, path, content_type)

        logger.info(f"[Storage] Uploaded {len(data)} bytes to {path}")
        return self.get_public_url(path)

    def _upload_gcs(self, data: bytes, path: str, content_type: str):
        from google.api_core.exceptions import PreconditionFailed

        blob = self.bucket_assets.blob(path)
        try:
            # Generation 0 means "only if the object does not exist yet"
            blob.upload_from_string(data, content_type=content_type, if_generation_match=0)
        except PreconditionFailed:
            raise BlobExistsError(f"Object already exists: {path}")

    def _upload_local(self, data: bytes, path: str):
        file_path = self.base_path / path
        file_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(file_path, "xb") as f:
                f.write(data)
        except FileExistsError:
            raise BlobExistsError(f"File already exists: {path}")

    def _upload_s3(self, data: bytes, path: str, content_type: str):
        from botocore.exceptions import ClientError

        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
                IfNoneMatch="*",
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "PreconditionFailed":
                raise BlobExistsError(f"Object already exists: {path}")
            raise

    async def get_file(self, path: str) -> bytes:
        """Get file contents."""
        if self.use_gcs:
            return self.bucket_assets.blob(path).download_as_bytes()
        elif self.use_local:
            file_path = (self.base_path / path).resolve()
            if self.base_path.resolve() not in file_path.parents:
                raise FileNotFoundError(path)
            with open(file_path, "rb") as f:
                return f.read()
        else:
            response = self.s3.get_object(Bucket=self.bucket, Key=path)
            return response["Body"].read()

    def get_public_url(self, path: str) -> str:
        """Public URL for a stored file, served through the API file proxy."""
        return f"{settings.API_BASE_URL.rstrip('/')}/files/{path}"

    def health_check(self) -> bool:
        try:
            if self.use_gcs:
                return self.bucket_assets.exists()
            if self.use_local:
                return self.base_path.is_dir()
            self.s3.head_bucket(Bucket=self.bucket)
            return True
        except Exception as e:
            logger.warning(f"[Storage] Health check failed: {e}")
            return False


__all__ = ["BlobExistsError", "StorageService"]
