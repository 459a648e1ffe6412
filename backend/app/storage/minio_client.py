import io
from datetime import timedelta

from fastapi import HTTPException, UploadFile
from minio import Minio
from minio.error import S3Error

from app.core.config import settings
from app.core.logging import storage_logger
from app.storage.local import StoredFile, read_validated_upload


class MinioStorage:
    backend = "minio"

    def __init__(self):
        self.client = Minio(
            settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_SECURE,
        )
        self.bucket = settings.MINIO_BUCKET
        # Do not fail startup when MinIO is unreachable; uploads retry later
        self._ensure_bucket()

    def _ensure_bucket(self):
        """Create bucket if it doesn't exist"""
        try:
            if not self.client.bucket_exists(self.bucket):
                self.client.make_bucket(self.bucket)
        except Exception as e:
            storage_logger.warning("MinIO bucket check failed", bucket=self.bucket, error=str(e))

    async def save(self, file: UploadFile, channel_id: int) -> StoredFile:
        content, safe_name, relative_path, mime_type = await read_validated_upload(file, channel_id)
        try:
            self.client.put_object(
                self.bucket,
                relative_path,
                io.BytesIO(content),
                len(content),
                content_type=mime_type,
            )
        except S3Error as e:
            storage_logger.error("MinIO upload failed", error=e, path=relative_path)
            raise HTTPException(status_code=502, detail="Failed to store file")
        storage_logger.info("File stored", backend=self.backend, path=relative_path, size=len(content))
        return StoredFile(safe_name, relative_path, len(content), mime_type)

    async def delete(self, storage_path: str) -> bool:
        try:
            self.client.remove_object(self.bucket, storage_path)
        except S3Error as e:
            storage_logger.warning("MinIO delete failed", path=storage_path, error=str(e))
            return False
        return True

    def url_for(self, attachment_id: int, storage_path: str) -> str:
        """Presigned download URL for the object."""
        try:
            return self.client.presigned_get_object(
                self.bucket,
                storage_path,
                expires=timedelta(minutes=settings.MINIO_URL_EXPIRY_MINUTES),
            )
        except S3Error as e:
            storage_logger.error("Failed to presign URL", error=e, path=storage_path)
            raise HTTPException(status_code=502, detail="Failed to generate download URL")
