from typing import Optional

from app.core.config import settings

_storage = None


def get_storage():
    """Storage backend selected by STORAGE_BACKEND (local or minio)."""
    global _storage
    if _storage is None:
        if settings.STORAGE_BACKEND == "minio":
            from app.storage.minio_client import MinioStorage

            _storage = MinioStorage()
        else:
            from app.storage.local import LocalStorage

            _storage = LocalStorage()
    return _storage


def set_storage(storage: Optional[object]) -> None:
    """Replace the active backend (None resets to the configured one)."""
    global _storage
    _storage = storage
