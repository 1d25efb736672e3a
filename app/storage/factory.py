from pathlib import Path

from app.config.settings import Settings
from app.storage.base import BaseBlobStorage
from app.storage.local_disk_adapter import LocalDiskAdapter
from app.storage.supabase_adapter import SupabaseStorageAdapter


class StorageFactory:
    """Creates the configured blob storage adapter."""

    BACKENDS = ("local", "supabase")

    @classmethod
    def create(cls, settings: Settings) -> BaseBlobStorage:
        backend = settings.storage_backend.strip().lower()
        if backend == "local":
            return LocalDiskAdapter(Path(settings.files_root))
        if backend == "supabase":
            if not settings.supabase_url or not settings.supabase_service_role_key:
                raise ValueError(
                    "supabase_url and supabase_service_role_key are required for "
                    "storage_backend=supabase"
                )
            return SupabaseStorageAdapter(
                url=settings.supabase_url,
                service_role_key=settings.supabase_service_role_key,
                bucket=settings.supabase_bucket,
                timeout_seconds=settings.storage_timeout_seconds,
            )
        raise ValueError(f"Unknown storage backend '{backend}'. Choose from: {list(cls.BACKENDS)}")
