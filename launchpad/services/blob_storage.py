"""MinIO: загруженные файлы проектов. Ключ объекта: {project_id}/{имя файла}."""
import io
from datetime import timedelta

from minio import Minio

from launchpad.config import Settings, settings as app_settings


class MinioBlobStorage:
    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or app_settings
        self.bucket = self.settings.minio_bucket

    def _client(self) -> Minio:
        return Minio(
            self.settings.minio_endpoint,
            access_key=self.settings.minio_access_key,
            secret_key=self.settings.minio_secret_key,
            secure=self.settings.minio_secure,
        )

    def ensure_bucket(self) -> None:
        client = self._client()
        if not client.bucket_exists(self.bucket):
            client.make_bucket(self.bucket)

    def upload(self, key: str, data: bytes, content_type: str) -> None:
        self.ensure_bucket()
        self._client().put_object(
            self.bucket,
            key,
            io.BytesIO(data),
            len(data),
            content_type=content_type,
        )

    def public_url(self, key: str) -> str:
        """Публичная ссылка, если бакет открыт (minio_public_base_url), иначе presigned URL."""
        base = self.settings.minio_public_base_url.rstrip("/")
        if base:
            return f"{base}/{self.bucket}/{key}"
        return self._client().presigned_get_object(
            self.bucket,
            key,
            expires=timedelta(seconds=self.settings.presigned_url_expire_seconds),
        )

    def remove(self, key: str) -> None:
        self._client().remove_object(self.bucket, key)
