"""Document storage on a GCS bucket.

Layout: ``{dossier_id}/uploads/{timestamp}_{sanitized name}`` for seller uploads,
``{dossier_id}/output/{name}`` for generated files. The google-cloud-storage client
is synchronous, so every call runs in a worker thread.
"""
from __future__ import annotations

import asyncio
import logging
import time

from google.cloud import storage

from app.services.utils import sanitize_filename

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a bucket read or write fails."""


class DocumentStorage:
    def __init__(self, bucket_name: str, client: storage.Client | None = None):
        self.bucket_name = bucket_name
        self._client = client

    def _bucket(self) -> storage.Bucket:
        if self._client is None:
            self._client = storage.Client()
        return self._client.bucket(self.bucket_name)

    async def download(self, storage_path: str) -> bytes:
        """Raw bytes of one stored object."""
        def _download() -> bytes:
            return self._bucket().blob(storage_path).download_as_bytes()

        try:
            return await asyncio.to_thread(_download)
        except Exception as exc:
            logger.error("[storage] download %s failed: %s", storage_path, exc)
            raise StorageError(f"Download failed for {storage_path}: {exc}") from exc

    async def _upload(self, storage_path: str, data: bytes, content_type: str) -> str:
        def _put() -> None:
            blob = self._bucket().blob(storage_path)
            blob.cache_control = "private, max-age=3600"
            blob.upload_from_string(data, content_type=content_type)

        try:
            await asyncio.to_thread(_put)
        except Exception as exc:
            logger.error("[storage] upload %s failed: %s", storage_path, exc)
            raise StorageError(f"Upload failed for {storage_path}: {exc}") from exc
        return storage_path

    async def upload_document(
        self, dossier_id: str, filename: str, data: bytes, content_type: str = "application/pdf"
    ) -> str:
        """Store a seller upload and return its storage path."""
        safe_name = f"{int(time.time() * 1000)}_{sanitize_filename(filename)}"
        return await self._upload(f"{dossier_id}/uploads/{safe_name}", data, content_type)

    async def upload_generated_file(
        self, dossier_id: str, name: str, data: bytes, content_type: str = "application/pdf"
    ) -> str:
        """Store a generated artifact (e.g. the rendered pre-etat date) by logical name."""
        return await self._upload(f"{dossier_id}/output/{name}", data, content_type)

    async def remove(self, storage_path: str) -> None:
        def _delete() -> None:
            self._bucket().blob(storage_path).delete()

        try:
            await asyncio.to_thread(_delete)
        except Exception as exc:
            logger.warning("[storage] remove %s failed: %s", storage_path, exc)


def get_document_storage() -> DocumentStorage:
    from app.config import GCS_BUCKET
    return DocumentStorage(GCS_BUCKET)
