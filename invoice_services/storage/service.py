"""S3-compatible document store using MinIO.

Each document is stored as one JSON object ``<prefix>/<id>.json`` holding the
full :class:`Document`. Listing by kind reads every object under the prefix;
there is no secondary index.

Based on MinIO Python SDK:
https://min.io/docs/minio/linux/developers/python/API.html

The SDK is synchronous, so calls run in a worker thread to keep the event
loop free.
"""

import asyncio
import io
import logging

from minio import Minio
from minio.error import S3Error
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from invoice_services.shared.config import Settings
from invoice_services.storage.base import Document, DocumentStore, utc_now

logger = logging.getLogger(__name__)

_s3_retry = retry(
    retry=retry_if_exception_type(S3Error),
    stop=stop_after_attempt(3),
    wait=wait_exponential_jitter(initial=1, max=10),
    reraise=True,
)


class S3DocumentStore(DocumentStore):
    """Document store on S3-compatible object storage."""

    def __init__(self, settings: Settings) -> None:
        """Initialize storage service.

        Args:
            settings: Application settings with storage configuration
        """
        super().__init__(settings)
        self._client: Minio | None = None
        self._bucket_ready = False

    @property
    def backend_name(self) -> str:
        return "s3"

    def _get_client(self) -> Minio:
        """Get or create MinIO client (lazy initialization).

        Returns:
            Configured Minio client instance

        Raises:
            ValueError: If storage credentials are not configured
        """
        if self._client is None:
            if not self.settings.storage_access_key:
                raise ValueError(
                    "Storage access key not configured. "
                    "Set APP_STORAGE_ACCESS_KEY environment variable."
                )
            if not self.settings.storage_secret_key:
                raise ValueError(
                    "Storage secret key not configured. "
                    "Set APP_STORAGE_SECRET_KEY environment variable."
                )

            self._client = Minio(
                endpoint=self.settings.storage_endpoint,
                access_key=self.settings.storage_access_key,
                secret_key=self.settings.storage_secret_key,
                secure=self.settings.storage_secure,
            )
            logger.info(f"MinIO client initialized for endpoint: {self.settings.storage_endpoint}")

        return self._client

    def is_available(self) -> bool:
        """Check if storage credentials are set.

        Returns:
            True if access and secret keys are configured
        """
        return bool(self.settings.storage_access_key and self.settings.storage_secret_key)

    def _ensure_bucket(self) -> None:
        if self._bucket_ready:
            return

        client = self._get_client()
        bucket = self.settings.storage_bucket
        if not client.bucket_exists(bucket):
            client.make_bucket(bucket)
            logger.info(f"Created bucket: {bucket}")

        self._bucket_ready = True

    def _object_name(self, id: str) -> str:
        return f"{self.settings.storage_prefix}/{id}.json"

    @_s3_retry
    def _put(self, document: Document) -> None:
        client = self._get_client()
        self._ensure_bucket()

        data = document.model_dump_json().encode("utf-8")
        client.put_object(
            bucket_name=self.settings.storage_bucket,
            object_name=self._object_name(document.id),
            data=io.BytesIO(data),
            length=len(data),
            content_type="application/json",
        )
        logger.info(f"Stored document {document.id} ({len(data)} bytes)")

    def _read(self, object_name: str) -> Document | None:
        client = self._get_client()
        try:
            response = client.get_object(
                bucket_name=self.settings.storage_bucket, object_name=object_name
            )
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchBucket"):
                return None
            raise

        try:
            return Document.model_validate_json(response.read())
        finally:
            response.close()
            response.release_conn()

    def _read_all(self, kind: str) -> list[Document]:
        client = self._get_client()
        bucket = self.settings.storage_bucket
        if not client.bucket_exists(bucket):
            return []

        documents = []
        for obj in client.list_objects(bucket, prefix=f"{self.settings.storage_prefix}/"):
            document = self._read(obj.object_name)
            if document is not None and document.kind == kind:
                documents.append(document)

        return sorted(documents, key=lambda d: d.created_at, reverse=True)

    @_s3_retry
    def _remove(self, id: str) -> None:
        client = self._get_client()
        client.remove_object(
            bucket_name=self.settings.storage_bucket, object_name=self._object_name(id)
        )
        logger.info(f"Deleted document {id}")

    async def create_document(self, id: str, kind: str, title: str, content: str) -> None:
        document = Document(id=id, kind=kind, title=title, content=content, created_at=utc_now())
        await asyncio.to_thread(self._put, document)

    async def get_document(self, id: str) -> Document | None:
        return await asyncio.to_thread(self._read, self._object_name(id))

    async def get_all_documents(self, kind: str) -> list[Document]:
        return await asyncio.to_thread(self._read_all, kind)

    async def update_document(
        self, id: str, title: str | None = None, content: str | None = None
    ) -> None:
        changes: dict[str, str] = {}
        if title is not None:
            changes["title"] = title
        if content is not None:
            changes["content"] = content
        if not changes:
            return

        document = await self.get_document(id)
        if document is None:
            return
        await asyncio.to_thread(self._put, document.model_copy(update=changes))

    async def delete_document(self, id: str) -> None:
        await asyncio.to_thread(self._remove, id)
