"""Unit tests for S3DocumentStore (MinIO/S3-compatible storage).

Tests storage operations with mocked MinIO client.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from minio.error import S3Error

from invoice_services.shared.config import Settings
from invoice_services.storage.base import INVOICE_KIND, Document
from invoice_services.storage.service import S3DocumentStore


@pytest.fixture
def storage_settings() -> Settings:
    """Create test settings with S3 storage configured."""
    return Settings(
        _env_file=None,
        storage_backend="s3",
        storage_endpoint="localhost:9000",
        storage_access_key="test-access-key",
        storage_secret_key="test-secret-key",
        storage_bucket="test-invoices",
        storage_secure=False,
    )


@pytest.fixture
def mock_minio_client() -> MagicMock:
    """Create mock MinIO client."""
    mock = MagicMock()
    mock.bucket_exists.return_value = True
    return mock


def _object_response(document: Document) -> MagicMock:
    response = MagicMock()
    response.read.return_value = document.model_dump_json().encode("utf-8")
    return response


def _not_found(code: str = "NoSuchKey") -> S3Error:
    return S3Error(
        code=code,
        message="Object not found",
        resource="/test-invoices/documents/missing.json",
        request_id="12345",
        host_id="host",
        response=MagicMock(status=404, data=b""),
    )


class TestS3DocumentStoreAvailability:
    """Test store availability checks."""

    def test_is_available_when_configured(self, storage_settings: Settings) -> None:
        """Should return True when credentials are set."""
        assert S3DocumentStore(storage_settings).is_available() is True

    def test_is_not_available_without_secret_key(self) -> None:
        """Should return False when secret key is missing."""
        settings = Settings(_env_file=None, storage_access_key="access", storage_secret_key="")
        assert S3DocumentStore(settings).is_available() is False

    def test_client_requires_credentials(self) -> None:
        """Should raise ValueError when creating a client without credentials."""
        store = S3DocumentStore(Settings(_env_file=None, storage_access_key=""))

        with pytest.raises(ValueError, match="APP_STORAGE_ACCESS_KEY"):
            store._get_client()


class TestS3DocumentStoreWrites:
    """Test create, update and delete."""

    @pytest.mark.asyncio
    async def test_create_document(
        self, storage_settings: Settings, mock_minio_client: MagicMock
    ) -> None:
        """Should put one JSON object under the configured prefix."""
        store = S3DocumentStore(storage_settings)

        with patch.object(store, "_get_client", return_value=mock_minio_client):
            await store.create_document("d1", INVOICE_KIND, "Invoice: Acme", '{"invoices": []}')

        kwargs = mock_minio_client.put_object.call_args.kwargs
        assert kwargs["bucket_name"] == "test-invoices"
        assert kwargs["object_name"] == "documents/d1.json"
        assert kwargs["content_type"] == "application/json"
        stored = Document.model_validate_json(kwargs["data"].getvalue())
        assert stored.title == "Invoice: Acme"
        assert stored.content == '{"invoices": []}'

    @pytest.mark.asyncio
    async def test_creates_missing_bucket(
        self, storage_settings: Settings, mock_minio_client: MagicMock
    ) -> None:
        """Should create the bucket on first write when it does not exist."""
        mock_minio_client.bucket_exists.return_value = False
        store = S3DocumentStore(storage_settings)

        with patch.object(store, "_get_client", return_value=mock_minio_client):
            await store.create_document("d1", INVOICE_KIND, "t", "{}")

        mock_minio_client.make_bucket.assert_called_once_with("test-invoices")

    @pytest.mark.asyncio
    async def test_update_keeps_other_fields(
        self, storage_settings: Settings, mock_minio_client: MagicMock
    ) -> None:
        """Should rewrite the object with only the given fields changed."""
        original = Document(id="d1", kind=INVOICE_KIND, title="Title", content="{}")
        mock_minio_client.get_object.return_value = _object_response(original)
        store = S3DocumentStore(storage_settings)

        with patch.object(store, "_get_client", return_value=mock_minio_client):
            await store.update_document("d1", content='{"invoices": []}')

        data = mock_minio_client.put_object.call_args.kwargs["data"].getvalue()
        updated = Document.model_validate_json(data)
        assert updated.title == "Title"
        assert updated.content == '{"invoices": []}'
        assert updated.created_at == original.created_at

    @pytest.mark.asyncio
    async def test_update_missing_is_noop(
        self, storage_settings: Settings, mock_minio_client: MagicMock
    ) -> None:
        """Should not write when the document does not exist."""
        mock_minio_client.get_object.side_effect = _not_found()
        store = S3DocumentStore(storage_settings)

        with patch.object(store, "_get_client", return_value=mock_minio_client):
            await store.update_document("missing", content="{}")

        mock_minio_client.put_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_document(
        self, storage_settings: Settings, mock_minio_client: MagicMock
    ) -> None:
        """Should remove the document's object."""
        store = S3DocumentStore(storage_settings)

        with patch.object(store, "_get_client", return_value=mock_minio_client):
            await store.delete_document("d1")

        mock_minio_client.remove_object.assert_called_once_with(
            bucket_name="test-invoices", object_name="documents/d1.json"
        )


class TestS3DocumentStoreReads:
    """Test get and list."""

    @pytest.mark.asyncio
    async def test_get_document(
        self, storage_settings: Settings, mock_minio_client: MagicMock
    ) -> None:
        """Should decode the stored object and release the connection."""
        response = _object_response(Document(id="d1", kind=INVOICE_KIND, title="t", content="{}"))
        mock_minio_client.get_object.return_value = response
        store = S3DocumentStore(storage_settings)

        with patch.object(store, "_get_client", return_value=mock_minio_client):
            document = await store.get_document("d1")

        assert document is not None
        assert document.id == "d1"
        response.close.assert_called_once()
        response.release_conn.assert_called_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["NoSuchKey", "NoSuchBucket"])
    async def test_get_missing_document(
        self, storage_settings: Settings, mock_minio_client: MagicMock, code: str
    ) -> None:
        """Should return None for absent objects."""
        mock_minio_client.get_object.side_effect = _not_found(code)
        store = S3DocumentStore(storage_settings)

        with patch.object(store, "_get_client", return_value=mock_minio_client):
            assert await store.get_document("missing") is None

    @pytest.mark.asyncio
    async def test_get_propagates_other_errors(
        self, storage_settings: Settings, mock_minio_client: MagicMock
    ) -> None:
        """Should raise storage errors other than not-found."""
        mock_minio_client.get_object.side_effect = _not_found("AccessDenied")
        store = S3DocumentStore(storage_settings)

        with patch.object(store, "_get_client", return_value=mock_minio_client):
            with pytest.raises(S3Error):
                await store.get_document("d1")

    @pytest.mark.asyncio
    async def test_list_filters_by_kind_newest_first(
        self, storage_settings: Settings, mock_minio_client: MagicMock
    ) -> None:
        """Should return only the requested kind, most recent first."""
        now = datetime.now(UTC)
        documents = {
            "documents/old.json": Document(
                id="old", kind=INVOICE_KIND, title="t", created_at=now - timedelta(hours=1)
            ),
            "documents/note.json": Document(id="note", kind="text", title="t", created_at=now),
            "documents/new.json": Document(id="new", kind=INVOICE_KIND, title="t", created_at=now),
        }
        mock_minio_client.list_objects.return_value = [
            MagicMock(object_name=name) for name in documents
        ]
        mock_minio_client.get_object.side_effect = lambda bucket_name, object_name: (
            _object_response(documents[object_name])
        )
        store = S3DocumentStore(storage_settings)

        with patch.object(store, "_get_client", return_value=mock_minio_client):
            listed = await store.get_all_documents(INVOICE_KIND)

        assert [d.id for d in listed] == ["new", "old"]
        mock_minio_client.list_objects.assert_called_once_with("test-invoices", prefix="documents/")

    @pytest.mark.asyncio
    async def test_list_without_bucket(
        self, storage_settings: Settings, mock_minio_client: MagicMock
    ) -> None:
        """Should return an empty list when the bucket does not exist yet."""
        mock_minio_client.bucket_exists.return_value = False
        store = S3DocumentStore(storage_settings)

        with patch.object(store, "_get_client", return_value=mock_minio_client):
            assert await store.get_all_documents(INVOICE_KIND) == []
