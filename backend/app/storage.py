"""Azure Blob Storage for customer uploads.

Stores the files customers attach to service requests in the
``customer-uploads`` container, under
``applications/{draft_id}/{field_name}/{uuid8}_{safe_name}``.

Usage::

    from app.storage import customer_upload_storage

    path = await customer_upload_storage.upload(draft_id, "passport_copy", file)
"""

import logging
import os
import re
import uuid
from datetime import datetime, timedelta, timezone

from azure.core.exceptions import ResourceNotFoundError
from azure.storage.blob import BlobSasPermissions, ContentSettings, generate_blob_sas
from azure.storage.blob.aio import BlobServiceClient
from dotenv import load_dotenv

from app.quote_wizard.models import IncomingFile

load_dotenv()

logger = logging.getLogger(__name__)

CONTAINER_NAME = os.getenv("AZURE_UPLOADS_CONTAINER", "customer-uploads")

_UNSAFE_NAME = re.compile(r"[^\w.\-]+", re.UNICODE)


def _require_connection(connection_string: str | None) -> str:
    if not connection_string:
        raise RuntimeError(
            "AZURE_STORAGE_CONNECTION_STRING is not set. "
            "File upload requires Azure Blob Storage configuration."
        )
    return connection_string


def safe_file_name(file_name: str) -> str:
    """Flatten a client-supplied file name into a single safe path segment."""
    base = file_name.replace("\\", "/").rsplit("/", 1)[-1]
    cleaned = _UNSAFE_NAME.sub("_", base).strip("._")
    return cleaned or "upload"


class CustomerUploadStorage:
    """Async wrapper around Azure Blob Storage for wizard attachments."""

    def __init__(self, connection_string: str | None = None, container: str = CONTAINER_NAME) -> None:
        self.connection_string: str | None = connection_string or os.getenv(
            "AZURE_STORAGE_CONNECTION_STRING"
        )
        self.account_name: str | None = os.getenv("AZURE_STORAGE_ACCOUNT_NAME")
        self.account_key: str | None = os.getenv("AZURE_STORAGE_ACCOUNT_KEY")
        self.container = container

        if not self.connection_string:
            logger.warning(
                "AZURE_STORAGE_CONNECTION_STRING not set, "
                "customer uploads will fail at call time"
            )

    def blob_path(self, draft_id: str, field_name: str, file_name: str) -> str:
        """Build a unique blob path for one field of one draft."""
        unique = uuid.uuid4().hex[:8]
        return f"applications/{draft_id}/{field_name}/{unique}_{safe_file_name(file_name)}"

    async def upload(self, draft_id: str, field_name: str, file: IncomingFile) -> str:
        """Upload the file and return its blob path (not the full URL)."""
        connection_string = _require_connection(self.connection_string)
        blob_path = self.blob_path(draft_id, field_name, file.file_name)
        async with BlobServiceClient.from_connection_string(connection_string) as client:
            blob_client = client.get_blob_client(container=self.container, blob=blob_path)
            await blob_client.upload_blob(
                file.data,
                content_settings=ContentSettings(content_type=file.content_type),
                overwrite=False,
            )
        logger.info("Uploaded %d bytes to %s", file.size, blob_path)
        return blob_path

    async def delete(self, storage_path: str) -> None:
        """Delete a blob.  A blob that is already gone counts as deleted."""
        connection_string = _require_connection(self.connection_string)
        async with BlobServiceClient.from_connection_string(connection_string) as client:
            blob_client = client.get_blob_client(container=self.container, blob=storage_path)
            try:
                await blob_client.delete_blob(delete_snapshots="include")
            except ResourceNotFoundError:
                logger.info("Blob already deleted: %s", storage_path)
                return
        logger.info("Deleted blob: %s", storage_path)

    async def generate_sas_url(self, storage_path: str, expiry_hours: int = 1) -> str:
        """Generate a time-limited read-only URL for one uploaded file."""
        _require_connection(self.connection_string)
        if not self.account_name or not self.account_key:
            parts = dict(
                pair.split("=", 1)
                for pair in self.connection_string.split(";")
                if "=" in pair
            )
            self.account_name = self.account_name or parts.get("AccountName")
            self.account_key = self.account_key or parts.get("AccountKey")

        if not self.account_name or not self.account_key:
            raise RuntimeError(
                "Cannot generate SAS URL: AZURE_STORAGE_ACCOUNT_NAME and "
                "AZURE_STORAGE_ACCOUNT_KEY are required, or include them in "
                "AZURE_STORAGE_CONNECTION_STRING"
            )

        sas_token = generate_blob_sas(
            account_name=self.account_name,
            container_name=self.container,
            blob_name=storage_path,
            account_key=self.account_key,
            permission=BlobSasPermissions(read=True),
            expiry=datetime.now(timezone.utc) + timedelta(hours=expiry_hours),
        )
        return (
            f"https://{self.account_name}.blob.core.windows.net/"
            f"{self.container}/{storage_path}?{sas_token}"
        )


# Module-level singleton
customer_upload_storage = CustomerUploadStorage()
