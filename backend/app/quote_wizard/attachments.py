"""Attachment lifecycle for wizard file fields.

Each attachment is created in two phases (store the bytes, then insert the
metadata row) and deleted in the same order.  An ``Attachment`` is only
recorded on the session once both phases have succeeded; a failure in the
second phase triggers a best-effort delete of the stored object.

Operations on the same field are serialized with a per-field lock; uploads
to different fields run concurrently.
"""

import asyncio
import logging
import os
from typing import Callable, Dict, Optional

from app.quote_wizard.config import WizardSettings, wizard_settings
from app.quote_wizard.contracts import AttachmentRecordStore, ObjectStore
from app.quote_wizard.errors import (
    AttachmentRejectedError,
    DraftNotReadyError,
    call_collaborator,
)
from app.quote_wizard.models import Attachment, IncomingFile, WizardSession

logger = logging.getLogger(__name__)

_GENERIC_CONTENT_TYPES = {"", "application/octet-stream"}


def check_incoming_file(
    field_name: str,
    file: IncomingFile,
    session: WizardSession,
    settings: WizardSettings = wizard_settings,
) -> None:
    """Reject a file before any network call.

    Raises:
        AttachmentRejectedError: Empty, too large, disallowed type, or the
            same file name is already attached to another field.
    """
    if file.size == 0:
        raise AttachmentRejectedError(field_name, "The selected file is empty.")

    if file.size > settings.max_attachment_bytes:
        limit_mb = settings.max_attachment_bytes // (1024 * 1024)
        raise AttachmentRejectedError(
            field_name, f"File is too large. Maximum size is {limit_mb} MB."
        )

    ext = os.path.splitext(file.file_name)[1].lstrip(".").lower()
    content_type = (file.content_type or "").lower()
    if ext not in settings.allowed_extensions or (
        content_type not in _GENERIC_CONTENT_TYPES
        and content_type not in settings.allowed_mime_types
    ):
        raise AttachmentRejectedError(
            field_name, "Unsupported file type. Please upload a PDF, JPG or PNG file."
        )

    for other_field, existing in session.attachments.items():
        if other_field != field_name and existing.file_name == file.file_name:
            raise AttachmentRejectedError(
                field_name,
                "This file has already been uploaded for another document.",
            )


class AttachmentLifecycleManager:
    """Owns upload / delete of attachments for one wizard session.

    Args:
        session: The session whose ``attachments`` and ``uploading_fields``
            this manager maintains.
        object_store: Storage collaborator for the file bytes.
        record_store: Relational collaborator for the metadata rows.
        settings: Size and type limits.
        on_change: Called whenever the uploading set changes.
    """

    def __init__(
        self,
        session: WizardSession,
        object_store: ObjectStore,
        record_store: AttachmentRecordStore,
        settings: WizardSettings = wizard_settings,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self.session = session
        self._objects = object_store
        self._records = record_store
        self._settings = settings
        self._on_change = on_change
        self._locks: Dict[str, asyncio.Lock] = {}
        self._generation = 0

    def _lock_for(self, field_name: str) -> asyncio.Lock:
        lock = self._locks.get(field_name)
        if lock is None:
            lock = self._locks[field_name] = asyncio.Lock()
        return lock

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def is_busy(self, field_name: str) -> bool:
        lock = self._locks.get(field_name)
        return lock is not None and lock.locked()

    # ------------------------------------------------------------------
    # Attach
    # ------------------------------------------------------------------

    async def attach(self, field_name: str, file: IncomingFile) -> Optional[Attachment]:
        """Upload *file* for *field_name*, replacing any existing attachment.

        Returns:
            The new Attachment, or ``None`` if the session was reset while
            the upload was in flight (the result is discarded and cleaned up).

        Raises:
            AttachmentRejectedError: Pre-upload checks failed.
            DraftNotReadyError: No draft exists yet; retry once it does.
            TransientIOError: Upload, metadata insert or replacement failed.
        """
        check_incoming_file(field_name, file, self.session, self._settings)

        draft_id = self.session.draft_id
        if draft_id is None:
            raise DraftNotReadyError()

        generation = self._generation
        async with self._lock_for(field_name):
            if generation != self._generation:
                return None

            if field_name in self.session.attachments:
                await self._detach_locked(field_name)

            self.session.uploading_fields.add(field_name)
            self._changed()
            try:
                attachment = await self._create(draft_id, field_name, file)
            finally:
                if generation == self._generation:
                    self.session.uploading_fields.discard(field_name)

            if generation != self._generation:
                logger.info(
                    "Discarding upload for field %s of draft %s after reset",
                    field_name,
                    draft_id,
                )
                await self._discard(attachment)
                return None

            self.session.attachments[field_name] = attachment
            self._changed()
            return attachment

    async def _create(self, draft_id: str, field_name: str, file: IncomingFile) -> Attachment:
        storage_path = await call_collaborator(
            "Uploading the file", self._objects.upload(draft_id, field_name, file)
        )
        try:
            attachment_id = await call_collaborator(
                "Saving the file",
                self._records.create(draft_id, field_name, storage_path, file),
            )
        except Exception:
            logger.warning(
                "Metadata insert failed for field %s of draft %s, removing stored object",
                field_name,
                draft_id,
            )
            await self._delete_object_quietly(storage_path)
            raise

        logger.info("Attached file to field %s of draft %s", field_name, draft_id)
        return Attachment(
            id=str(attachment_id),
            field_name=field_name,
            storage_path=storage_path,
            file_name=file.file_name,
            file_size=file.size,
            content_type=file.content_type or "application/octet-stream",
        )

    # ------------------------------------------------------------------
    # Detach
    # ------------------------------------------------------------------

    async def detach(self, field_name: str) -> bool:
        """Remove the attachment of *field_name*.

        Returns:
            True if an attachment was removed, False if there was none.

        Raises:
            TransientIOError: A remote delete failed; the Attachment is kept.
        """
        async with self._lock_for(field_name):
            return await self._detach_locked(field_name)

    async def _detach_locked(self, field_name: str) -> bool:
        attachment = self.session.attachments.get(field_name)
        if attachment is None:
            return False

        await call_collaborator(
            "Removing the file", self._objects.delete(attachment.storage_path)
        )
        await call_collaborator(
            "Removing the file", self._records.delete(attachment.id)
        )

        if self.session.attachments.get(field_name) is attachment:
            del self.session.attachments[field_name]
        logger.info("Detached attachment %s from field %s", attachment.id, field_name)
        self._changed()
        return True

    # ------------------------------------------------------------------
    # Cleanup helpers
    # ------------------------------------------------------------------

    async def _delete_object_quietly(self, storage_path: str) -> None:
        try:
            await self._objects.delete(storage_path)
        except Exception:
            logger.exception("Failed to clean up stored object %s", storage_path)

    async def _discard(self, attachment: Attachment) -> None:
        await self._delete_object_quietly(attachment.storage_path)
        try:
            await self._records.delete(attachment.id)
        except Exception:
            logger.exception("Failed to clean up attachment record %s", attachment.id)

    def reset(self) -> None:
        """Forget in-flight work; late results are discarded, not applied."""
        self._generation += 1
        self._locks = {}
