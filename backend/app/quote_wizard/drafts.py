"""Draft application identity for one wizard session.

The server-side draft is created lazily, exactly once per session, and is
the anchor for every attachment and for the final submission.
"""

import asyncio
import logging
from typing import Optional

from app.quote_wizard.contracts import DraftCreator
from app.quote_wizard.errors import call_collaborator

logger = logging.getLogger(__name__)


class DraftApplicationManager:
    """Creates the draft once and remembers its id.

    Concurrent ``ensure_draft`` calls share one in-flight creation task, so
    a mount-time call racing a retry never produces two drafts.  ``reset``
    starts a new generation; a creation that resolves afterwards is
    discarded.
    """

    def __init__(self, creator: DraftCreator) -> None:
        self._creator = creator
        self._draft_id: Optional[str] = None
        self._in_flight: Optional[asyncio.Future] = None
        self._generation = 0

    @property
    def draft_id(self) -> Optional[str]:
        return self._draft_id

    @property
    def creating(self) -> bool:
        return self._in_flight is not None

    async def ensure_draft(self, service_slug: str, locale: str = "en") -> Optional[str]:
        """Return the draft id, creating the draft if needed.

        Returns:
            The draft id, or ``None`` if the session was reset while the
            creation was in flight.

        Raises:
            AuthRequiredError: The creation collaborator requires sign-in.
            TransientIOError: Any other creation failure.
        """
        if self._draft_id is not None:
            return self._draft_id

        if self._in_flight is None:
            task = asyncio.ensure_future(
                self._create(service_slug, locale, self._generation)
            )
            task.add_done_callback(_consume_exception)
            self._in_flight = task

        return await asyncio.shield(self._in_flight)

    async def _create(self, service_slug: str, locale: str, generation: int) -> Optional[str]:
        try:
            draft_id = await call_collaborator(
                "Preparing your request",
                self._creator.create_draft(service_slug, locale),
            )
        except Exception:
            if generation == self._generation:
                self._in_flight = None
            raise

        if generation != self._generation:
            logger.info(
                "Discarding draft %s for service %s created before reset",
                draft_id,
                service_slug,
            )
            return None

        self._draft_id = draft_id
        self._in_flight = None
        logger.info("Draft %s ready for service %s", draft_id, service_slug)
        return draft_id

    def reset(self) -> None:
        self._generation += 1
        self._draft_id = None
        self._in_flight = None


def _consume_exception(task: asyncio.Future) -> None:
    # Awaiters see the exception through the shield; mark it retrieved so an
    # abandoned task does not log "exception was never retrieved".
    if not task.cancelled():
        task.exception()
