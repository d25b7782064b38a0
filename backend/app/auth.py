"""JWT authentication for storefront customers.

Tokens are issued by the storefront's identity service and signed with
HS256 via python-jose; this module only verifies them.  The wizard never
rejects an anonymous request outright: it needs to know *whether* a user
is signed in so it can show the ``unauthenticated`` state, so the FastAPI
dependency here returns ``None`` instead of raising 401.

``SessionAuth`` adapts the per-request identity to the wizard's
authentication collaborator: each request refreshes the user, and a change
(sign-in, sign-out, different account) is pushed to subscribers.
"""

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from dotenv import load_dotenv
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

load_dotenv()

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# JWT configuration
# ---------------------------------------------------------------------------
JWT_SECRET = os.getenv(
    "JWT_SECRET",
    "quote-wizard-dev-secret-change-in-production",
)
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_HOURS = 24

# ---------------------------------------------------------------------------
# HTTPBearer scheme (optional: anonymous requests are allowed through)
# ---------------------------------------------------------------------------
security = HTTPBearer(auto_error=False)


def create_access_token(user_data: dict[str, Any]) -> str:
    """Create a signed JWT containing the user's id and email."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_data["id"],
        "email": user_data.get("email", ""),
        "exp": now + timedelta(hours=JWT_EXPIRY_HOURS),
        "iat": now,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Return the user encoded in *token*, or ``None`` if it is invalid or expired."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as exc:
        logger.warning("JWT validation failed: %s", exc)
        return None

    user_id: str = payload.get("sub", "")
    if not user_id:
        logger.warning("JWT without subject rejected")
        return None
    return {"id": user_id, "email": payload.get("email", "")}


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict[str, Any] | None:
    """FastAPI dependency -- the Bearer token's user, or ``None``."""
    if credentials is None or not credentials.credentials:
        return None
    return decode_access_token(credentials.credentials)


# ---------------------------------------------------------------------------
# Wizard authentication collaborator
# ---------------------------------------------------------------------------

AuthListener = Callable[[Optional[dict[str, Any]]], Any]


class SessionAuth:
    """Holds the identity behind one wizard session.

    The HTTP layer calls :meth:`update` with the user of every request;
    subscribers hear about sign-in / sign-out transitions.
    """

    def __init__(self, user: Optional[dict[str, Any]] = None) -> None:
        self._user = user
        self._listeners: list[AuthListener] = []

    @property
    def user(self) -> Optional[dict[str, Any]]:
        return self._user

    @property
    def user_id(self) -> Optional[str]:
        return self._user["id"] if self._user else None

    async def get_current_user(self) -> Optional[dict[str, Any]]:
        return self._user

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, user: Optional[dict[str, Any]]) -> None:
        """Record the identity of the latest request, notifying on change."""
        previous = self.user_id
        self._user = user
        if previous == self.user_id:
            return
        logger.info(
            "Wizard session identity changed (%s)",
            "signed in" if user else "signed out",
        )
        for listener in list(self._listeners):
            try:
                listener(user)
            except Exception:
                logger.exception("Auth change listener failed")
