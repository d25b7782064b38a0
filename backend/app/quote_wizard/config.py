"""Environment-driven settings for the quote wizard.

Usage::

    from app.quote_wizard.config import wizard_settings

    limit = wizard_settings.max_attachment_bytes
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _parse_digit_range(raw: str) -> Tuple[str, str]:
    """Parse ``"6-9"`` into ``("6", "9")``."""
    low, _, high = raw.partition("-")
    low, high = low.strip(), (high or low).strip()
    if not (low.isdigit() and high.isdigit() and len(low) == len(high) == 1):
        raise ValueError(f"Invalid digit range: {raw!r}")
    return low, high


@dataclass(frozen=True)
class WizardSettings:
    """Tunables for validation, uploads, pricing and session lifetime."""

    max_attachment_bytes: int = 10 * 1024 * 1024  # 10 MB
    phone_country_code: str = "970"
    phone_subscriber_length: int = 9
    phone_leading_digit: str = "5"
    phone_second_digit_range: Tuple[str, str] = ("6", "9")
    currency: str = "ILS"
    draft_cache_dir: Optional[str] = None
    session_ttl_seconds: int = 3600
    payment_webhook_secret: Optional[str] = None
    # Lets the signed-in customer confirm their own payment (gateway sandbox only)
    payment_test_mode: bool = False
    allowed_extensions: frozenset = field(
        default_factory=lambda: frozenset({"pdf", "jpg", "jpeg", "png"})
    )
    allowed_mime_types: frozenset = field(
        default_factory=lambda: frozenset(
            {"application/pdf", "image/jpeg", "image/jpg", "image/png"}
        )
    )

    @classmethod
    def from_env(cls) -> "WizardSettings":
        return cls(
            max_attachment_bytes=int(os.getenv("QUOTE_MAX_ATTACHMENT_MB", "10"))
            * 1024
            * 1024,
            phone_country_code=os.getenv("QUOTE_PHONE_COUNTRY_CODE", "970"),
            phone_subscriber_length=int(
                os.getenv("QUOTE_PHONE_SUBSCRIBER_LENGTH", "9")
            ),
            phone_leading_digit=os.getenv("QUOTE_PHONE_LEADING_DIGIT", "5"),
            phone_second_digit_range=_parse_digit_range(
                os.getenv("QUOTE_PHONE_SECOND_DIGITS", "6-9")
            ),
            currency=os.getenv("QUOTE_CURRENCY", "ILS"),
            draft_cache_dir=os.getenv("QUOTE_DRAFT_CACHE_DIR") or None,
            session_ttl_seconds=int(os.getenv("QUOTE_SESSION_TTL_SECONDS", "3600")),
            payment_webhook_secret=os.getenv("QUOTE_PAYMENT_WEBHOOK_SECRET") or None,
            payment_test_mode=os.getenv("QUOTE_PAYMENT_TEST_MODE", "false").lower() == "true",
        )


# Module-level singleton
wizard_settings = WizardSettings.from_env()
