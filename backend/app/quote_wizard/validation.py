"""Field validation engine for the quote wizard.

Pure functions, no I/O:

- validate_field: one value against one FieldSchema
- normalize_phone: the staged phone normalization / rejection sequence
- validate_step: every field of a step, file presence, cross-field rules
- validate_required_documents: keyword heuristic over uploaded file names

Dispatch over ``FieldSchema.kind`` happens in one table (``_SHAPE_CHECKS``);
kinds without an entry only get the required check.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Callable, Collection, Dict, Iterable, List, Mapping, Optional

from app.quote_wizard.config import WizardSettings, wizard_settings
from app.quote_wizard.models import DeliveryType, FieldKind, FieldSchema
from app.quote_wizard.steps import DELIVERY_COUNT_FIELD, DELIVERY_TYPE_FIELD

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

REQUIRED_MESSAGE = "This field is required."
FILE_REQUIRED_MESSAGE = "Please upload this document."
UPLOAD_IN_PROGRESS_MESSAGE = "Upload in progress. Please wait for it to finish."
PHONE_FORMAT_HINT = "Format: +970 5X XXX XXXX or 05X XXX XXXX"

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_PHONE_SEPARATORS_RE = re.compile(r"[\s()\-]")
_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)

COMMON_EMAIL_DOMAINS = ["gmail.com", "outlook.com", "yahoo.com", "hotmail.com", "icloud.com"]

# ITU-T E.164 calling codes shorter than three digits; every other code has three.
_ONE_DIGIT_CODES = {"1", "7"}
_TWO_DIGIT_CODES = {
    "20", "27", "30", "31", "32", "33", "34", "36", "39", "40", "41", "43",
    "44", "45", "46", "47", "48", "49", "51", "52", "53", "54", "55", "56",
    "57", "58", "60", "61", "62", "63", "64", "65", "66", "81", "82", "84",
    "86", "90", "91", "92", "93", "94", "95", "98",
}

# Words that carry no identifying power in a required-document description.
_DOCUMENT_STOPWORDS = {
    "the", "and", "for", "from", "with", "your", "you", "any", "all", "both",
    "copy", "copies", "original", "applicable", "available", "required",
    "arrange", "can", "per", "each", "existing", "current", "valid",
}


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldIssue:
    """A rejected value: message shown next to the field, optional hint."""

    message: str
    suggestion: Optional[str] = None


@dataclass(frozen=True)
class PhoneCheck:
    ok: bool
    canonical: Optional[str] = None
    message: Optional[str] = None


# ---------------------------------------------------------------------------
# Phone
# ---------------------------------------------------------------------------


def _plural(count: int, word: str = "digit") -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def _calling_code_prefix(digits: str) -> str:
    """Return the country calling code at the start of *digits*."""
    leading = re.match(r"\d*", digits).group(0)
    if leading[:1] in _ONE_DIGIT_CODES:
        return leading[:1]
    if leading[:2] in _TWO_DIGIT_CODES:
        return leading[:2]
    return leading[:3]


def normalize_phone(raw: str, settings: WizardSettings = wizard_settings) -> PhoneCheck:
    """Normalize *raw* to a bare subscriber number or explain why not.

    Stages run in a fixed order; each later stage relies on the earlier
    normalization:

    1. strip whitespace, parentheses and dashes; require at least one digit
    2. a ``+`` prefix must carry the expected country code
    3. strip the international prefix, else a bare country code with a
       long-enough remainder, else a leading trunk zero
    4. exact subscriber length
    5. expected leading digit
    6. second digit within the expected range
    """
    cleaned = _PHONE_SEPARATORS_RE.sub("", raw or "")
    if not any(ch.isdigit() for ch in cleaned):
        return PhoneCheck(ok=False, message="Phone number must contain digits.")

    if cleaned.startswith("00"):
        cleaned = "+" + cleaned[2:]

    code = settings.phone_country_code
    length = settings.phone_subscriber_length

    if cleaned.startswith("+") and not cleaned.startswith("+" + code):
        prefix = _calling_code_prefix(cleaned[1:])
        return PhoneCheck(
            ok=False,
            message=(
                f"Country code +{prefix} is not supported. "
                f"Please use a +{code} number."
            ),
        )

    if cleaned.startswith("+" + code):
        subscriber = cleaned[len(code) + 1 :]
    elif cleaned.startswith(code) and len(cleaned) - len(code) >= length:
        subscriber = cleaned[len(code) :]
    elif cleaned.startswith("0"):
        subscriber = cleaned[1:]
    else:
        subscriber = cleaned

    if not subscriber.isdigit():
        return PhoneCheck(ok=False, message="Phone number may only contain digits.")

    difference = len(subscriber) - length
    if difference < 0:
        return PhoneCheck(
            ok=False,
            message=f"Phone number is too short by {_plural(-difference)}.",
        )
    if difference > 0:
        return PhoneCheck(
            ok=False,
            message=f"Phone number is too long by {_plural(difference)}.",
        )

    if subscriber[0] != settings.phone_leading_digit:
        return PhoneCheck(
            ok=False,
            message=f"Mobile numbers must start with {settings.phone_leading_digit}.",
        )

    low, high = settings.phone_second_digit_range
    second = subscriber[1]
    if not low <= second <= high:
        return PhoneCheck(
            ok=False,
            message=(
                f"Invalid second digit {second}. "
                f"The second digit must be between {low} and {high}."
            ),
        )

    return PhoneCheck(ok=True, canonical=subscriber)


def format_phone(canonical: str, settings: WizardSettings = wizard_settings) -> str:
    """Render a canonical subscriber number as ``+970 59 212 3456``."""
    if len(canonical) < 5:
        return f"+{settings.phone_country_code} {canonical}"
    return (
        f"+{settings.phone_country_code} "
        f"{canonical[:2]} {canonical[2:5]} {canonical[5:]}"
    )


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------


def suggest_email(value: str) -> Optional[str]:
    """Complete a partially typed domain of a common provider."""
    local, _, domain = value.partition("@")
    if not local or not domain:
        return None
    domain = domain.lower()
    for candidate in COMMON_EMAIL_DOMAINS:
        if candidate.startswith(domain) and candidate != domain:
            return f"{local}@{candidate}"
    return None


# ---------------------------------------------------------------------------
# Per-kind shape checks
# ---------------------------------------------------------------------------


def _check_email(schema: FieldSchema, value: str, settings: WizardSettings) -> Optional[FieldIssue]:
    if EMAIL_RE.match(value):
        return None
    return FieldIssue("Please enter a valid email address.", suggest_email(value))


def _check_phone(schema: FieldSchema, value: str, settings: WizardSettings) -> Optional[FieldIssue]:
    result = normalize_phone(value, settings)
    if result.ok:
        return None
    return FieldIssue(result.message or "Invalid phone number.", PHONE_FORMAT_HINT)


def _check_date(schema: FieldSchema, value: str, settings: WizardSettings) -> Optional[FieldIssue]:
    if ISO_DATE_RE.match(value):
        try:
            date.fromisoformat(value)
            return None
        except ValueError:
            pass
    return FieldIssue("Please enter a valid date (YYYY-MM-DD).")


def _check_select(schema: FieldSchema, value: str, settings: WizardSettings) -> Optional[FieldIssue]:
    if not schema.options or value in schema.options:
        return None
    return FieldIssue("Please choose one of the available options.")


_SHAPE_CHECKS: Dict[FieldKind, Callable[[FieldSchema, str, WizardSettings], Optional[FieldIssue]]] = {
    FieldKind.EMAIL: _check_email,
    FieldKind.TEL: _check_phone,
    FieldKind.DATE: _check_date,
    FieldKind.SELECT: _check_select,
}


def validate_field(
    schema: FieldSchema,
    raw_value: Optional[str],
    settings: WizardSettings = wizard_settings,
) -> Optional[FieldIssue]:
    """Validate one value.  Returns ``None`` when the value is acceptable.

    Precedence: required-but-empty, then the kind-specific shape check.
    File fields are judged by attachment presence in :func:`validate_step`.
    """
    if schema.kind is FieldKind.FILE:
        return None

    value = (raw_value or "").strip()
    if not value:
        return FieldIssue(REQUIRED_MESSAGE) if schema.required else None

    check = _SHAPE_CHECKS.get(schema.kind)
    if check is None:
        return None
    return check(schema, value, settings)


# ---------------------------------------------------------------------------
# Step-level validation
# ---------------------------------------------------------------------------


def _multiple_deliveries_rule(names: Collection[str], answers: Mapping[str, str]) -> Dict[str, str]:
    """A "multiple" delivery type needs a numeric delivery count of at least 2."""
    if DELIVERY_TYPE_FIELD not in names:
        return {}
    if (answers.get(DELIVERY_TYPE_FIELD) or "").strip() != DeliveryType.MULTIPLE.value:
        return {}
    raw = (answers.get(DELIVERY_COUNT_FIELD) or "").strip()
    if raw.isdigit() and int(raw) >= 2:
        return {}
    return {DELIVERY_COUNT_FIELD: "Multiple deliveries need a delivery count of at least 2."}


CROSS_FIELD_RULES: List[Callable[[Collection[str], Mapping[str, str]], Dict[str, str]]] = [
    _multiple_deliveries_rule,
]


def validate_step(
    schemas: Iterable[FieldSchema],
    answers: Mapping[str, str],
    attachments: Collection[str],
    uploading_fields: Collection[str] = (),
    settings: WizardSettings = wizard_settings,
) -> Dict[str, str]:
    """Validate every field of one step.

    Args:
        schemas: Field schemas belonging to the step.
        answers: Current answers keyed by field name.
        attachments: Names of file fields that hold a completed attachment.
        uploading_fields: Names of file fields with an upload in flight.
        settings: Validation tunables.

    Returns:
        Map of field name to error message; empty when the step is valid.
    """
    schemas = list(schemas)
    errors: Dict[str, str] = {}

    for schema in schemas:
        if schema.kind is FieldKind.FILE:
            if not schema.required:
                continue
            if schema.name in uploading_fields:
                errors[schema.name] = UPLOAD_IN_PROGRESS_MESSAGE
            elif schema.name not in attachments:
                errors[schema.name] = FILE_REQUIRED_MESSAGE
            continue

        issue = validate_field(schema, answers.get(schema.name), settings)
        if issue is not None:
            errors[schema.name] = issue.message

    names = {schema.name for schema in schemas}
    for rule in CROSS_FIELD_RULES:
        for name, message in rule(names, answers).items():
            errors.setdefault(name, message)

    return errors


# ---------------------------------------------------------------------------
# Required documents (approximate)
# ---------------------------------------------------------------------------


def document_keywords(description: str) -> List[str]:
    """Extract matching tokens from a required-document description."""
    text = re.sub(r"\([^)]*\)", " ", description.lower()).replace("'s", "")
    tokens = []
    for word in _WORD_RE.findall(text):
        if len(word) < 3 or word in _DOCUMENT_STOPWORDS or word in tokens:
            continue
        tokens.append(word)
    return tokens


def validate_required_documents(
    required_documents: Iterable[str], attachment_file_names: Iterable[str]
) -> List[str]:
    """Return the required documents no uploaded file name appears to cover.

    A document counts as covered when any uploaded file name contains any
    keyword of its description.  Both false accepts and false rejects are
    possible; callers use the result as a soft gate only.
    """
    names = [name.lower() for name in attachment_file_names]
    missing: List[str] = []
    for description in required_documents:
        keywords = document_keywords(description)
        if not any(keyword in name for keyword in keywords for name in names):
            missing.append(description)
    return missing
