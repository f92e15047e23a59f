"""Normalization and pattern helpers shared by validation, detection and import."""

import math
import re
import unicodedata
from typing import Any, Optional


# =============================================================================
# Patterns
# =============================================================================

# RFC-lenient: something@something.tld, no whitespace.
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# E.164-ish: optional leading +, digits with common separators.
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-().]{7,}$")
PHONE_MIN_DIGITS = 7
PHONE_MAX_DIGITS = 15

URL_PATTERN = re.compile(
    r"^(https?://)?([a-z0-9-]+\.)+[a-z]{2,}(:\d+)?(/[^\s]*)?$",
    re.IGNORECASE,
)

NUMBER_PATTERN = re.compile(r"^[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?$")

ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{1,2}-\d{1,2}")

MAX_IDENTIFIER_LENGTH = 64


# =============================================================================
# Emptiness
# =============================================================================


def is_empty_value(value: Any, field_type: str | None = None) -> bool:
    """
    Return True when a value counts as "no answer".

    None, blank strings, empty lists and empty dicts are empty. ``False``
    is empty only for checkbox fields, where it means "not ticked".
    """
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    if value is False and field_type == "checkbox":
        return True
    return False


# =============================================================================
# Predicates
# =============================================================================


def is_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value.strip()))


def count_digits(value: str) -> int:
    return len(re.sub(r"\D", "", value))


def is_phone_format(value: str) -> bool:
    """E.164-ish shape check: separators allowed, 7-15 digits."""
    cleaned = value.strip()
    if not PHONE_PATTERN.match(cleaned):
        return False
    return PHONE_MIN_DIGITS <= count_digits(cleaned) <= PHONE_MAX_DIGITS


def looks_like_phone(value: str) -> bool:
    """
    Phone heuristic for type detection.

    Stricter than ``is_phone_format``: plain numbers such as ``12.50`` or
    ``-1234567`` and ISO dates are not phones, and bare integers need at
    least ten digits before they are read as phone numbers.
    """
    cleaned = value.strip()
    if not is_phone_format(cleaned) or ISO_DATE_PATTERN.match(cleaned):
        return False
    if not cleaned.startswith("+") and is_numeric_string(cleaned):
        return cleaned.isdigit() and count_digits(cleaned) >= 10
    return True


def is_url(value: str) -> bool:
    return bool(URL_PATTERN.match(value.strip()))


def is_numeric_string(value: str) -> bool:
    return bool(NUMBER_PATTERN.match(value.strip()))


# =============================================================================
# Names
# =============================================================================


def _strip_accents(value: str) -> str:
    """Remove diacritics for accent-insensitive matching."""
    return "".join(
        ch for ch in unicodedata.normalize("NFKD", value) if not unicodedata.combining(ch)
    )


def normalize_identifier(value: Optional[str], max_length: int = MAX_IDENTIFIER_LENGTH) -> str:
    """
    Turn a spreadsheet header into a field identifier.

    - Strip accents
    - Lowercase
    - Replace runs of non-alphanumerics with "_"
    - Trim underscores, truncate
    """
    if not value:
        return ""
    cleaned = _strip_accents(str(value)).lower()
    cleaned = re.sub(r"[^a-z0-9]+", "_", cleaned).strip("_")
    return cleaned[:max_length].rstrip("_")


def normalize_label(value: Optional[str]) -> str:
    """Lowercase a label and collapse separators for fuzzy column matching."""
    if not value:
        return ""
    cleaned = _strip_accents(str(value)).lower()
    cleaned = re.sub(r"[^a-z0-9]+", " ", cleaned)
    return " ".join(cleaned.split())


# =============================================================================
# Numbers
# =============================================================================

CURRENCY_SYMBOLS_PATTERN = re.compile(r"(?<=\d)\s*[A-Z]{3}$|[A-Z]{3}(?=\s*\d)|[$€£¥₹₩₽¢\s%]")


def parse_number(raw: Any) -> Optional[float]:
    """
    Locale-agnostic number parsing.

    Strips currency symbols and codes, reads ``(12)`` as negative, and picks
    the decimal separator: when both ``,`` and ``.`` appear the last one is
    the decimal; a lone comma followed by one or two digits is a decimal
    comma, otherwise commas group thousands.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        number = float(raw)
        return number if math.isfinite(number) else None

    value = str(raw).strip()
    if not value:
        return None
    negative = False
    if value.startswith("(") and value.endswith(")"):
        negative = True
        value = value[1:-1]
    value = CURRENCY_SYMBOLS_PATTERN.sub("", value)
    if not value:
        return None

    if "," in value and "." in value:
        if value.rfind(",") > value.rfind("."):
            value = value.replace(".", "").replace(",", ".")
        else:
            value = value.replace(",", "")
    elif "," in value:
        if value.count(",") == 1 and re.search(r",\d{1,2}$", value):
            value = value.replace(",", ".")
        else:
            value = value.replace(",", "")
    elif value.count(".") > 1:
        value = value.replace(".", "")

    if not NUMBER_PATTERN.match(value):
        return None
    number = float(value)
    if not math.isfinite(number):
        return None
    return -number if negative else number
