"""Location query validation and normalization."""

import re

from weather_app.models.errors import ValidationResult

MIN_LENGTH = 2
MAX_LENGTH = 100

_VALID_CHARS = re.compile(r"^[a-zA-Z\s\-'.]+$")
_REPEATED_SPACE = re.compile(r"\s{2,}")
_REPEATED_PUNCT = re.compile(r"[-'.]{2,}")
_WHITESPACE_RUN = re.compile(r"\s+")
_PUNCT_RUN = re.compile(r"[-'.]+")
_WORD_START = re.compile(r"\b[a-z]")
_ABBREVIATION = re.compile(r"\b(St|Mt|Ft)(?=\s|$)")
_KEY_ABBREVIATION = re.compile(r"\b(st|mt|ft)\.(?=\s|$)")


class LocationValidationError(ValueError):
    """Raised when a location query fails validation."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def validate(raw: str | None) -> ValidationResult:
    """Validate a raw location query.

    Args:
        raw: Query as typed by the user

    Returns:
        Validation result with a user-facing message
    """
    if not raw or not isinstance(raw, str) or not raw.strip():
        return ValidationResult(valid=False, message="Please enter a city name")

    trimmed = raw.strip()

    if len(trimmed) < MIN_LENGTH:
        return ValidationResult(
            valid=False, message=f"City name must be at least {MIN_LENGTH} characters long"
        )

    if len(trimmed) > MAX_LENGTH:
        return ValidationResult(valid=False, message="City name is too long")

    if not _VALID_CHARS.match(trimmed):
        return ValidationResult(
            valid=False,
            message="City name can only contain letters, spaces, hyphens, apostrophes, and periods",
        )

    if _REPEATED_SPACE.search(trimmed) or _REPEATED_PUNCT.search(trimmed):
        return ValidationResult(valid=False, message="Invalid city name format")

    return ValidationResult(valid=True, message="Valid city name")


def normalize(raw: str | None) -> str:
    """Format a location name for display.

    Collapses whitespace and punctuation runs, capitalizes the first letter
    of every word and expands the St/Mt/Ft abbreviations. Applying it twice
    gives the same result as applying it once.
    """
    if not raw or not isinstance(raw, str):
        return ""

    formatted = _WHITESPACE_RUN.sub(" ", raw.strip())
    formatted = _PUNCT_RUN.sub(lambda match: match.group(0)[0], formatted)
    formatted = _WORD_START.sub(lambda match: match.group(0).upper(), formatted)
    return _ABBREVIATION.sub(r"\1.", formatted)


def location_key(raw: str) -> str:
    """Case-insensitive cache key for a query.

    "St Louis", "st. louis" and "ST LOUIS" share one key.
    """
    folded = _WHITESPACE_RUN.sub(" ", raw.strip()).casefold()
    return _KEY_ABBREVIATION.sub(r"\1", folded)


def validate_and_key(raw: str | None) -> tuple[str, str]:
    """Validate a query and derive its cache key and display name.

    Returns:
        Tuple of (location key, display name)

    Raises:
        LocationValidationError: If the query is invalid
    """
    result = validate(raw)
    if not result.valid:
        raise LocationValidationError(result.message)
    return location_key(raw), normalize(raw)
