"""Pure error classification: categorization, severity scoring and fingerprinting."""

import hashlib
import re

from vigilpy.core.models import ErrorCategory, ErrorDetail, Severity

# Ordered most specific first; the first rule with a matching term wins.
CATEGORY_RULES: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (ErrorCategory.PAYMENT, ("payment", "transaction", "square", "refund")),
    (ErrorCategory.TRADING, ("gmx", "trade", "trading", "position")),
    (ErrorCategory.AUTH, ("auth", "wallet", "privy")),
    (
        ErrorCategory.INFRASTRUCTURE,
        ("timeout", "timed out", "network", "fetch", "connection"),
    ),
    (ErrorCategory.USER_ERROR, ("validation", "invalid", "format", "malformed")),
)

_VALIDATION_TERMS = ("validation", "invalid", "format", "malformed")
_TRANSIENT_TERMS = ("timeout", "timed out", "network", "fetch", "connection")

_CATEGORY_SEVERITY = {
    ErrorCategory.AUTH: Severity.HIGH,
    ErrorCategory.INFRASTRUCTURE: Severity.HIGH,
    ErrorCategory.API: Severity.MEDIUM,
}

_HEX = re.compile(r"0x[0-9a-f]+")
_UUID = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}")
_DIGITS = re.compile(r"\d+")

# Frames from these locations never identify the failing call site.
_FRAMEWORK_MARKERS = (
    "site-packages",
    "dist-packages",
    "<frozen",
    "/lib/python",
    "/vigilpy/",
    "\\vigilpy\\",
)

FINGERPRINT_LENGTH = 16


def _haystack(error: ErrorDetail) -> str:
    return f"{error.name}: {error.message}".lower()


def categorize(error: ErrorDetail) -> ErrorCategory:
    """Assign exactly one category to an error.

    Args:
        error: The error to classify.

    Returns:
        The first matching category, or ErrorCategory.API.
    """
    text = _haystack(error)
    for category, terms in CATEGORY_RULES:
        if any(term in text for term in terms):
            return category
    return ErrorCategory.API


def score_severity(error: ErrorDetail, category: ErrorCategory) -> Severity:
    """Derive a severity from the error text and its category.

    Payment and trading errors are critical unless they are plain
    validation failures, which are medium.
    """
    text = _haystack(error)
    is_validation = any(term in text for term in _VALIDATION_TERMS)
    if category in (ErrorCategory.PAYMENT, ErrorCategory.TRADING):
        return Severity.MEDIUM if is_validation else Severity.CRITICAL
    if is_validation:
        return Severity.LOW
    if any(term in text for term in _TRANSIENT_TERMS):
        return Severity.HIGH
    return _CATEGORY_SEVERITY.get(category, Severity.LOW)


def classify(
    error: ErrorDetail,
    category: ErrorCategory | None = None,
    severity: Severity | None = None,
) -> tuple[ErrorCategory, Severity]:
    """Resolve category and severity, honoring caller overrides.

    An overridden category without a severity gets the severity derived
    from that category.
    """
    resolved_category = category or categorize(error)
    resolved_severity = severity or score_severity(error, resolved_category)
    return resolved_category, resolved_severity


def normalize_message(message: str) -> str:
    """Lowercase a message and replace volatile literals with placeholders."""
    text = message.lower()
    text = _UUID.sub("<uuid>", text)
    text = _HEX.sub("<hex>", text)
    return _DIGITS.sub("<n>", text)


def top_frame(stack: str | None) -> str:
    """Return "file:function" of the innermost application frame.

    Args:
        stack: A formatted traceback, as produced by traceback.format_exception.

    Returns:
        The frame identifier, or an empty string if none qualifies.
    """
    if not stack:
        return ""
    frame = ""
    for match in re.finditer(r'File "([^"]+)", line \d+, in (\S+)', stack):
        filename, function = match.groups()
        if any(marker in filename for marker in _FRAMEWORK_MARKERS):
            continue
        # Tracebacks list the innermost frame last.
        frame = f"{filename.replace(chr(92), '/').rsplit('/', 1)[-1]}:{function}"
    return frame


def fingerprint(
    error: ErrorDetail, category: ErrorCategory, endpoint: str | None = None
) -> str:
    """Compute the deduplication key for an error.

    Args:
        error: The error to fingerprint.
        category: Its resolved category.
        endpoint: Request path the error happened on.

    Returns:
        16 lowercase hex characters.
    """
    parts = (
        category.value,
        normalize_message(error.message),
        top_frame(error.stack),
        endpoint or "",
    )
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]
