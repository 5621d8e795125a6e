"""Masking of secret-like values before anything is stored or transmitted."""

import dataclasses
import enum
import logging
import re
from collections.abc import Mapping
from typing import Any

LOGGER = logging.getLogger(__name__)

REDACTED = "[REDACTED]"
REDACTION_FAILED = "[REDACTION FAILED]"
CIRCULAR = "[Circular Reference]"

SENSITIVE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"password",
        r"token",
        r"api[_-]?key",
        r"secret",
        r"private[_-]?key",
        r"mnemonic",
        r"ssn",
        r"credit[_-]?card",
        r"cvv",
    )
)


def is_sensitive(text: str) -> bool:
    """Return True if text matches any sensitive-term pattern."""
    return any(pattern.search(text) for pattern in SENSITIVE_PATTERNS)


def redact(context: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Return a redacted deep copy of a context mapping.

    Keys matching a sensitive pattern have their whole value replaced;
    string values matching a pattern are replaced. Mappings, dataclass
    instances, lists, tuples, sets and the attributes of plain objects are
    walked recursively; any other value whose repr matches a pattern is
    replaced. The input is never modified.

    Args:
        context: Arbitrary key-value mapping, or None.

    Returns:
        The redacted copy, or None if context was None.
    """
    if context is None:
        return None
    return _redact_mapping(context, {id(context)})


def _redact_mapping(mapping: Mapping[Any, Any], seen: set[int]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in mapping.items():
        name = str(key)
        try:
            if is_sensitive(name):
                result[name] = REDACTED
            else:
                result[name] = _redact_value(value, seen)
        except Exception:
            LOGGER.debug("Failed to redact context key %r", name, exc_info=True)
            result[name] = REDACTION_FAILED
    return result


def _redact_value(value: Any, seen: set[int]) -> Any:
    if isinstance(value, str):
        return REDACTED if is_sensitive(value) else value
    if value is None or isinstance(value, (int, float, bool)):
        return value
    if id(value) in seen:
        return CIRCULAR
    inner = seen | {id(value)}
    if isinstance(value, Mapping):
        return _redact_mapping(value, inner)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        return _redact_mapping(fields, inner)
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_redact_value(item, inner) for item in value]
    if isinstance(value, enum.Enum):
        return value
    if not (callable(value) or isinstance(value, BaseException)):
        attributes = _attributes(value)
        if attributes:
            return _redact_mapping(attributes, inner)
    return _redact_opaque(value)


def _attributes(value: Any) -> dict[str, Any]:
    """Collect instance attributes from __dict__ and __slots__."""
    attributes: dict[str, Any] = dict(getattr(value, "__dict__", None) or {})
    for klass in type(value).__mro__:
        slots = klass.__dict__.get("__slots__", ())
        for name in (slots,) if isinstance(slots, str) else slots:
            if name in ("__dict__", "__weakref__") or name in attributes:
                continue
            try:
                attributes[name] = getattr(value, name)
            except AttributeError:
                continue
    return attributes


def _redact_opaque(value: Any) -> Any:
    # Anything else is serialized through its repr later on.
    try:
        text = repr(value)
    except Exception:
        return value
    return REDACTED if is_sensitive(text) else value
