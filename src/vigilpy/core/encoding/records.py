"""Versioned record encoding for everything written to the shared store.

Every persisted record is a JSON object tagged with a schema version and a
kind::

    {"v": 1, "kind": "log", ...}

Decoding is strict: malformed JSON, an unknown version or an unknown kind
raises RecordDecodeError instead of handing back a partially filled object.
"""

import json
from collections.abc import Callable, Iterable
from typing import Any

from vigilpy.core.encoding.safe_json import (
    DEFAULT_MAX_LENGTH,
    TRUNCATED,
    safe_dumps,
    to_jsonable,
)
from vigilpy.core.exceptions import RecordDecodeError
from vigilpy.core.models import (
    Alert,
    AlertLevel,
    ErrorCategory,
    ErrorContext,
    ErrorDetail,
    ErrorReport,
    LogCategory,
    LogEntry,
    LogLevel,
    Severity,
)

SCHEMA_VERSION = 1

Record = LogEntry | ErrorReport | Alert


def _bounded_context(
    context: dict[str, Any] | None, max_length: int
) -> dict[str, Any] | None:
    """Keep oversized contexts decodable by folding them into one string."""
    if context is None:
        return None
    data = to_jsonable(context)
    if len(json.dumps(data)) <= max_length:
        return data
    return {"_truncated": safe_dumps(data, max_length)}


def _clip(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + TRUNCATED


def _detail_to_dict(
    detail: ErrorDetail | None, max_length: int
) -> dict[str, Any] | None:
    if detail is None:
        return None
    return {
        "name": _clip(detail.name, max_length),
        "message": _clip(detail.message, max_length),
        "stack": None if detail.stack is None else _clip(detail.stack, max_length),
    }


def _detail_from_dict(data: dict[str, Any] | None) -> ErrorDetail | None:
    if data is None:
        return None
    return ErrorDetail(
        name=str(data["name"]), message=str(data["message"]), stack=data.get("stack")
    )


def _log_to_dict(entry: LogEntry, max_length: int) -> dict[str, Any]:
    return {
        "timestamp": entry.timestamp,
        "level": entry.level.value,
        "category": entry.category.value,
        "message": _clip(entry.message, max_length),
        "context": _bounded_context(entry.context, max_length),
        "request_id": entry.request_id,
        "duration_ms": entry.duration_ms,
        "error": _detail_to_dict(entry.error, max_length),
    }


def _log_from_dict(data: dict[str, Any]) -> LogEntry:
    return LogEntry(
        timestamp=float(data["timestamp"]),
        level=LogLevel(data["level"]),
        category=LogCategory(data["category"]),
        message=str(data["message"]),
        context=data.get("context"),
        request_id=data.get("request_id"),
        duration_ms=data.get("duration_ms"),
        error=_detail_from_dict(data.get("error")),
    )


def _report_to_dict(report: ErrorReport, max_length: int) -> dict[str, Any]:
    ctx = report.context
    return {
        "error": _detail_to_dict(report.error, max_length),
        "severity": report.severity.value,
        "category": report.category.value,
        "context": {
            "timestamp": ctx.timestamp,
            "environment": ctx.environment,
            "version": ctx.version,
            "user_id": ctx.user_id,
            "wallet_address": ctx.wallet_address,
            "request_id": ctx.request_id,
            "endpoint": ctx.endpoint,
            "method": ctx.method,
            "user_agent": ctx.user_agent,
            "extra": _bounded_context(ctx.extra, max_length) or {},
        },
    }


def _report_from_dict(data: dict[str, Any]) -> ErrorReport:
    ctx = data["context"]
    detail = _detail_from_dict(data["error"])
    if detail is None:
        raise KeyError("error")
    return ErrorReport(
        error=detail,
        severity=Severity(data["severity"]),
        category=ErrorCategory(data["category"]),
        context=ErrorContext(
            timestamp=float(ctx["timestamp"]),
            environment=str(ctx["environment"]),
            version=str(ctx["version"]),
            user_id=ctx.get("user_id"),
            wallet_address=ctx.get("wallet_address"),
            request_id=ctx.get("request_id"),
            endpoint=ctx.get("endpoint"),
            method=ctx.get("method"),
            user_agent=ctx.get("user_agent"),
            extra=ctx.get("extra") or {},
        ),
    )


def _alert_to_dict(alert: Alert, max_length: int) -> dict[str, Any]:
    return {
        "id": alert.id,
        "level": alert.level.value,
        "message": _clip(alert.message, max_length),
        "source": alert.source,
        "timestamp": alert.timestamp,
        "metadata": _bounded_context(alert.metadata, max_length),
    }


def _alert_from_dict(data: dict[str, Any]) -> Alert:
    return Alert(
        id=str(data["id"]),
        level=AlertLevel(data["level"]),
        message=str(data["message"]),
        source=str(data["source"]),
        timestamp=float(data["timestamp"]),
        metadata=data.get("metadata"),
    )


_DECODERS: dict[str, Callable[[dict[str, Any]], Record]] = {
    "log": _log_from_dict,
    "error": _report_from_dict,
    "alert": _alert_from_dict,
}


def encode_record(record: Record, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Encode a record as tagged, versioned JSON.

    Args:
        record: LogEntry, ErrorReport or Alert.
        max_length: Character budget for each free-form field (messages,
            stacks and contexts).

    Returns:
        JSON text.
    """
    if isinstance(record, LogEntry):
        kind, body = "log", _log_to_dict(record, max_length)
    elif isinstance(record, ErrorReport):
        kind, body = "error", _report_to_dict(record, max_length)
    elif isinstance(record, Alert):
        kind, body = "alert", _alert_to_dict(record, max_length)
    else:
        raise TypeError(f"cannot encode {type(record).__name__}")
    return json.dumps({"v": SCHEMA_VERSION, "kind": kind, **body})


def decode_record(raw: str | bytes) -> Record:
    """Decode a record produced by encode_record.

    Raises:
        RecordDecodeError: If the payload is malformed, of an unknown
            version or of an unknown kind.
    """
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise RecordDecodeError(f"invalid JSON: {exc.msg}", text) from exc
    if not isinstance(data, dict):
        raise RecordDecodeError("record is not an object", text)
    if data.get("v") != SCHEMA_VERSION:
        raise RecordDecodeError(f"unsupported schema version {data.get('v')!r}", text)
    kind = data.get("kind")
    decoder = _DECODERS.get(kind) if isinstance(kind, str) else None
    if decoder is None:
        raise RecordDecodeError(f"unknown record kind {kind!r}", text)
    try:
        return decoder(data)
    except (KeyError, TypeError, ValueError) as exc:
        reason = f"invalid {kind} record: {exc!r}"
        raise RecordDecodeError(reason, text) from exc


def decode_log(raw: str | bytes) -> LogEntry:
    """Decode a record that must be a LogEntry."""
    record = decode_record(raw)
    if not isinstance(record, LogEntry):
        raise RecordDecodeError("expected a log record")
    return record


def decode_report(raw: str | bytes) -> ErrorReport:
    """Decode a record that must be an ErrorReport."""
    record = decode_record(raw)
    if not isinstance(record, ErrorReport):
        raise RecordDecodeError("expected an error record")
    return record


def encode_ndjson(records: Iterable[Record]) -> str:
    """Encode records to newline-delimited JSON.

    Returns:
        NDJSON string with one record per line, empty string if no records.
    """
    lines = [encode_record(record) for record in records]
    if not lines:
        return ""
    return "\n".join(lines) + "\n"
