"""Encoders for persisted records and for arbitrary log payloads."""

from vigilpy.core.encoding.records import (
    decode_log,
    decode_record,
    decode_report,
    encode_ndjson,
    encode_record,
)
from vigilpy.core.encoding.safe_json import safe_dumps, to_jsonable

__all__ = [
    "decode_log",
    "decode_record",
    "decode_report",
    "encode_ndjson",
    "encode_record",
    "safe_dumps",
    "to_jsonable",
]
