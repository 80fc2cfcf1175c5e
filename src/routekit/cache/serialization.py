"""JSON payload encoding for the shared cache tier.

Values larger than the namespace threshold are gzip-compressed and stored as
``COMPRESSED:<base64>`` so that plain JSON entries stay readable in redis-cli.
"""

from __future__ import annotations

import base64
import gzip
import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

COMPRESSED_MARKER = "COMPRESSED:"


def dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def size_of(value: Any) -> int:
    """Serialized size in bytes, used for memory accounting."""
    try:
        return len(dumps(value).encode("utf-8"))
    except (TypeError, ValueError):
        return 1000


def encode_payload(value: Any, compression_threshold: int | None = None) -> str:
    serialized = dumps(value)
    if compression_threshold is not None and len(serialized) > compression_threshold:
        compressed = gzip.compress(serialized.encode("utf-8"))
        return COMPRESSED_MARKER + base64.b64encode(compressed).decode("ascii")
    return serialized


def decode_payload(payload: str | bytes) -> Any:
    """Inverse of :func:`encode_payload`. Raises ``ValueError`` on corrupt payloads."""
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    if payload.startswith(COMPRESSED_MARKER):
        try:
            raw = gzip.decompress(base64.b64decode(payload[len(COMPRESSED_MARKER):]))
        except (OSError, ValueError) as exc:
            raise ValueError(f"Corrupt compressed cache payload: {exc}") from exc
        payload = raw.decode("utf-8")
    return json.loads(payload)
