"""Envelope codec for hub messages.

A hub payload is either plain UTF-8 JSON or JSON that was gzip-compressed
and then base64-encoded. The compressed form is recognised by its magic
prefix: every base64-encoded gzip stream starts with ``H4sI`` (the
``1f 8b 08`` gzip header).
"""

from __future__ import annotations

import base64
import binascii
import gzip
import json
import zlib
from typing import Any

from pitwall.exceptions import DecodeError

GZIP_BASE64_MAGIC = "H4sI"


def is_compressed(payload: str | bytes) -> bool:
    """Return True if *payload* carries the base64-gzip magic prefix."""
    if isinstance(payload, bytes):
        return payload.startswith(GZIP_BASE64_MAGIC.encode("ascii"))
    return payload.startswith(GZIP_BASE64_MAGIC)


def decode_envelope(payload: str | bytes) -> Any:
    """Decode a hub payload into a JSON value.

    Compressed payloads go base64 -> gunzip -> UTF-8 -> JSON; plain
    payloads go straight to UTF-8 -> JSON.

    Raises:
        DecodeError: if any stage fails.
    """
    try:
        if is_compressed(payload):
            raw = base64.b64decode(payload, validate=True)
            text = gzip.decompress(raw).decode("utf-8")
        elif isinstance(payload, bytes):
            text = payload.decode("utf-8")
        else:
            text = payload
        return json.loads(text)
    except (binascii.Error, OSError, EOFError, zlib.error, UnicodeDecodeError, ValueError) as exc:
        raise DecodeError(f"Malformed envelope: {exc}") from exc


def encode_envelope(value: Any, compress: bool = True) -> str:
    """Encode a JSON value the way the hub does (gzip + base64 by default)."""
    text = json.dumps(value, separators=(",", ":"))
    if not compress:
        return text
    return base64.b64encode(gzip.compress(text.encode("utf-8"))).decode("ascii")
