"""Tests for the hub envelope codec."""

from __future__ import annotations

import base64
import gzip

import pytest

from pitwall.codec import GZIP_BASE64_MAGIC, decode_envelope, encode_envelope, is_compressed
from pitwall.exceptions import DecodeError

PAYLOAD = {"eventId": 1234, "sessionId": 2, "carPositions": [{"n": "42", "ltm": "1:32.881"}]}


class TestDecodeEnvelope:
    def test_compressed_payload_has_magic_prefix(self) -> None:
        encoded = encode_envelope(PAYLOAD)
        assert encoded.startswith(GZIP_BASE64_MAGIC)
        assert is_compressed(encoded)

    def test_compressed_round_trip(self) -> None:
        assert decode_envelope(encode_envelope(PAYLOAD)) == PAYLOAD

    def test_plain_json_passes_through(self) -> None:
        plain = encode_envelope(PAYLOAD, compress=False)
        assert not is_compressed(plain)
        assert decode_envelope(plain) == PAYLOAD

    def test_plain_bytes(self) -> None:
        assert decode_envelope(b'{"t": "patch"}') == {"t": "patch"}

    def test_gzip_built_by_hand(self) -> None:
        raw = base64.b64encode(gzip.compress(b'{"cps": []}')).decode("ascii")
        assert decode_envelope(raw) == {"cps": []}

    @pytest.mark.parametrize(
        "payload",
        [
            "{not json",
            GZIP_BASE64_MAGIC + "!!!not-base64",
            GZIP_BASE64_MAGIC + "AAAA",
            base64.b64encode(gzip.compress(b"\xff\xfe")).decode("ascii"),
        ],
    )
    def test_malformed_raises_decode_error(self, payload: str) -> None:
        with pytest.raises(DecodeError):
            decode_envelope(payload)
