import base64

import pytest

from gh_repo_mirror.utils.encoding import blob_to_bytes, detect_blob_encoding


def test_utf8_text_is_decoded():
    encoded = base64.b64encode("héllo\n".encode("utf-8")).decode("ascii")
    decoded = detect_blob_encoding(encoded)
    assert decoded.encoding == "utf-8"
    assert decoded.content == "héllo\n"
    assert decoded.size == len("héllo\n".encode("utf-8"))


def test_wrapped_base64_is_accepted():
    raw = b"x" * 200
    encoded = base64.encodebytes(raw).decode("ascii")
    assert "\n" in encoded
    decoded = detect_blob_encoding(encoded)
    assert decoded.content == "x" * 200


def test_binary_stays_base64():
    raw = bytes([0x89, 0x50, 0x4E, 0x47, 0xFF, 0x00])
    encoded = base64.b64encode(raw).decode("ascii")
    decoded = detect_blob_encoding(encoded)
    assert decoded.encoding == "base64"
    assert decoded.content == encoded
    assert blob_to_bytes(decoded.content, decoded.encoding) == raw


def test_provider_utf8_passthrough():
    decoded = detect_blob_encoding("plain", "utf-8")
    assert decoded.encoding == "utf-8"
    assert decoded.content == "plain"


def test_invalid_base64_raises():
    with pytest.raises(ValueError):
        detect_blob_encoding("not base64!!")


def test_unknown_encoding_raises():
    with pytest.raises(ValueError):
        detect_blob_encoding("abc", "latin-1")
