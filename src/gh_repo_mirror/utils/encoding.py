from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass

UTF8 = "utf-8"
BASE64 = "base64"


@dataclass(frozen=True)
class DecodedBlob:
    content: str
    encoding: str
    size: int


def detect_blob_encoding(content: str, provider_encoding: str = BASE64) -> DecodedBlob:
    """Pick the storage encoding for blob content returned by the API.

    Base64 payloads are decoded and kept as UTF-8 text only if decoding and
    re-encoding reproduces the exact bytes; anything else keeps the original
    base64 text.
    """
    if provider_encoding == UTF8:
        return DecodedBlob(content=content, encoding=UTF8, size=len(content.encode(UTF8)))
    if provider_encoding != BASE64:
        raise ValueError(f"unsupported blob encoding: {provider_encoding}")

    # the API wraps base64 output at 60 columns
    compact = "".join(content.split())
    try:
        raw = base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"invalid base64 blob content: {exc}") from exc

    try:
        text = raw.decode(UTF8)
    except UnicodeDecodeError:
        return DecodedBlob(content=compact, encoding=BASE64, size=len(raw))
    if text.encode(UTF8) != raw:
        return DecodedBlob(content=compact, encoding=BASE64, size=len(raw))
    return DecodedBlob(content=text, encoding=UTF8, size=len(raw))


def blob_to_bytes(content: str, encoding: str) -> bytes:
    if encoding == UTF8:
        return content.encode(UTF8)
    if encoding == BASE64:
        return base64.b64decode(content)
    raise ValueError(f"unsupported blob encoding: {encoding}")
