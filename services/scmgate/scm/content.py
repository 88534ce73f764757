"""Base64 transcoding between provider payloads and plain text."""

import base64
import binascii
import re

from scmgate.scm.protocol import ContentEncoding, DecodeError, PatchEntry

_WHITESPACE = re.compile(r"\s+")


def _compact(value: str) -> str:
    # Providers wrap base64 at 60-76 columns
    return _WHITESPACE.sub("", value)


def decode_content(value: str | None) -> str:
    """Decode provider base64 content to UTF-8 text.

    Raises DecodeError instead of returning mangled text.
    """
    if not value:
        return ""
    try:
        raw = base64.b64decode(_compact(value), validate=True)
        return raw.decode("utf-8")
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Content is not valid base64 UTF-8 text: {e}") from e


def encode_content(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def is_base64(value: str) -> bool:
    """Heuristic: non-empty and strictly decodable as base64.

    Ambiguous for short plain strings that happen to be valid base64
    (``"abcd"``, ``"test"``). Prefer an explicit encoding on the entry.
    """
    compact = _compact(value)
    if not compact:
        return False
    try:
        base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError):
        return False
    return True


def to_transport_base64(entry: PatchEntry) -> str:
    """Return the entry content as the base64 string the provider API expects."""
    match entry.encoding:
        case ContentEncoding.BASE64:
            if not is_base64(entry.content) and entry.content:
                raise DecodeError(f"Content of {entry.path} is declared base64 but does not decode")
            return _compact(entry.content)
        case ContentEncoding.TEXT:
            return encode_content(entry.content)
        case _:
            if is_base64(entry.content):
                return _compact(entry.content)
            return encode_content(entry.content)
