from __future__ import annotations

import base64
import binascii
import json
import re
import zlib
from typing import Any, Dict

from ..errors import DecodeError
from ..models.io_contracts import DiagramFormat, EncodedToken, GraphEnvelope

TOKEN_PREFIX = "pako:"

_PREFIX_RE = re.compile(r"^pako:")
# zlib or gzip header, auto-detected (pako.inflate default)
_INFLATE_WBITS = zlib.MAX_WBITS | 32

def serialize_envelope(envelope: GraphEnvelope) -> str:
    # Same bytes as JSON.stringify: compact separators, non-ASCII left as-is
    return json.dumps(envelope.model_dump(), ensure_ascii=False, separators=(",", ":"))

def encode(source_text: str) -> EncodedToken:
    """
    Encode diagram source into the `pako:` token understood by mermaid.ink.
    """
    text = serialize_envelope(GraphEnvelope(code=source_text))
    compressed = zlib.compress(text.encode("utf-8"))
    b64 = base64.b64encode(compressed).decode("ascii")
    url_safe = b64.replace("+", "-").replace("/", "_").replace("=", "")
    return EncodedToken(prefix=TOKEN_PREFIX, payload=url_safe)

def encode_mermaid(source_text: str) -> str:
    return str(encode(source_text))

def decode(token: str) -> Any:
    """
    Reverse `encode`. Accepts tokens with or without the `pako:` prefix.

    Returns the envelope's `code`; when the payload carries no `code` field the
    parsed structure itself is returned.
    """
    cleaned = _PREFIX_RE.sub("", (token or "").strip())
    standard = cleaned.replace("-", "+").replace("_", "/")
    padded = standard + "=" * ((4 - len(standard) % 4) % 4)

    try:
        compressed = base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid encoded string: base64 decode failed: {e}", stage="base64") from e

    try:
        raw = zlib.decompress(compressed, _INFLATE_WBITS)
    except zlib.error as e:
        raise DecodeError(f"Invalid encoded string: inflate failed: {e}", stage="inflate") from e

    try:
        parsed = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise DecodeError(f"Invalid encoded string: payload is not JSON: {e}", stage="parse") from e

    if isinstance(parsed, dict) and "code" in parsed:
        return parsed["code"]
    return parsed

def image_url(token: EncodedToken | str, format: DiagramFormat, base_url: str) -> str:
    return f"{base_url.rstrip('/')}/{format.ink_path}/{token}"

def image_urls(token: EncodedToken | str, base_url: str) -> Dict[str, str]:
    return {fmt.value: image_url(token, fmt, base_url) for fmt in DiagramFormat}
