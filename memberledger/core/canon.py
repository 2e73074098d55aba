# memberledger/core/canon.py
import base64
from typing import Any

import jcs


def canonical_json(obj: Any) -> bytes:
    """
    Deterministic UTF-8 bytes according to RFC 8785 (JSON Canonicalization Scheme).
    Transition ids and signatures are computed over these bytes.
    """
    return jcs.canonicalize(obj)


def canonical_json_str(obj: Any) -> str:
    return canonical_json(obj).decode("utf-8")


def b64url_encode(data: bytes) -> str:
    """Encode bytes to base64url without padding (keys and signatures)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    padding = len(s) % 4
    if padding:
        s += "=" * (4 - padding)
    return base64.urlsafe_b64decode(s)
