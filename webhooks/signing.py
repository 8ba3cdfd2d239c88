"""Webhook payload signing.

Every delivery carries

    X-Storehub-Signature: sha256=<hex HMAC-SHA256 of the raw request body>

Receivers recompute the HMAC over the bytes they received and compare with
`verify_signature`, which runs in constant time.
"""

import hashlib
import hmac
import json
import secrets
from typing import Any, Dict, Optional, Union


SIGNATURE_HEADER = "X-Storehub-Signature"
SIGNATURE_PREFIX = "sha256="
USER_AGENT = "Storehub-Webhook/1.0"


def generate_secret() -> str:
    """Random 256-bit signing secret, hex encoded."""
    return secrets.token_hex(32)


def _as_bytes(body: Union[str, bytes]) -> bytes:
    return body.encode("utf-8") if isinstance(body, str) else body


def sign_payload(secret: str, body: Union[str, bytes]) -> str:
    """Return the signature header value for a body."""
    digest = hmac.new(secret.encode("utf-8"), msg=_as_bytes(body), digestmod=hashlib.sha256)
    return f"{SIGNATURE_PREFIX}{digest.hexdigest()}"


def verify_signature(secret: str, body: Union[str, bytes], signature: Optional[str]) -> bool:
    """Check a received signature header against the body."""
    if not signature:
        return False
    expected = sign_payload(secret, body)
    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8"))


def encode_envelope(event_type: str, timestamp: str, data: Any) -> str:
    """Serialize the delivery envelope. The returned text is what gets signed and sent."""
    return json.dumps({"event": event_type, "timestamp": timestamp, "data": data}, default=str)


def build_headers(secret: str, body: Union[str, bytes], custom: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Custom headers overlaid with content type, user agent and signature."""
    reserved = {"content-type", "user-agent", SIGNATURE_HEADER.lower()}
    headers = {k: v for k, v in (custom or {}).items() if k.lower() not in reserved}
    headers["Content-Type"] = "application/json"
    headers["User-Agent"] = USER_AGENT
    headers[SIGNATURE_HEADER] = sign_payload(secret, body)
    return headers
