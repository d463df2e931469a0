"""
Webhook Security Module

Signature verification for inbound Twilio webhooks:
- Reconstructs the externally visible URL Twilio signed (proxies rewrite scheme/host)
- HMAC-SHA1 over URL + sorted form params, or the bodySHA256 variant for raw bodies
- Constant-time signature comparison
"""

import base64
import hashlib
import hmac
import logging
from typing import Optional
from urllib.parse import parse_qs, parse_qsl, urlsplit, urlunsplit

from fastapi import Request

logger = logging.getLogger(__name__)

TWILIO_SIGNATURE_HEADER = "X-Twilio-Signature"


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_twilio_signature(auth_token: str, url: str, params: Optional[list] = None) -> str:
    """
    Compute the X-Twilio-Signature value for a request.

    Twilio appends every POST parameter, sorted by name, as name+value to the
    full URL and signs the result with HMAC-SHA1 keyed by the auth token.
    """
    payload = url
    for key, value in sorted(params or []):
        payload += f"{key}{value}"
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("utf-8")


def _with_and_without_port(url: str) -> list[str]:
    """Twilio may sign the URL with or without the default port"""
    parts = urlsplit(url)
    default_port = {"https": 443, "http": 80}.get(parts.scheme)
    if parts.port:
        netloc = parts.hostname
        alternate = urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
    elif default_port:
        netloc = f"{parts.hostname}:{default_port}"
        alternate = urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
    else:
        return [url]
    return [url, alternate]


class TwilioSignatureVerifier:
    """Verifies X-Twilio-Signature headers against a reconstructed URL"""

    def __init__(self, auth_token: Optional[str]):
        self.auth_token = auth_token

    def verify(self, raw_body: bytes, signature: Optional[str], url: str) -> bool:
        if not self.auth_token:
            logger.error("❌ TWILIO_AUTH_TOKEN not configured - rejecting webhook")
            return False

        if not signature:
            logger.warning("🚫 Missing X-Twilio-Signature header")
            return False

        query = parse_qs(urlsplit(url).query)
        body_hash = query.get("bodySHA256", [None])[0]

        if body_hash:
            # JSON/raw bodies: the URL alone is signed and carries the body hash
            expected_hash = hashlib.sha256(raw_body).hexdigest()
            if not constant_time_compare(expected_hash, body_hash):
                logger.warning("🚫 Twilio bodySHA256 mismatch")
                return False
            params = []
        else:
            params = parse_qsl(raw_body.decode("utf-8"), keep_blank_values=True)

        for candidate in _with_and_without_port(url):
            expected = compute_twilio_signature(self.auth_token, candidate, params)
            if constant_time_compare(expected, signature):
                return True

        logger.warning(f"🚫 Twilio signature mismatch for {url}")
        return False


def reconstruct_public_url(request: Request, public_base_url: Optional[str] = None) -> str:
    """
    Rebuild the URL Twilio used when signing the request.

    Load balancers terminate TLS and rewrite Host, so request.url is not what
    Twilio saw. An explicit public base URL wins; otherwise trust the
    X-Forwarded-* headers set by the proxy.
    """
    path = request.url.path
    query = request.url.query

    if public_base_url:
        base = public_base_url.rstrip("/")
    else:
        proto = request.headers.get("x-forwarded-proto", request.url.scheme)
        host = request.headers.get("x-forwarded-host") or request.headers.get(
            "host", request.url.netloc
        )
        # Multiple proxies append comma-separated values; the first is the client-facing one
        proto = proto.split(",")[0].strip()
        host = host.split(",")[0].strip()
        base = f"{proto}://{host}"

    return f"{base}{path}?{query}" if query else f"{base}{path}"
