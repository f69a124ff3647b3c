"""
AWS Signature Version 4 request signing for S3-compatible endpoints.

Only what bucket provisioning needs: a single signed request with the
``host``, ``x-amz-content-sha256`` and ``x-amz-date`` headers.
"""

import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict
from urllib.parse import parse_qsl, quote, urljoin, urlsplit

ALGORITHM = "AWS4-HMAC-SHA256"
SERVICE = "s3"
SCOPE_TERMINATOR = "aws4_request"
SIGNED_HEADERS = "host;x-amz-content-sha256;x-amz-date"


@dataclass(frozen=True)
class SignedRequest:
    url: str
    headers: Dict[str, str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _hmac(key: bytes, data: str) -> bytes:
    return hmac.new(key, data.encode("utf-8"), hashlib.sha256).digest()


def _sha256(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def signing_key(secret_access_key: str, date_stamp: str, region: str) -> bytes:
    """Derive the SigV4 signing key: secret -> date -> region -> service -> request."""
    k_date = _hmac(f"AWS4{secret_access_key}".encode("utf-8"), date_stamp)
    k_region = _hmac(k_date, region)
    k_service = _hmac(k_region, SERVICE)
    return _hmac(k_service, SCOPE_TERMINATOR)


def _canonical_query(query: str) -> str:
    pairs = sorted(parse_qsl(query, keep_blank_values=True))
    return "&".join(
        f"{quote(k, safe='-_.~')}={quote(v, safe='-_.~')}" for k, v in pairs
    )


def sign_request(
    method: str,
    endpoint: str,
    path: str,
    body: str,
    access_key_id: str,
    secret_access_key: str,
    region: str,
) -> SignedRequest:
    """
    Sign a request against an S3-compatible endpoint.

    Args:
        method: HTTP method (``HEAD``, ``PUT``, ``GET`` ...)
        endpoint: Base endpoint URL, e.g. ``https://s3.us-east-1.amazonaws.com``
        path: Absolute request path, optionally with a query string
        body: Request body, hashed into the signature
        access_key_id: Access key embedded in the Authorization header
        secret_access_key: Secret key used to derive the signing key
        region: Signing region (``auto`` for R2)

    Returns:
        The full URL and the headers to send with it.
    """
    url = urljoin(endpoint, path)
    parts = urlsplit(url)
    host = parts.netloc

    amz_date = _utcnow().strftime("%Y%m%dT%H%M%SZ")
    date_stamp = amz_date[:8]

    payload_hash = _sha256(body)

    canonical_headers = (
        f"host:{host}\n"
        f"x-amz-content-sha256:{payload_hash}\n"
        f"x-amz-date:{amz_date}\n"
    )
    canonical_request = "\n".join(
        [
            method.upper(),
            parts.path or "/",
            _canonical_query(parts.query),
            canonical_headers,
            SIGNED_HEADERS,
            payload_hash,
        ]
    )

    credential_scope = f"{date_stamp}/{region}/{SERVICE}/{SCOPE_TERMINATOR}"
    string_to_sign = "\n".join(
        [ALGORITHM, amz_date, credential_scope, _sha256(canonical_request)]
    )

    key = signing_key(secret_access_key, date_stamp, region)
    signature = hmac.new(
        key, string_to_sign.encode("utf-8"), hashlib.sha256
    ).hexdigest()

    authorization = (
        f"{ALGORITHM} Credential={access_key_id}/{credential_scope}, "
        f"SignedHeaders={SIGNED_HEADERS}, Signature={signature}"
    )

    return SignedRequest(
        url=url,
        headers={
            "Host": host,
            "x-amz-date": amz_date,
            "x-amz-content-sha256": payload_hash,
            "Authorization": authorization,
        },
    )
