"""
Bucket provisioning for S3-compatible storage.

Bucket existence checks, bucket creation, and Cloudflare R2 jurisdiction
detection, all through signed requests sent with ``requests``.
"""

import logging
from enum import Enum
from typing import Optional, Sequence

import requests

from clawstash_py.config import StorageTarget
from clawstash_py.errors import StorageProvisioningError
from clawstash_py.storage.signing import sign_request

logger = logging.getLogger("clawstash.storage")

BUCKET_TIMEOUT = 10
PROBE_TIMEOUT = 8
ENDPOINT_TIMEOUT = 5

ALREADY_OWNED_MARKER = "BucketAlreadyOwnedByYou"

# Default (global) first, then regional variants
R2_JURISDICTIONS: Sequence[str] = ("", "eu")


class BucketCreation(Enum):
    CREATED = "created"
    ALREADY_OWNED = "already_owned"


def r2_endpoint(account_id: str, jurisdiction: str = "") -> str:
    jur = f".{jurisdiction}" if jurisdiction else ""
    return f"https://{account_id}{jur}.r2.cloudflarestorage.com"


def _signed(
    method: str, target: StorageTarget, path: str, timeout: float
) -> requests.Response:
    signed = sign_request(
        method=method,
        endpoint=target.endpoint_url(),
        path=path,
        body="",
        access_key_id=target.access_key_id,
        secret_access_key=target.secret_access_key,
        region=target.signing_region(),
    )
    return requests.request(method, signed.url, headers=signed.headers, timeout=timeout)


def bucket_exists(target: StorageTarget) -> bool:
    """
    Check whether the bucket exists and is accessible.

    Network and TLS failures count as "not accessible" and return False,
    so callers cannot tell an absent bucket from an unreachable endpoint.
    """
    try:
        response = _signed("HEAD", target, f"/{target.bucket}", BUCKET_TIMEOUT)
    except requests.RequestException as e:
        logger.debug(f"HEAD bucket failed: {e}")
        return False
    logger.debug(f"HEAD /{target.bucket}: {response.status_code}")
    return response.status_code == 200


def create_bucket(target: StorageTarget) -> BucketCreation:
    """
    Create the bucket.

    Returns:
        ``CREATED`` for a new bucket, ``ALREADY_OWNED`` if it already
        belongs to these credentials.

    Raises:
        StorageProvisioningError: For any other response or a network failure.
    """
    try:
        response = _signed("PUT", target, f"/{target.bucket}", BUCKET_TIMEOUT)
    except requests.RequestException as e:
        raise StorageProvisioningError(
            f'Failed to create bucket "{target.bucket}": {e}'
        ) from e

    status = response.status_code
    if status in (200, 201):
        logger.debug(f'Bucket "{target.bucket}" created')
        return BucketCreation.CREATED

    if status == 409:
        logger.debug(f'Bucket "{target.bucket}" already exists')
        return BucketCreation.ALREADY_OWNED

    body = response.text or ""
    logger.debug(f"CreateBucket response: {status} {body}")

    if 400 <= status < 500 and ALREADY_OWNED_MARKER in body:
        return BucketCreation.ALREADY_OWNED

    raise StorageProvisioningError(
        f'Failed to create bucket "{target.bucket}": {status} {body}'.rstrip(),
        status_code=status,
        body=body,
    )


def ensure_bucket(target: StorageTarget) -> Optional[BucketCreation]:
    """
    Make sure the bucket exists, creating it when the check says it does not.

    Returns:
        None if the bucket was already there, otherwise the creation outcome.
    """
    if bucket_exists(target):
        logger.debug(f'Bucket "{target.bucket}" already exists')
        return None
    outcome = create_bucket(target)
    logger.info(f'Bucket "{target.bucket}" ready ({outcome.value})')
    return outcome


def detect_jurisdiction(
    account_id: str, access_key_id: str, secret_access_key: str
) -> str:
    """
    Find the R2 jurisdiction these credentials belong to.

    Each candidate endpoint gets an authenticated ``GET /`` in order; the
    first one answering 200 wins. Candidates are probed one at a time
    because an early false positive would send data to the wrong region.

    Returns:
        The jurisdiction suffix (``""`` for the default endpoint, ``"eu"``
        ...). Falls back to ``""`` when no candidate answers 200.
    """
    for jurisdiction in R2_JURISDICTIONS:
        label = jurisdiction or "default"
        signed = sign_request(
            method="GET",
            endpoint=r2_endpoint(account_id, jurisdiction),
            path="/",
            body="",
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            region="auto",
        )
        try:
            response = requests.request(
                "GET", signed.url, headers=signed.headers, timeout=PROBE_TIMEOUT
            )
        except requests.RequestException as e:
            logger.debug(f"R2 {label} endpoint failed: {e}")
            continue

        logger.debug(f"R2 {label} endpoint: {response.status_code}")
        if response.status_code == 200:
            return jurisdiction

    return ""


def probe_endpoint(target: StorageTarget) -> bool:
    """Return True if the endpoint answers at all, even with an auth error."""
    try:
        response = requests.request(
            "HEAD", target.endpoint_url(), timeout=ENDPOINT_TIMEOUT
        )
    except requests.RequestException as e:
        logger.debug(f"Endpoint test failed: {e}")
        return False
    logger.debug(f"Endpoint test: {response.status_code}")
    return True
