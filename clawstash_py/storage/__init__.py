"""
Storage package for Clawstash.

Minimal S3-compatible HTTP operations: request signing, bucket existence
checks and creation, and R2 jurisdiction detection.
"""

from clawstash_py.storage.bucket import (
    BucketCreation,
    bucket_exists,
    create_bucket,
    detect_jurisdiction,
    ensure_bucket,
    probe_endpoint,
)
from clawstash_py.storage.signing import SignedRequest, sign_request

__all__ = [
    "BucketCreation",
    "SignedRequest",
    "bucket_exists",
    "create_bucket",
    "detect_jurisdiction",
    "ensure_bucket",
    "sign_request",
    "probe_endpoint",
]
