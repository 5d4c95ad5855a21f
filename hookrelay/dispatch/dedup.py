"""
Deduplication identity for submitted jobs.
"""

import hashlib
import json


def _canonical_body(body: str) -> str:
    """
    Canonical text of a body for hashing.

    JSON bodies are re-serialized with sorted keys so that payloads differing
    only in key order hash the same. Anything else, including JSON nested too
    deeply to decode, is hashed as-is.
    """
    try:
        parsed = json.loads(body)
        return json.dumps(
            parsed, sort_keys=True, separators=(",", ":"), ensure_ascii=False
        )
    except (ValueError, RecursionError):
        return body


def content_hash(body: str) -> str:
    """SHA-256 hex digest of the canonical body."""
    return hashlib.sha256(_canonical_body(body).encode("utf-8")).hexdigest()


def derive_deduplication_id(
    body: str,
    deduplication_id: str | None = None,
    content_based: bool = False,
) -> str | None:
    """
    Compute the dedup identity of a submission.

    An explicit ``deduplication_id`` is used verbatim. Otherwise, when
    ``content_based`` is set, the identity is a hash of the body content.
    Returns None when no deduplication applies.
    """
    if deduplication_id is not None:
        return deduplication_id
    if content_based:
        return content_hash(body)
    return None
