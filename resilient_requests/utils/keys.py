"""
Call key helpers.

A key identifies a logical request: calls with the same key are
deduplicated while in flight and share one cache entry once completed.
"""

import hashlib
import json
import logging
from typing import Any

from ..exceptions import ValidationError

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 1024


def validate_key(key: Any) -> str:
    """
    Validate a call key.

    Args:
        key: Key to validate

    Returns:
        The key, unchanged

    Raises:
        ValidationError: If the key is not a non-empty string or is too long
    """
    if not isinstance(key, str) or not key:
        raise ValidationError(
            f"Call key must be a non-empty string, got {key!r}",
            error_paths=["key"],
        )

    if len(key) > MAX_KEY_LENGTH:
        raise ValidationError(
            f"Call key too long ({len(key)} characters, max {MAX_KEY_LENGTH})",
            error_paths=["key"],
        )

    return key


def make_key(prefix: str, *args: Any, **kwargs: Any) -> str:
    """
    Build a deterministic key from a prefix and call arguments.

    Arguments are serialized to canonical JSON (sorted keys, ``repr`` for
    values JSON cannot encode) and hashed, so equal arguments always map to
    the same key regardless of keyword order.

    Args:
        prefix: Readable key prefix, typically the function's qualified name
        *args: Positional arguments
        **kwargs: Keyword arguments

    Returns:
        ``"<prefix>:<sha256 hex digest>"``
    """
    payload = json.dumps([args, kwargs], sort_keys=True, default=repr, separators=(",", ":"))
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"{prefix}:{digest}"
