"""Utility helpers."""

from .keys import MAX_KEY_LENGTH, make_key, validate_key

__all__ = ["MAX_KEY_LENGTH", "make_key", "validate_key"]
