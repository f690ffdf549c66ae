"""Deterministic cache keys for recommendation sets."""
import json
from typing import Any, Mapping, Optional

KEY_PREFIX = "rec:v1"


def _encode_value(value: Any) -> str:
    # nested dicts/lists are serialized with sorted keys so their order never matters either
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def user_key_prefix(user_id: str) -> str:
    return f"{KEY_PREFIX}:{user_id}:"


def derive_key(user_id: str, filters: Optional[Mapping[str, Any]] = None) -> str:
    """Build the cache key for a user and filter set.

    Filter entries are sorted by field name before concatenation, so two filter
    mappings with the same key/value pairs always give the same key. Names are
    JSON-quoted like values, so a name holding `=` or `&` cannot forge a
    separator.
    """
    entries = sorted((filters or {}).items(), key=lambda kv: str(kv[0]))
    canonical = "&".join(
        f"{_encode_value(str(name))}={_encode_value(value)}" for name, value in entries
    )
    return f"{user_key_prefix(user_id)}{canonical or '-'}"
