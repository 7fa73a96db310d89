"""Name normalization and fuzzy matching."""

from historyrank.names.fuzzy import is_fuzzy_match, levenshtein_distance
from historyrank.names.normalize import (
    extract_simple_name,
    generate_slug,
    get_last_name,
    normalize_alias,
    normalize_name,
)

__all__ = [
    "extract_simple_name",
    "generate_slug",
    "get_last_name",
    "is_fuzzy_match",
    "levenshtein_distance",
    "normalize_alias",
    "normalize_name",
]
