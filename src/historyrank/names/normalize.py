"""Name normalization for reconciling figure names across sources.

Different sources spell the same person differently: "St. Thomas Aquinas"
vs "Saint Thomas Aquinas", "Louis XIV" vs "louis xiv", "Ibn  Sina" vs
"ibn sina". Every function here is pure and total: any string in, a
string out, never an exception.

Two flavours of key:
  - normalize_name(): display-oriented, keeps diacritics and punctuation
    so that slugs generated from it stay close to the original text.
  - normalize_alias(): strict, additionally drops diacritics and any
    non-alphanumeric character. Used for alias-table keys.
"""

import re
import unicodedata

_PARENTHETICAL_RE = re.compile(r"\s*\([^)]*\)\s*")
_WHITESPACE_RE = re.compile(r"\s+")

# (pattern, replacement) applied to the start of the name
_HONORIFIC_PREFIXES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"^st\.?\s+|^st\.\s*"), "saint "),
    (re.compile(r"^sir\.?\s+"), ""),
    (re.compile(r"^dr\.?\s+|^dr\.\s*"), ""),
]

# ", Jr." / ", III" style suffixes; Jr./Sr. also without the comma
_GENERATIONAL_SUFFIX_RE = re.compile(
    r"(,\s*(jr\.?|sr\.?|i{1,3}|iv|v|vi{1,3})|\s+(jr\.?|sr\.?))$"
)

_IBN_RE = re.compile(r"\s+ibn\s+")
_AL_RE = re.compile(r"\s+al\s*-\s*")

_EPITHET_SUFFIX_RE = re.compile(
    r"\s+(the great|the younger|the elder|i{1,3}|iv|v|vi{1,3})$"
)

_NON_ALNUM_SPACE_RE = re.compile(r"[^a-z0-9\s]")
_SLUG_SEPARATOR_RE = re.compile(r"[^a-z0-9]+")


def _normalize_once(name: str) -> str:
    text = name.lower().strip()
    text = _PARENTHETICAL_RE.sub(" ", text).strip()
    for pattern, replacement in _HONORIFIC_PREFIXES:
        text = pattern.sub(replacement, text)
    text = _GENERATIONAL_SUFFIX_RE.sub("", text.strip())
    text = _IBN_RE.sub(" ibn ", text)
    text = _AL_RE.sub(" al-", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_name(name: str) -> str:
    """Normalize a raw display name into a matchable key.

    Lowercases, trims, strips parenthetical disambiguators, expands
    "St." to "saint", drops "Sir"/"Dr." prefixes, strips trailing
    generational suffixes, normalizes spacing around "ibn"/"al-", and
    collapses whitespace.

    The rules are re-applied until nothing changes, so the result is
    idempotent: normalize_name(normalize_name(x)) == normalize_name(x).

    Args:
        name: Raw name as written by a source.

    Returns:
        Normalized name (possibly empty).
    """
    current = name or ""
    while True:
        result = _normalize_once(current)
        if result == current:
            return result
        current = result


def strip_diacritics(text: str) -> str:
    """Remove combining marks after Unicode NFD decomposition."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(c for c in decomposed if unicodedata.category(c) != "Mn")


def normalize_alias(name: str) -> str:
    """Strict normalization for alias-table keys.

    Applies normalize_name(), then removes diacritics and replaces any
    character outside [a-z0-9] with a space. "Simón Bolívar",
    "simon bolivar" and "Simon-Bolivar" all map to "simon bolivar".
    """
    text = strip_diacritics(normalize_name(name))
    text = _NON_ALNUM_SPACE_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def generate_slug(name: str) -> str:
    """Generate a URL-safe entity id from a display name.

    Runs normalize_name(), then replaces each run of characters outside
    [a-z0-9] with a single hyphen and trims hyphens from both ends.
    Diacritics are not transliterated: "René Descartes" -> "ren-descartes".
    """
    return _SLUG_SEPARATOR_RE.sub("-", normalize_name(name)).strip("-")


def extract_simple_name(name: str) -> str:
    """Normalized name without a trailing epithet or regnal number.

    Useful for loose matching: "Alexander the Great" -> "alexander",
    "Ramesses II" -> "ramesses".
    """
    return _EPITHET_SUFFIX_RE.sub("", normalize_name(name)).strip()


def get_last_name(name: str) -> str:
    """Last token of the normalized name (the whole name if single-token)."""
    parts = normalize_name(name).split(" ")
    return parts[-1]
