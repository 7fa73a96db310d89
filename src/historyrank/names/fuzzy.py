"""Edit-distance matching and the advisory duplicate scan.

Fuzzy matching is recall-favouring: it surfaces pairs of figures that
*might* be the same person so a human can add them to the curated merge
table. Nothing in this module merges anything.
"""

import logging
import re
from dataclasses import dataclass
from itertools import combinations

from historyrank.models import Figure
from historyrank.names.normalize import normalize_name

logger = logging.getLogger(__name__)

# Tokens ignored when comparing names token-by-token
STOP_WORDS: frozenset[str] = frozenset(
    {"the", "of", "saint", "st", "ibn", "al", "von", "de", "da", "di"}
)

_NON_ALNUM_SPACE_RE = re.compile(r"[^a-z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def levenshtein_distance(a: str, b: str) -> int:
    """Classic dynamic-programming edit distance over characters.

    Insertions, deletions and substitutions all cost 1. Symmetric;
    the distance to an empty string is the other string's length.
    """
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            if ca == cb:
                current.append(previous[j - 1])
            else:
                current.append(
                    1 + min(previous[j - 1], previous[j], current[j - 1])
                )
        previous = current
    return previous[-1]


def is_fuzzy_match(name1: str, name2: str, max_distance: int = 3) -> bool:
    """Check whether two spellings plausibly denote the same person.

    Both names go through normalize_name(); equal keys match, otherwise
    the pair matches iff the edit distance is at most max_distance.
    """
    n1 = normalize_name(name1)
    n2 = normalize_name(name2)
    if n1 == n2:
        return True
    return levenshtein_distance(n1, n2) <= max_distance


# ------------------------------------------------------------------ #
#  Advisory duplicate scan                                            #
# ------------------------------------------------------------------ #


def _plain(name: str) -> str:
    text = normalize_name(name)
    text = _NON_ALNUM_SPACE_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def tokenize(name: str) -> list[str]:
    """Plain tokens of a name with stop words removed."""
    return [t for t in _plain(name).split(" ") if t and t not in STOP_WORDS]


def _jaccard(a: list[str], b: list[str]) -> float:
    sa, sb = set(a), set(b)
    union = sa | sb
    if not union:
        return 0.0
    return len(sa & sb) / len(union)


def is_candidate_pair(name_a: str, name_b: str) -> bool:
    """Heuristic: could these two (differently written) names be one person?

    Requires a shared last token for every rule except containment of a
    multi-token name inside the other.
    """
    an = _plain(name_a)
    bn = _plain(name_b)
    if an == bn:
        return False
    at = tokenize(name_a)
    bt = tokenize(name_b)
    if not at or not bt:
        return False

    last_match = at[-1] == bt[-1] and len(at[-1]) >= 3

    if len(at) <= len(bt):
        shorter_tokens, shorter, longer = at, an, bn
    else:
        shorter_tokens, shorter, longer = bt, bn, an

    if shorter in longer and (last_match or len(shorter_tokens) >= 2):
        return True
    if last_match and _jaccard(at, bt) >= 0.6:
        return True
    if last_match and min(levenshtein_distance(an, bn), levenshtein_distance(at[0], bt[0])) <= 2:
        return True
    return False


def is_safe_pair(name_a: str, name_b: str) -> bool:
    """Stricter check: same token count, every token pairs off within distance 2."""
    at = tokenize(name_a)
    bt = tokenize(name_b)
    if len(at) != len(bt):
        return False
    used = [False] * len(bt)
    for token in at:
        for i, other in enumerate(bt):
            if not used[i] and levenshtein_distance(token, other) <= 2:
                used[i] = True
                break
        else:
            return False
    return True


@dataclass
class DuplicateCandidate:
    """A pair of figures flagged for human review."""

    first: Figure
    second: Figure
    safe: bool


def find_duplicate_candidates(
    figures: list[Figure],
    limit: int = 300,
    max_distance: int = 3,
) -> list[DuplicateCandidate]:
    """Scan the best-ranked figures pairwise for likely duplicates.

    Only figures with a consensus rank are considered, best first, up
    to `limit`. A pair is reported when the names collide after
    normalization (always safe), when the token heuristics fire, or
    when the full names are a fuzzy match.

    Args:
        figures: All figures in the store.
        limit: How many top-ranked figures to compare.
        max_distance: Edit-distance bound for is_fuzzy_match().

    Returns:
        Candidate pairs in scan order.
    """
    ranked = sorted(
        (f for f in figures if f.consensus_rank is not None),
        key=lambda f: (f.consensus_rank, f.id),
    )[:limit]

    found: list[DuplicateCandidate] = []
    for a, b in combinations(ranked, 2):
        name_a, name_b = a.canonical_name, b.canonical_name
        if _plain(name_a) == _plain(name_b):
            found.append(DuplicateCandidate(a, b, safe=True))
        elif is_candidate_pair(name_a, name_b) or is_fuzzy_match(
            name_a, name_b, max_distance
        ):
            found.append(DuplicateCandidate(a, b, is_safe_pair(name_a, name_b)))

    logger.info(
        f"Duplicate scan: {len(ranked)} figures, {len(found)} candidate pairs, "
        f"{sum(1 for c in found if c.safe)} safe"
    )
    return found
