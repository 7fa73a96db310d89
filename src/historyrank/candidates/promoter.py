"""Candidate building and promotion.

Bulk source lists mention thousands of names that are not yet canonical
figures. build_candidates() folds those mentions into one Candidate per
normalized name; CandidatePromoter.promote() turns the ones with enough
support into provisional figures with only id and name set. Enrichment
jobs fill in the remaining attributes later.
"""

import logging
from dataclasses import dataclass

from historyrank.candidates.lists import ListFile, ListParseError, parse_list_file
from historyrank.config import Config
from historyrank.graph.store import EntityStore
from historyrank.models import Candidate, Figure, utcnow
from historyrank.names.normalize import generate_slug, normalize_alias, normalize_name

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    candidates: list[Candidate]
    files_read: int = 0
    files_failed: int = 0
    records_skipped: int = 0


def build_candidates(list_files: list[ListFile]) -> BuildResult:
    """Aggregate raw mentions from every list into candidates.

    The first display name seen for a normalized key is kept as the
    representative. Files that fail to parse are counted and skipped.
    """
    by_name: dict[str, Candidate] = {}
    result = BuildResult(candidates=[])

    for list_file in list_files:
        try:
            parsed = parse_list_file(list_file.path)
        except (ListParseError, OSError) as e:
            result.files_failed += 1
            logger.warning(f"Skipping {list_file.path.name}: {e}")
            continue

        result.files_read += 1
        result.records_skipped += parsed.skipped_records
        for entry in parsed.entries:
            key = normalize_name(entry.name)
            if not key:
                result.records_skipped += 1
                continue
            candidate = by_name.get(key)
            if candidate is None:
                candidate = Candidate(normalized_name=key, display_name=entry.name)
                by_name[key] = candidate
            candidate.add_mention(list_file.source, entry.rank)

    result.candidates = list(by_name.values())
    logger.info(
        f"Built {len(result.candidates)} candidates from {result.files_read} lists "
        f"({result.files_failed} failed, {result.records_skipped} records skipped)"
    )
    return result


@dataclass
class PromotionThresholds:
    """A candidate qualifies if it meets ANY of these."""

    min_sources: int = 2
    min_mentions: int = 2
    max_avg_rank: float = 300

    @classmethod
    def from_config(cls, config: Config) -> "PromotionThresholds":
        return cls(
            min_sources=config.source_threshold,
            min_mentions=config.sample_threshold,
            max_avg_rank=config.rank_threshold,
        )

    def qualifies(self, candidate: Candidate) -> bool:
        return (
            len(candidate.sources) >= self.min_sources
            or candidate.mention_count >= self.min_mentions
            or (candidate.avg_rank is not None and candidate.avg_rank <= self.max_avg_rank)
        )


class CandidatePromoter:
    """Promotes qualifying candidates into canonical figures."""

    def __init__(self, store: EntityStore):
        self.store = store

    def promote(
        self,
        candidates: list[Candidate] | None = None,
        thresholds: PromotionThresholds | None = None,
    ) -> int:
        """Create a figure for every qualifying candidate.

        The figure id is generate_slug() of the display name. A slug is
        taken when it is a figure id or an alias key (merged-away ids stay
        behind as aliases of their survivor). Candidates whose
        strict-normalized name is already an alias key are skipped too.

        Args:
            candidates: Candidates to consider (defaults to the store's table).
            thresholds: Promotion thresholds (defaults to 2 / 2 / 300).

        Returns:
            Number of figures created.
        """
        thresholds = thresholds or PromotionThresholds()
        if candidates is None:
            candidates = self.store.candidates()

        aliases = self.store.aliases()
        taken = {f.id for f in self.store.figures()} | set(aliases)
        promoted = 0
        for candidate in candidates:
            if not thresholds.qualifies(candidate):
                continue
            slug = generate_slug(candidate.display_name)
            if not slug or slug in taken:
                logger.debug(f"Not promoting {candidate.display_name!r}: slug {slug!r} unavailable")
                continue
            alias_key = normalize_alias(candidate.display_name)
            if alias_key in aliases:
                logger.debug(
                    f"Not promoting {candidate.display_name!r}: alias of {aliases[alias_key]!r}"
                )
                continue
            now = utcnow()
            figure = Figure(
                id=slug,
                canonical_name=candidate.display_name,
                created_at=now,
                updated_at=now,
            )
            if self.store.add_figure(figure):
                taken.add(slug)
                promoted += 1

        logger.info(f"Promoted {promoted} candidates into figures")
        return promoted
