"""Typed records shared by the resolution and consensus passes."""

from dataclasses import dataclass, field
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Biographical attributes a merge may copy from loser onto survivor.
# Derived values (consensus_rank, variance_score) are never coalesced.
COALESCE_FIELDS: tuple[str, ...] = (
    "birth_year",
    "death_year",
    "domain",
    "occupation",
    "era",
    "region",
    "birth_place",
    "birth_lat",
    "birth_lon",
    "external_id",
    "wikidata_qid",
    "importance_rank",
)


@dataclass
class Figure:
    """A canonical historical person.

    `id` is a stable slug and never changes once created. `external_id`
    is the strong identity key (e.g. the linked reference-page slug),
    `importance_rank` the externally supplied importance rank used to
    pick a survivor among duplicates.
    """

    id: str
    canonical_name: str
    birth_year: int | None = None
    death_year: int | None = None
    domain: str | None = None
    occupation: str | None = None
    era: str | None = None
    region: str | None = None
    birth_place: str | None = None
    birth_lat: float | None = None
    birth_lon: float | None = None
    external_id: str | None = None
    wikidata_qid: str | None = None
    importance_rank: int | None = None
    consensus_rank: float | None = None
    variance_score: float | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class RankingContribution:
    """One (source, figure, rank) observation.

    Several contributions from the same source for one figure are
    repeated samples (distinguished by `sample_id`), not independent
    sources.
    """

    entity_id: str
    source: str
    rank: float
    sample_id: str | None = None
    raw_name: str | None = None


@dataclass
class Candidate:
    """A provisional figure aggregated from raw source-list mentions."""

    normalized_name: str
    display_name: str
    sources: set[str] = field(default_factory=set)
    mention_count: int = 0
    avg_rank: float | None = None
    created_at: datetime = field(default_factory=utcnow)

    def add_mention(self, source: str, rank: float) -> None:
        """Fold one more mention into the running aggregates."""
        total = (self.avg_rank or 0.0) * self.mention_count + rank
        self.mention_count += 1
        self.avg_rank = total / self.mention_count
        self.sources.add(source)


@dataclass
class ConsensusResult:
    """Derived consensus values for one figure."""

    entity_id: str
    consensus_rank: float
    variance_score: float
    source_count: int


@dataclass
class MergeOutcome:
    """What a single survivor/loser merge changed."""

    survivor_id: str
    loser_id: str
    contributions_moved: int = 0
    aliases_added: int = 0
    aliases_moved: int = 0
    attributes_filled: list[str] = field(default_factory=list)


@dataclass
class MergeReport:
    """Summary of one duplicate-resolution pass."""

    dry_run: bool = False
    strong_key_groups: int = 0
    curated_entries: int = 0
    merged: int = 0
    deleted: int = 0
    contributions_moved: int = 0
    aliases_added: int = 0
    renamed: int = 0
    merges: list[tuple[str, str]] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
