"""Consensus rank and variance across an open-ended set of sources.

For each figure:
  1. Drop contributions from the reference baseline source.
  2. Average each source's (possibly repeated) samples into one rank.
  3. Pad with a penalty rank for every source in the dataset that never
     ranked this figure.
  4. consensus_rank = mean of the padded list (1 decimal).
  5. variance_score = min(population stddev / mean, cap) (3 decimals),
     0 when only one value exists.

Recomputation is always a full batch over the whole store, never an
incremental update, so the source count used for padding is identical
for every figure within one run.
"""

import logging
import math
from collections import defaultdict

from historyrank.config import Config
from historyrank.graph.store import EntityStore
from historyrank.models import ConsensusResult, RankingContribution

logger = logging.getLogger(__name__)

# Rank assigned for "not ranked by this source"; worse than any real rank.
DEFAULT_MISSING_PENALTY = 1001.0

# Upper clamp for the coefficient of variation.
DEFAULT_VARIANCE_CAP = 1.0


def _round_half_up(value: float, digits: int) -> float:
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def compute_consensus(
    contributions: list[RankingContribution],
    baseline_source: str | None = "pantheon",
    missing_penalty: float = DEFAULT_MISSING_PENALTY,
    variance_cap: float = DEFAULT_VARIANCE_CAP,
) -> list[ConsensusResult]:
    """Compute consensus values for every figure with at least one contribution.

    Args:
        contributions: Every ranking contribution in the dataset.
        baseline_source: Source excluded from model consensus (None keeps all).
        missing_penalty: Rank used to pad sources that did not rank a figure.
        variance_cap: Clamp for the normalized variance.

    Returns:
        One ConsensusResult per figure that has non-baseline contributions.
    """
    by_figure: dict[str, dict[str, list[float]]] = defaultdict(lambda: defaultdict(list))
    for c in contributions:
        if c.source == baseline_source:
            continue
        by_figure[c.entity_id][c.source].append(float(c.rank))

    total_sources = len({s for by_source in by_figure.values() for s in by_source}) or 1

    results = []
    for entity_id, by_source in by_figure.items():
        source_averages = [sum(ranks) / len(ranks) for ranks in by_source.values()]
        missing = max(total_sources - len(source_averages), 0)
        padded = source_averages + [missing_penalty] * missing
        mean = sum(padded) / len(padded)

        variance = 0.0
        if len(padded) > 1 and mean > 0:
            std_dev = math.sqrt(sum((r - mean) ** 2 for r in padded) / len(padded))
            variance = min(std_dev / mean, variance_cap)

        results.append(
            ConsensusResult(
                entity_id=entity_id,
                consensus_rank=_round_half_up(mean, 1),
                variance_score=_round_half_up(variance, 3),
                source_count=len(source_averages),
            )
        )
    return results


class ConsensusAggregator:
    """Recomputes consensus_rank / variance_score for an entire store."""

    def __init__(
        self,
        baseline_source: str | None = "pantheon",
        missing_penalty: float = DEFAULT_MISSING_PENALTY,
        variance_cap: float = DEFAULT_VARIANCE_CAP,
    ):
        self.baseline_source = baseline_source
        self.missing_penalty = missing_penalty
        self.variance_cap = variance_cap

    @classmethod
    def from_config(cls, config: Config) -> "ConsensusAggregator":
        return cls(
            baseline_source=config.baseline_source,
            missing_penalty=config.missing_source_penalty,
            variance_cap=config.variance_cap,
        )

    def recompute_all(self, store: EntityStore) -> list[ConsensusResult]:
        """Recompute and persist consensus values for every figure.

        Figures without any non-baseline contribution end up with both
        fields null. The store write is a single transaction.
        """
        logger.info("Recalculating consensus and variance...")
        results = compute_consensus(
            store.contributions(),
            baseline_source=self.baseline_source,
            missing_penalty=self.missing_penalty,
            variance_cap=self.variance_cap,
        )
        store.write_consensus(results)
        logger.info(f"Consensus recalculated for {len(results)} figures")
        return results
