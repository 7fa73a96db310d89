"""Consensus rank and disagreement scoring."""

from historyrank.consensus.aggregator import (
    DEFAULT_MISSING_PENALTY,
    DEFAULT_VARIANCE_CAP,
    ConsensusAggregator,
    compute_consensus,
)

__all__ = [
    "DEFAULT_MISSING_PENALTY",
    "DEFAULT_VARIANCE_CAP",
    "ConsensusAggregator",
    "compute_consensus",
]
