"""Bulk ranking ingestion.

Reads source lists, resolves every raw name through the AliasIndex and
attaches a RankingContribution to the matched figure. Unmatched names
are counted and reported, never guessed. Consensus is recomputed once
after the whole batch.
"""

import logging

from historyrank.candidates.lists import ListFile, ListParseError, parse_list_file
from historyrank.consensus import ConsensusAggregator
from historyrank.graph.dedup import AliasIndex
from historyrank.graph.store import EntityStore
from historyrank.models import RankingContribution

logger = logging.getLogger(__name__)

# How many unmatched names to keep per file for reporting
UNMATCHED_SAMPLE_SIZE = 20


class RankingIngestor:
    """Attaches ranking contributions from source lists to resolved figures.

    Args:
        store: Target entity store.
        alias_index: Name resolver; built from the store when omitted.
        aggregator: Run once after ingest_batch().
    """

    def __init__(
        self,
        store: EntityStore,
        alias_index: AliasIndex | None = None,
        aggregator: ConsensusAggregator | None = None,
    ):
        self.store = store
        self.alias_index = alias_index or AliasIndex(store)
        self.aggregator = aggregator or ConsensusAggregator()

    def ingest_file(self, list_file: ListFile) -> dict:
        """Ingest one source list.

        Returns:
            Stats dict with matched, unmatched, skipped counts and a
            sample of unmatched names.

        Raises:
            ListParseError: If the file holds no parseable array.
        """
        parsed = parse_list_file(list_file.path)
        stats = {
            "matched": 0,
            "unmatched": 0,
            "skipped": parsed.skipped_records,
            "unmatched_names": [],
        }

        for entry in parsed.entries:
            entity_id = self.alias_index.resolve(entry.name)
            if entity_id is None:
                stats["unmatched"] += 1
                if len(stats["unmatched_names"]) < UNMATCHED_SAMPLE_SIZE:
                    stats["unmatched_names"].append(f"{entry.rank:g}. {entry.name}")
                continue

            added = self.store.add_contribution(
                RankingContribution(
                    entity_id=entity_id,
                    source=list_file.source,
                    sample_id=list_file.sample_id,
                    rank=entry.rank,
                    raw_name=entry.name,
                )
            )
            if added:
                stats["matched"] += 1
            else:
                stats["unmatched"] += 1

        logger.info(
            f"Ingested {list_file.source} {list_file.sample_id}: "
            f"{stats['matched']} matched, {stats['unmatched']} unmatched"
        )
        return stats

    def ingest_batch(self, list_files: list[ListFile]) -> dict:
        """Ingest many lists, then recompute consensus once.

        Returns:
            Summary dict with total, succeeded, failed, errors and
            aggregate matched/unmatched/skipped counts.
        """
        result = {
            "total": len(list_files),
            "succeeded": 0,
            "failed": 0,
            "errors": [],
            "matched": 0,
            "unmatched": 0,
            "skipped": 0,
            "unmatched_names": {},
        }

        for list_file in list_files:
            label = f"{list_file.source} {list_file.sample_id}"
            try:
                stats = self.ingest_file(list_file)
            except (ListParseError, OSError) as e:
                result["failed"] += 1
                result["errors"].append({"list": label, "error": str(e)})
                logger.error(f"Failed to ingest {label}: {e}")
                continue
            result["succeeded"] += 1
            result["matched"] += stats["matched"]
            result["unmatched"] += stats["unmatched"]
            result["skipped"] += stats["skipped"]
            if stats["unmatched_names"]:
                result["unmatched_names"][label] = stats["unmatched_names"]

        if result["matched"]:
            self.aggregator.recompute_all(self.store)

        logger.info(
            f"Batch complete: {result['succeeded']}/{result['total']} lists, "
            f"{result['matched']} matched, {result['unmatched']} unmatched"
        )
        return result
