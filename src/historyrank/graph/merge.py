"""Duplicate-figure detection and merging.

Two independent discovery strategies feed (survivor, loser) pairs into
EntityStore.merge():

  1. Strong-key grouping: figures sharing an external_id. The figure
     with the best importance rank (nulls last) survives.
  2. Curated merge table: an explicit, versioned survivor -> [losers]
     mapping for what strong keys cannot catch (transliterations,
     composite figures). Applied regardless of rank.

The curated table may also carry renames (figure id -> new canonical
name), applied after all merges. Each merge and rename is one atomic
store transaction. Missing survivors or losers are logged and skipped,
never fatal. After any merge the consensus values are recomputed for
the whole store.
"""

import json
import logging
from collections import defaultdict
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from historyrank.consensus import ConsensusAggregator
from historyrank.graph.dedup import AliasIndex
from historyrank.graph.store import EntityStore
from historyrank.models import Figure, MergeReport
from historyrank.names.fuzzy import DuplicateCandidate
from historyrank.names.normalize import normalize_alias

logger = logging.getLogger(__name__)


class MergeTable(BaseModel):
    """Curated survivor -> known-duplicate ids, as a versioned artifact."""

    version: str = "unversioned"
    merges: dict[str, list[str]] = Field(default_factory=dict)
    renames: dict[str, str] = Field(default_factory=dict)

    @field_validator("renames")
    @classmethod
    def _strip_renames(cls, renames: dict[str, str]) -> dict[str, str]:
        return {
            entity_id.strip(): name.strip()
            for entity_id, name in renames.items()
            if entity_id.strip() and name.strip()
        }

    @field_validator("merges")
    @classmethod
    def _strip_ids(cls, merges: dict[str, list[str]]) -> dict[str, list[str]]:
        cleaned: dict[str, list[str]] = {}
        for survivor, losers in merges.items():
            survivor = survivor.strip()
            ids = cleaned.setdefault(survivor, [])
            for loser in losers:
                loser = loser.strip()
                if loser and loser != survivor and loser not in ids:
                    ids.append(loser)
        return cleaned

    @classmethod
    def load(cls, path: Path) -> "MergeTable":
        """Load and validate a merge table from JSON."""
        table = cls.model_validate(json.loads(path.read_text()))
        logger.info(
            f"Loaded merge table {table.version} from {path}: "
            f"{len(table.merges)} survivors, {table.loser_count()} duplicates"
        )
        return table

    def save(self, path: Path) -> None:
        """Write the table as JSON, creating parent directories."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2) + "\n")
        logger.info(f"Wrote merge table {self.version} to {path}")

    def loser_count(self) -> int:
        return sum(len(losers) for losers in self.merges.values())


def survivor_sort_key(figure: Figure) -> tuple:
    """Best importance rank first (nulls last), then consensus rank, then id."""
    return (
        figure.importance_rank is None,
        figure.importance_rank if figure.importance_rank is not None else 0,
        figure.consensus_rank is None,
        figure.consensus_rank if figure.consensus_rank is not None else 0.0,
        figure.id,
    )


def find_strong_key_groups(figures: list[Figure]) -> dict[str, list[Figure]]:
    """Group figures by external_id, keeping only groups of 2+.

    Each group is sorted so that the survivor comes first.
    """
    groups: dict[str, list[Figure]] = defaultdict(list)
    for figure in figures:
        key = (figure.external_id or "").strip()
        if key:
            groups[key].append(figure)
    return {
        key: sorted(members, key=survivor_sort_key)
        for key, members in sorted(groups.items())
        if len(members) > 1
    }


def merge_table_from_pairs(pairs: list[DuplicateCandidate], version: str) -> MergeTable:
    """Turn the safe pairs of a duplicate scan into a curated merge table.

    survivor_sort_key() picks the survivor of each pair. A figure is
    listed as a loser at most once. When a recorded loser would survive a
    later pair, that pair's loser goes to the first survivor instead, so
    the table has no chains.
    """
    survivor_of: dict[str, str] = {}
    merges: dict[str, list[str]] = {}
    for pair in pairs:
        if not pair.safe:
            continue
        survivor, loser = sorted((pair.first, pair.second), key=survivor_sort_key)
        survivor_id = survivor_of.get(survivor.id, survivor.id)
        if loser.id in survivor_of or loser.id in merges or loser.id == survivor_id:
            continue
        survivor_of[loser.id] = survivor_id
        merges.setdefault(survivor_id, []).append(loser.id)
    return MergeTable(version=version, merges=merges)


class DuplicateResolver:
    """Detects same-person duplicates and merges them into one survivor.

    Args:
        merge_table: Curated merge rules (optional).
        aggregator: Runs after merges; defaults to a stock ConsensusAggregator.
        alias_index: Kept in step with every merge when provided.
    """

    def __init__(
        self,
        merge_table: MergeTable | None = None,
        aggregator: ConsensusAggregator | None = None,
        alias_index: AliasIndex | None = None,
    ):
        self.merge_table = merge_table or MergeTable()
        self.aggregator = aggregator or ConsensusAggregator()
        self.alias_index = alias_index

    def resolve_duplicates(self, store: EntityStore, dry_run: bool = False) -> MergeReport:
        """Run both discovery strategies and merge every pair found.

        Args:
            store: The entity store to operate on.
            dry_run: Detect and log only; no writes, no recomputation.

        Returns:
            MergeReport with counts and the (loser, survivor) pairs merged.
        """
        report = MergeReport(dry_run=dry_run)
        if dry_run:
            logger.info("DRY RUN - no changes will be made")

        groups = find_strong_key_groups(store.figures())
        report.strong_key_groups = len(groups)
        logger.info(f"Found {len(groups)} duplicate external ids")

        for key, members in groups.items():
            survivor, losers = members[0], members[1:]
            logger.info(
                f"{key}: keeping {survivor.canonical_name} ({survivor.id}, "
                f"rank {survivor.importance_rank or 'unranked'})"
            )
            for loser in losers:
                self._merge_pair(store, survivor.id, loser.id, report)

        self._apply_merge_table(store, report)
        self._apply_renames(store, report)

        if report.merged and not dry_run:
            self.aggregator.recompute_all(store)

        logger.info(
            f"Merge summary: {report.merged} merged, {report.deleted} deleted, "
            f"{report.contributions_moved} contributions moved, "
            f"{report.aliases_added} aliases added, {report.renamed} renamed, "
            f"{len(report.skipped)} skipped"
        )
        return report

    def _apply_merge_table(self, store: EntityStore, report: MergeReport) -> None:
        for survivor_id, loser_ids in self.merge_table.merges.items():
            report.curated_entries += 1
            survivor = self._live(store, survivor_id, report)
            if survivor is None:
                message = f"Curated survivor missing: {survivor_id}"
                logger.warning(message)
                report.skipped.append(message)
                continue

            if not report.dry_run:
                key = normalize_alias(survivor.canonical_name)
                if key and store.add_alias(key, survivor_id):
                    report.aliases_added += 1
                    if self.alias_index is not None:
                        self.alias_index.add_alias(key, survivor_id)

            for loser_id in loser_ids:
                self._merge_pair(store, survivor_id, loser_id, report)

    def _merge_pair(
        self, store: EntityStore, survivor_id: str, loser_id: str, report: MergeReport
    ) -> None:
        loser = self._live(store, loser_id, report)
        if loser is None:
            message = f"Duplicate already gone: {loser_id} (survivor {survivor_id})"
            logger.debug(message)
            report.skipped.append(message)
            return
        if self._live(store, survivor_id, report) is None:
            message = f"Survivor missing: {survivor_id} (duplicate {loser_id})"
            logger.warning(message)
            report.skipped.append(message)
            return

        contributions = len(store.contributions(loser_id))
        logger.info(
            f"  merging {loser.canonical_name} ({loser_id}, {contributions} rankings) "
            f"-> {survivor_id}"
        )

        if report.dry_run:
            report.merged += 1
            report.contributions_moved += contributions
            report.merges.append((loser_id, survivor_id))
            return

        outcome = store.merge(survivor_id, loser_id)
        if self.alias_index is not None:
            self.alias_index.apply_merge(survivor_id, loser)

        report.merged += 1
        report.deleted += 1
        report.contributions_moved += outcome.contributions_moved
        report.aliases_added += outcome.aliases_added
        report.merges.append((loser_id, survivor_id))
        if outcome.attributes_filled:
            logger.debug(f"  filled {', '.join(outcome.attributes_filled)} on {survivor_id}")

    def _apply_renames(self, store: EntityStore, report: MergeReport) -> None:
        for entity_id, new_name in self.merge_table.renames.items():
            figure = self._live(store, entity_id, report)
            if figure is None:
                message = f"Rename target missing: {entity_id}"
                logger.warning(message)
                report.skipped.append(message)
                continue

            logger.info(f"  renaming {figure.canonical_name} ({entity_id}) -> {new_name}")
            if not report.dry_run:
                report.aliases_added += store.rename(entity_id, new_name)
                if self.alias_index is not None:
                    self.alias_index.apply_rename(figure, new_name)
            report.renamed += 1

    @staticmethod
    def _live(store: EntityStore, entity_id: str, report: MergeReport) -> Figure | None:
        """The figure, or None if it is gone.

        A dry run deletes nothing, so ids it has already planned to merge
        away count as gone too.
        """
        if report.dry_run and any(loser_id == entity_id for loser_id, _ in report.merges):
            return None
        return store.get(entity_id)
