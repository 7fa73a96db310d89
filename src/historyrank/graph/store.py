"""Entity store abstraction.

The store owns figure identity and is the only writer of the derived
consensus fields. Ranking contributions and aliases hang off a figure
and must never outlive it: a merge moves them to the survivor before
the loser is deleted.

Two implementations:
  - InMemoryEntityStore (this module) for tests and dry experiments.
  - Neo4jEntityStore (graph/neo4j_store.py) for the persistent graph.

Every mutating operation that touches more than one record (merge,
rename, write_consensus, replace_candidates) is atomic: it either fully applies
or leaves the store unchanged.
"""

import copy
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Iterator

from historyrank.models import (
    COALESCE_FIELDS,
    Candidate,
    ConsensusResult,
    Figure,
    MergeOutcome,
    RankingContribution,
    utcnow,
)
from historyrank.names.normalize import normalize_alias

logger = logging.getLogger(__name__)


class IntegrityError(RuntimeError):
    """A store invariant was broken (e.g. an alias pointing at a deleted figure).

    This is a programming error, never an expected runtime condition.
    """


class MissingEntityError(LookupError):
    """A merge referenced a figure that does not exist."""


def has_value(value: Any) -> bool:
    """True for non-null values; blank strings count as missing."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def coalesce_attributes(survivor: Figure, loser: Figure) -> dict[str, Any]:
    """Attributes the loser can fill in on the survivor.

    Only fields the survivor lacks are returned; the survivor's existing
    data is never overwritten.
    """
    updates = {}
    for name in COALESCE_FIELDS:
        if not has_value(getattr(survivor, name)) and has_value(getattr(loser, name)):
            updates[name] = getattr(loser, name)
    return updates


def loser_aliases(loser: Figure) -> list[str]:
    """Alias keys that must resolve to the survivor after `loser` is merged.

    The loser's strict-normalized name, so later lookups by the old
    spelling resolve, and its raw id, so stale external links resolve.
    """
    keys = []
    name_key = normalize_alias(loser.canonical_name)
    if name_key:
        keys.append(name_key)
    if loser.id not in keys:
        keys.append(loser.id)
    return keys


def rename_aliases(old_name: str, new_name: str) -> list[str]:
    """Alias keys recorded when a figure is renamed: old spelling, then new."""
    keys = []
    for name in (old_name, new_name):
        key = normalize_alias(name)
        if key and key not in keys:
            keys.append(key)
    return keys


class EntityStore(ABC):
    """Interface for the persisted figure table and its dependent records."""

    # -- figures -------------------------------------------------------

    @abstractmethod
    def get(self, entity_id: str) -> Figure | None:
        """Fetch one figure by id."""

    @abstractmethod
    def figures(self) -> list[Figure]:
        """All figures, in no particular order."""

    @abstractmethod
    def add_figure(self, figure: Figure) -> bool:
        """Insert a figure. Returns False (no-op) if the id is taken."""

    @abstractmethod
    def update_attributes(self, entity_id: str, attributes: dict[str, Any]) -> bool:
        """Write already-resolved attribute values onto an existing figure.

        Used by enrichment collaborators between core passes. Returns
        False if the figure does not exist.
        """

    # -- contributions -------------------------------------------------

    @abstractmethod
    def contributions(self, entity_id: str | None = None) -> list[RankingContribution]:
        """Contributions for one figure, or all of them."""

    @abstractmethod
    def add_contribution(self, contribution: RankingContribution) -> bool:
        """Attach a contribution. Returns False if the figure does not exist."""

    # -- aliases -------------------------------------------------------

    @abstractmethod
    def aliases(self) -> dict[str, str]:
        """Mapping of alias key -> owning figure id."""

    @abstractmethod
    def add_alias(self, alias: str, entity_id: str) -> bool:
        """Insert-or-ignore an alias.

        Returns False without raising when the alias already exists or
        the target figure does not.
        """

    # -- candidates ----------------------------------------------------

    @abstractmethod
    def candidates(self) -> list[Candidate]:
        """All provisional candidates."""

    @abstractmethod
    def replace_candidates(self, candidates: list[Candidate]) -> None:
        """Atomically replace the whole candidate table."""

    # -- core passes ---------------------------------------------------

    @abstractmethod
    def merge(self, survivor_id: str, loser_id: str) -> MergeOutcome:
        """Fold `loser_id` into `survivor_id` in one atomic transaction.

        Moves contributions, adds aliases for the loser's name and id,
        re-points the loser's aliases, coalesces null attributes, and
        deletes the loser.

        Raises:
            MissingEntityError: If either figure does not exist.
        """

    @abstractmethod
    def rename(self, entity_id: str, new_name: str) -> int:
        """Change a figure's canonical name in one atomic transaction.

        The strict-normalized old and new names are both inserted as
        aliases (insert-or-ignore), so either spelling keeps resolving.

        Returns:
            Number of aliases added.

        Raises:
            MissingEntityError: If the figure does not exist.
            ValueError: If `new_name` is blank.
        """

    @abstractmethod
    def write_consensus(self, results: list[ConsensusResult]) -> None:
        """Atomically reset every figure's consensus fields, then apply `results`."""

    def recompute_consensus(self, **kwargs) -> list[ConsensusResult]:
        """Run a full consensus recomputation against this store."""
        from historyrank.consensus import ConsensusAggregator

        return ConsensusAggregator(**kwargs).recompute_all(self)

    def verify_integrity(self) -> None:
        """Fail loudly if any alias or contribution references a missing figure.

        Raises:
            IntegrityError: Listing the first few dangling references.
        """
        live = {f.id for f in self.figures()}
        dangling = [
            f"alias {alias!r} -> {entity_id!r}"
            for alias, entity_id in self.aliases().items()
            if entity_id not in live
        ]
        dangling += [
            f"contribution {c.source}/{c.sample_id} -> {c.entity_id!r}"
            for c in self.contributions()
            if c.entity_id not in live
        ]
        if dangling:
            raise IntegrityError(
                f"{len(dangling)} dangling reference(s): " + "; ".join(dangling[:10])
            )

    def close(self) -> None:
        """Release any resources held by the store."""


class InMemoryEntityStore(EntityStore):
    """Dict-backed store. Transactions snapshot and restore on failure."""

    def __init__(
        self,
        figures: list[Figure] | None = None,
        contributions: list[RankingContribution] | None = None,
        aliases: dict[str, str] | None = None,
    ):
        self._figures: dict[str, Figure] = {}
        self._contributions: list[RankingContribution] = []
        self._aliases: dict[str, str] = {}
        self._candidates: dict[str, Candidate] = {}
        for figure in figures or []:
            self.add_figure(figure)
        for contribution in contributions or []:
            self.add_contribution(contribution)
        for alias, entity_id in (aliases or {}).items():
            self.add_alias(alias, entity_id)

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        snapshot = copy.deepcopy(
            (self._figures, self._contributions, self._aliases, self._candidates)
        )
        try:
            yield
        except BaseException:
            self._figures, self._contributions, self._aliases, self._candidates = snapshot
            raise

    # -- figures -------------------------------------------------------

    def get(self, entity_id: str) -> Figure | None:
        figure = self._figures.get(entity_id)
        return replace(figure) if figure else None

    def figures(self) -> list[Figure]:
        return [replace(f) for f in self._figures.values()]

    def add_figure(self, figure: Figure) -> bool:
        if not figure.id or figure.id in self._figures:
            return False
        self._figures[figure.id] = replace(figure)
        return True

    def update_attributes(self, entity_id: str, attributes: dict[str, Any]) -> bool:
        figure = self._figures.get(entity_id)
        if figure is None:
            return False
        for key in ("id", "consensus_rank", "variance_score"):
            if key in attributes:
                raise ValueError(f"{key} cannot be written through update_attributes")
        for key, value in attributes.items():
            setattr(figure, key, value)
        figure.updated_at = utcnow()
        return True

    # -- contributions -------------------------------------------------

    def contributions(self, entity_id: str | None = None) -> list[RankingContribution]:
        return [
            replace(c)
            for c in self._contributions
            if entity_id is None or c.entity_id == entity_id
        ]

    def add_contribution(self, contribution: RankingContribution) -> bool:
        if contribution.entity_id not in self._figures:
            return False
        self._contributions.append(replace(contribution))
        return True

    # -- aliases -------------------------------------------------------

    def aliases(self) -> dict[str, str]:
        return dict(self._aliases)

    def add_alias(self, alias: str, entity_id: str) -> bool:
        if not alias or alias in self._aliases or entity_id not in self._figures:
            return False
        self._aliases[alias] = entity_id
        return True

    # -- candidates ----------------------------------------------------

    def candidates(self) -> list[Candidate]:
        return [copy.deepcopy(c) for c in self._candidates.values()]

    def replace_candidates(self, candidates: list[Candidate]) -> None:
        with self._transaction():
            self._candidates = {c.normalized_name: copy.deepcopy(c) for c in candidates}

    # -- core passes ---------------------------------------------------

    def merge(self, survivor_id: str, loser_id: str) -> MergeOutcome:
        if survivor_id == loser_id:
            raise ValueError(f"Cannot merge {survivor_id!r} into itself")
        survivor = self._figures.get(survivor_id)
        loser = self._figures.get(loser_id)
        if survivor is None:
            raise MissingEntityError(f"Survivor not found: {survivor_id}")
        if loser is None:
            raise MissingEntityError(f"Loser not found: {loser_id}")

        outcome = MergeOutcome(survivor_id=survivor_id, loser_id=loser_id)
        with self._transaction():
            # 1. Move contributions
            for contribution in self._contributions:
                if contribution.entity_id == loser_id:
                    contribution.entity_id = survivor_id
                    outcome.contributions_moved += 1

            # 2. Aliases for the loser's old name and id
            for key in loser_aliases(loser):
                if self.add_alias(key, survivor_id):
                    outcome.aliases_added += 1

            # 3. Re-point aliases that referenced the loser, then drop leftovers
            for alias, entity_id in list(self._aliases.items()):
                if entity_id == loser_id:
                    self._aliases[alias] = survivor_id
                    outcome.aliases_moved += 1
            self._aliases = {a: e for a, e in self._aliases.items() if e != loser_id}

            # 4. Fill survivor nulls from the loser
            updates = coalesce_attributes(survivor, loser)
            for key, value in updates.items():
                setattr(survivor, key, value)
            outcome.attributes_filled = sorted(updates)
            survivor.updated_at = utcnow()

            # 5. Delete the loser
            del self._figures[loser_id]

        return outcome

    def rename(self, entity_id: str, new_name: str) -> int:
        new_name = new_name.strip()
        if not new_name:
            raise ValueError(f"Blank name for {entity_id!r}")
        figure = self._figures.get(entity_id)
        if figure is None:
            raise MissingEntityError(f"Figure not found: {entity_id}")

        added = 0
        with self._transaction():
            for key in rename_aliases(figure.canonical_name, new_name):
                if self.add_alias(key, entity_id):
                    added += 1
            figure.canonical_name = new_name
            figure.updated_at = utcnow()
        return added

    def write_consensus(self, results: list[ConsensusResult]) -> None:
        now = utcnow()
        with self._transaction():
            for figure in self._figures.values():
                figure.consensus_rank = None
                figure.variance_score = None
            for result in results:
                figure = self._figures.get(result.entity_id)
                if figure is None:
                    continue
                figure.consensus_rank = result.consensus_rank
                figure.variance_score = result.variance_score
                figure.updated_at = now
