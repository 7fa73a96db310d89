"""Alias index and name-to-figure resolution.

Resolves the many spellings a source may use for a figure to that
figure's canonical id before any ranking is attached. "Isaac Newton",
"Sir Isaac Newton" and "newton" all resolve to `isaac-newton`.

The index is built from an EntityStore (every live figure id, every
stored alias and every normalized canonical name) and kept in step with
merges and renames via apply_merge() and apply_rename(). alias_table
holds exactly the stored alias rows, so it follows the store's
insert-or-ignore rule.
"""

import json
import logging
from dataclasses import replace
from pathlib import Path

from historyrank.graph.store import EntityStore, loser_aliases, rename_aliases
from historyrank.models import Figure
from historyrank.names.normalize import (
    generate_slug,
    get_last_name,
    normalize_alias,
    normalize_name,
)

logger = logging.getLogger(__name__)


class AliasIndex:
    """Maps every known alias and figure id to its figure.

    Lookups go: exact slug -> strict alias key -> normalized canonical
    name -> unique last name (single-token names only).
    """

    def __init__(self, store: EntityStore | None = None):
        self.alias_table: dict[str, str] = {}
        self._ids: set[str] = set()
        self._by_name: dict[str, str] = {}
        self._by_last_name: dict[str, set[str]] = {}
        if store is not None:
            self.rebuild(store)

    def rebuild(self, store: EntityStore) -> None:
        """Reload the index from the store's figures and alias rows."""
        self.alias_table = {}
        self._ids = set()
        self._by_name = {}
        self._by_last_name = {}
        for figure in store.figures():
            self._index_figure(figure)
        self.alias_table = store.aliases()
        logger.info(f"Indexed {len(self._ids)} figures, {len(self.alias_table)} aliases")

    def _index_figure(self, figure: Figure) -> None:
        self._ids.add(figure.id)
        normalized = normalize_name(figure.canonical_name)
        if normalized:
            self._by_name.setdefault(normalized, figure.id)
            self._by_last_name.setdefault(get_last_name(normalized), set()).add(figure.id)

    def __len__(self) -> int:
        return len(self._ids.union(self.alias_table))

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._ids

    def resolve_id(self, key: str) -> str | None:
        """Follow alias hops from `key` until a live figure id is reached.

        Returns None if the chain ends at something that is not a live
        figure (or loops).
        """
        seen: set[str] = set()
        current = key
        while current not in self._ids:
            if current in seen or current not in self.alias_table:
                return None
            seen.add(current)
            current = self.alias_table[current]
        return current

    def resolve(self, name: str) -> str | None:
        """Resolve a raw name as written by a source to a figure id.

        Args:
            name: The name to resolve.

        Returns:
            The canonical figure id, or None if nothing matches.
        """
        slug = generate_slug(name)
        if slug in self._ids:
            return slug

        key = normalize_alias(name)
        if key and key in self.alias_table:
            resolved = self.resolve_id(key)
            if resolved:
                return resolved

        normalized = normalize_name(name)
        if normalized in self._by_name:
            return self._by_name[normalized]

        if normalized and " " not in normalized:
            matches = self._by_last_name.get(normalized, set())
            if len(matches) == 1:
                return next(iter(matches))

        return None

    def add_alias(self, alias: str, entity_id: str) -> bool:
        """Register an alias mapping (insert-or-ignore).

        Args:
            alias: The alternate name or id.
            entity_id: The figure id it maps to.
        """
        if not alias or alias in self.alias_table or entity_id not in self._ids:
            return False
        self.alias_table[alias] = entity_id
        return True

    def add_figure(self, figure: Figure) -> None:
        """Make a newly created figure resolvable."""
        self._index_figure(figure)

    def apply_merge(self, survivor_id: str, loser: Figure) -> None:
        """Mirror a store merge: re-point everything owned by `loser` to the survivor."""
        self._ids.discard(loser.id)
        for alias, entity_id in list(self.alias_table.items()):
            if entity_id == loser.id:
                self.alias_table[alias] = survivor_id
        for key in loser_aliases(loser):
            self.alias_table.setdefault(key, survivor_id)
        for name, entity_id in list(self._by_name.items()):
            if entity_id == loser.id:
                self._by_name[name] = survivor_id
        for ids in self._by_last_name.values():
            if loser.id in ids:
                ids.discard(loser.id)
                ids.add(survivor_id)

    def apply_rename(self, figure: Figure, new_name: str) -> None:
        """Mirror a store rename. `figure` is the record before the rename."""
        for key in rename_aliases(figure.canonical_name, new_name):
            self.alias_table.setdefault(key, figure.id)
        old = normalize_name(figure.canonical_name)
        if self._by_name.get(old) == figure.id:
            del self._by_name[old]
        self._by_last_name.get(get_last_name(old), set()).discard(figure.id)
        self._index_figure(replace(figure, canonical_name=new_name))


# ------------------------------------------------------------------ #
#  Curated alias seed file                                            #
# ------------------------------------------------------------------ #


def load_alias_seed(path: Path) -> list[tuple[str, str]]:
    """Load curated (alias, entity_id) pairs from a JSON file.

    The file holds a list of {"alias": ..., "entity_id": ...} objects.
    Malformed entries are skipped with a warning.
    """
    if not path.exists():
        logger.warning(f"Alias seed not found: {path}")
        return []
    data = json.loads(path.read_text())
    pairs = []
    for entry in data:
        alias = entry.get("alias") if isinstance(entry, dict) else None
        entity_id = entry.get("entity_id") if isinstance(entry, dict) else None
        if not isinstance(alias, str) or not isinstance(entity_id, str):
            logger.warning(f"Skipping malformed alias seed entry: {entry!r}")
            continue
        pairs.append((alias, entity_id))
    logger.info(f"Loaded {len(pairs)} seed aliases from {path}")
    return pairs


def seed_aliases(store: EntityStore, pairs: list[tuple[str, str]]) -> dict:
    """Insert curated aliases, normalized to strict alias keys.

    Aliases whose figure does not exist are skipped: an alias must
    always point at a live figure.

    Returns:
        Stats dict with inserted, existing, missing_entity and invalid counts.
    """
    stats = {"inserted": 0, "existing": 0, "missing_entity": 0, "invalid": 0}
    live = {f.id for f in store.figures()}
    for alias, entity_id in pairs:
        key = normalize_alias(alias)
        if not key:
            stats["invalid"] += 1
            continue
        if entity_id not in live:
            stats["missing_entity"] += 1
            logger.debug(f"Seed alias {alias!r} targets missing figure {entity_id!r}")
            continue
        if store.add_alias(key, entity_id):
            stats["inserted"] += 1
        else:
            stats["existing"] += 1
    logger.info(
        f"Seeded {stats['inserted']} aliases "
        f"({stats['existing']} existing, {stats['missing_entity']} missing figure)"
    )
    return stats
