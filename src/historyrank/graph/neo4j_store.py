"""Neo4j-backed EntityStore.

Graph model:
    (:Figure {id, canonical_name, ..., consensus_rank, variance_score})
    (:Ranking {source, sample_id, rank, raw_name})-[:RANKS]->(:Figure)
    (:Alias {alias})-[:ALIAS_OF]->(:Figure)
    (:Candidate {normalized_name, display_name, sources, mention_count, avg_rank})

Every multi-step operation runs inside one session.execute_write() call,
so a merge either fully applies or rolls back.
"""

import logging
from dataclasses import asdict, fields
from typing import Any

from neo4j import GraphDatabase

from historyrank.config import Config
from historyrank.graph.store import (
    EntityStore,
    IntegrityError,
    MissingEntityError,
    coalesce_attributes,
    loser_aliases,
    rename_aliases,
)
from historyrank.models import (
    Candidate,
    ConsensusResult,
    Figure,
    MergeOutcome,
    RankingContribution,
    utcnow,
)

logger = logging.getLogger(__name__)

_FIGURE_FIELDS = {f.name for f in fields(Figure)}
_CANDIDATE_FIELDS = {f.name for f in fields(Candidate)}


def _native(value: Any) -> Any:
    """Convert neo4j temporal values back to Python datetimes."""
    to_native = getattr(value, "to_native", None)
    return to_native() if callable(to_native) else value


def _figure_from_props(props: dict) -> Figure:
    return Figure(**{k: _native(v) for k, v in props.items() if k in _FIGURE_FIELDS})


def _figure_props(figure: Figure) -> dict:
    return {k: v for k, v in asdict(figure).items() if v is not None}


def _candidate_from_props(props: dict) -> Candidate:
    data = {k: _native(v) for k, v in props.items() if k in _CANDIDATE_FIELDS}
    data["sources"] = set(data.get("sources") or [])
    return Candidate(**data)


def _candidate_props(candidate: Candidate) -> dict:
    return {
        "normalized_name": candidate.normalized_name,
        "display_name": candidate.display_name,
        "sources": sorted(candidate.sources),
        "mention_count": candidate.mention_count,
        "avg_rank": candidate.avg_rank,
        "created_at": candidate.created_at,
    }


class Neo4jEntityStore(EntityStore):
    """Persistent store on Neo4j."""

    def __init__(self, config: Config):
        self.config = config
        self.driver = GraphDatabase.driver(
            config.neo4j_uri,
            auth=(config.neo4j_user, config.neo4j_password),
        )

    def close(self) -> None:
        """Close the Neo4j driver connection."""
        self.driver.close()

    def verify_connectivity(self) -> None:
        """Raise if the database is unreachable or credentials are wrong."""
        self.driver.verify_connectivity()

    # ------------------------------------------------------------------ #
    #  Figures                                                            #
    # ------------------------------------------------------------------ #

    def get(self, entity_id: str) -> Figure | None:
        records, _, _ = self.driver.execute_query(
            "MATCH (f:Figure {id: $id}) RETURN f",
            id=entity_id,
        )
        return _figure_from_props(dict(records[0]["f"])) if records else None

    def figures(self) -> list[Figure]:
        records, _, _ = self.driver.execute_query("MATCH (f:Figure) RETURN f")
        return [_figure_from_props(dict(r["f"])) for r in records]

    def add_figure(self, figure: Figure) -> bool:
        if not figure.id:
            return False
        with self.driver.session() as session:
            return session.execute_write(self._create_figure, _figure_props(figure))

    def update_attributes(self, entity_id: str, attributes: dict[str, Any]) -> bool:
        for key in ("id", "consensus_rank", "variance_score"):
            if key in attributes:
                raise ValueError(f"{key} cannot be written through update_attributes")
        records, _, _ = self.driver.execute_query(
            "MATCH (f:Figure {id: $id}) "
            "SET f += $props, f.updated_at = $now "
            "RETURN count(f) AS updated",
            id=entity_id,
            props=attributes,
            now=utcnow(),
        )
        return records[0]["updated"] > 0

    # ------------------------------------------------------------------ #
    #  Contributions                                                      #
    # ------------------------------------------------------------------ #

    def contributions(self, entity_id: str | None = None) -> list[RankingContribution]:
        query = "MATCH (r:Ranking)-[:RANKS]->(f:Figure) "
        if entity_id is not None:
            query += "WHERE f.id = $id "
        query += (
            "RETURN f.id AS entity_id, r.source AS source, r.sample_id AS sample_id, "
            "r.rank AS rank, r.raw_name AS raw_name"
        )
        records, _, _ = self.driver.execute_query(query, id=entity_id)
        return [RankingContribution(**dict(r)) for r in records]

    def add_contribution(self, contribution: RankingContribution) -> bool:
        records, _, _ = self.driver.execute_query(
            "MATCH (f:Figure {id: $entity_id}) "
            "CREATE (r:Ranking {source: $source, sample_id: $sample_id, "
            "rank: $rank, raw_name: $raw_name})-[:RANKS]->(f) "
            "RETURN count(r) AS created",
            entity_id=contribution.entity_id,
            source=contribution.source,
            sample_id=contribution.sample_id,
            rank=contribution.rank,
            raw_name=contribution.raw_name,
        )
        return records[0]["created"] > 0

    # ------------------------------------------------------------------ #
    #  Aliases                                                            #
    # ------------------------------------------------------------------ #

    def aliases(self) -> dict[str, str]:
        records, _, _ = self.driver.execute_query(
            "MATCH (a:Alias)-[:ALIAS_OF]->(f:Figure) "
            "RETURN a.alias AS alias, f.id AS entity_id"
        )
        return {r["alias"]: r["entity_id"] for r in records}

    def add_alias(self, alias: str, entity_id: str) -> bool:
        if not alias:
            return False
        with self.driver.session() as session:
            return session.execute_write(self._insert_alias, alias, entity_id)

    # ------------------------------------------------------------------ #
    #  Candidates                                                         #
    # ------------------------------------------------------------------ #

    def candidates(self) -> list[Candidate]:
        records, _, _ = self.driver.execute_query("MATCH (c:Candidate) RETURN c")
        return [_candidate_from_props(dict(r["c"])) for r in records]

    def replace_candidates(self, candidates: list[Candidate]) -> None:
        rows = [_candidate_props(c) for c in candidates]
        with self.driver.session() as session:
            session.execute_write(self._replace_candidates, rows)
        logger.info(f"Stored {len(rows)} candidates")

    # ------------------------------------------------------------------ #
    #  Core passes                                                        #
    # ------------------------------------------------------------------ #

    def merge(self, survivor_id: str, loser_id: str) -> MergeOutcome:
        if survivor_id == loser_id:
            raise ValueError(f"Cannot merge {survivor_id!r} into itself")
        with self.driver.session() as session:
            return session.execute_write(self._merge_figures, survivor_id, loser_id)

    def rename(self, entity_id: str, new_name: str) -> int:
        new_name = new_name.strip()
        if not new_name:
            raise ValueError(f"Blank name for {entity_id!r}")
        with self.driver.session() as session:
            return session.execute_write(self._rename_figure, entity_id, new_name)

    def write_consensus(self, results: list[ConsensusResult]) -> None:
        rows = [
            {
                "entity_id": r.entity_id,
                "consensus_rank": r.consensus_rank,
                "variance_score": r.variance_score,
            }
            for r in results
        ]
        with self.driver.session() as session:
            session.execute_write(self._write_consensus, rows, utcnow())

    def verify_integrity(self) -> None:
        """Also catches alias and ranking nodes that lost their figure entirely."""
        super().verify_integrity()
        records, _, _ = self.driver.execute_query(
            "MATCH (a:Alias) WHERE NOT (a)-[:ALIAS_OF]->(:Figure) "
            "RETURN 'alias ' + a.alias AS ref "
            "UNION "
            "MATCH (r:Ranking) WHERE NOT (r)-[:RANKS]->(:Figure) "
            "RETURN 'ranking ' + r.source AS ref"
        )
        if records:
            refs = [r["ref"] for r in records]
            raise IntegrityError(
                f"{len(refs)} orphaned node(s): " + "; ".join(refs[:10])
            )

    # ------------------------------------------------------------------ #
    #  Static transaction functions (used with session.execute_write)     #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _create_figure(tx, props: dict) -> bool:
        record = tx.run(
            "OPTIONAL MATCH (existing:Figure {id: $id}) "
            "WITH existing WHERE existing IS NULL "
            "CREATE (f:Figure) SET f = $props "
            "RETURN count(f) AS created",
            id=props["id"],
            props=props,
        ).single()
        return bool(record and record["created"])

    @staticmethod
    def _insert_alias(tx, alias: str, entity_id: str) -> bool:
        record = tx.run(
            "MATCH (f:Figure {id: $entity_id}) "
            "OPTIONAL MATCH (existing:Alias {alias: $alias}) "
            "WITH f, existing WHERE existing IS NULL "
            "CREATE (a:Alias {alias: $alias})-[:ALIAS_OF]->(f) "
            "RETURN count(a) AS created",
            alias=alias,
            entity_id=entity_id,
        ).single()
        return bool(record and record["created"])

    @staticmethod
    def _replace_candidates(tx, rows: list[dict]) -> None:
        tx.run("MATCH (c:Candidate) DETACH DELETE c")
        tx.run(
            "UNWIND $rows AS row "
            "CREATE (c:Candidate) SET c = row",
            rows=rows,
        )

    @staticmethod
    def _fetch_figure(tx, entity_id: str) -> Figure | None:
        record = tx.run("MATCH (f:Figure {id: $id}) RETURN f", id=entity_id).single()
        return _figure_from_props(dict(record["f"])) if record else None

    @staticmethod
    def _merge_figures(tx, survivor_id: str, loser_id: str) -> MergeOutcome:
        survivor = Neo4jEntityStore._fetch_figure(tx, survivor_id)
        loser = Neo4jEntityStore._fetch_figure(tx, loser_id)
        if survivor is None:
            raise MissingEntityError(f"Survivor not found: {survivor_id}")
        if loser is None:
            raise MissingEntityError(f"Loser not found: {loser_id}")

        outcome = MergeOutcome(survivor_id=survivor_id, loser_id=loser_id)

        # 1. Move rankings
        outcome.contributions_moved = tx.run(
            "MATCH (r:Ranking)-[old:RANKS]->(:Figure {id: $loser_id}) "
            "MATCH (s:Figure {id: $survivor_id}) "
            "CREATE (r)-[:RANKS]->(s) "
            "DELETE old "
            "RETURN count(r) AS moved",
            loser_id=loser_id,
            survivor_id=survivor_id,
        ).single()["moved"]

        # 2. Aliases for the loser's old name and id
        for key in loser_aliases(loser):
            if Neo4jEntityStore._insert_alias(tx, key, survivor_id):
                outcome.aliases_added += 1

        # 3. Re-point the loser's aliases, then drop anything left behind
        outcome.aliases_moved = tx.run(
            "MATCH (a:Alias)-[old:ALIAS_OF]->(:Figure {id: $loser_id}) "
            "MATCH (s:Figure {id: $survivor_id}) "
            "CREATE (a)-[:ALIAS_OF]->(s) "
            "DELETE old "
            "RETURN count(a) AS moved",
            loser_id=loser_id,
            survivor_id=survivor_id,
        ).single()["moved"]
        tx.run(
            "MATCH (a:Alias)-[:ALIAS_OF]->(:Figure {id: $loser_id}) DETACH DELETE a",
            loser_id=loser_id,
        )

        # 4. Fill survivor nulls from the loser
        updates = coalesce_attributes(survivor, loser)
        tx.run(
            "MATCH (s:Figure {id: $survivor_id}) SET s += $updates, s.updated_at = $now",
            survivor_id=survivor_id,
            updates=updates,
            now=utcnow(),
        )
        outcome.attributes_filled = sorted(updates)

        # 5. Delete the loser
        tx.run("MATCH (l:Figure {id: $loser_id}) DETACH DELETE l", loser_id=loser_id)

        return outcome

    @staticmethod
    def _rename_figure(tx, entity_id: str, new_name: str) -> int:
        figure = Neo4jEntityStore._fetch_figure(tx, entity_id)
        if figure is None:
            raise MissingEntityError(f"Figure not found: {entity_id}")

        added = 0
        for key in rename_aliases(figure.canonical_name, new_name):
            if Neo4jEntityStore._insert_alias(tx, key, entity_id):
                added += 1
        tx.run(
            "MATCH (f:Figure {id: $id}) SET f.canonical_name = $name, f.updated_at = $now",
            id=entity_id,
            name=new_name,
            now=utcnow(),
        )
        return added

    @staticmethod
    def _write_consensus(tx, rows: list[dict], now) -> None:
        tx.run("MATCH (f:Figure) SET f.consensus_rank = null, f.variance_score = null")
        tx.run(
            "UNWIND $rows AS row "
            "MATCH (f:Figure {id: row.entity_id}) "
            "SET f.consensus_rank = row.consensus_rank, "
            "f.variance_score = row.variance_score, "
            "f.updated_at = $now",
            rows=rows,
            now=now,
        )
