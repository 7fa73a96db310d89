"""Neo4j schema creation and validation.

Creates the node key constraints that back figure identity and alias
uniqueness, plus the range indexes used by the resolution passes.

All operations use IF NOT EXISTS, so create_schema() can be run
repeatedly.
"""

import logging

from neo4j import GraphDatabase
from neo4j import Query

from historyrank.config import Config

logger = logging.getLogger(__name__)

# Node key constraints: (label, key_property)
# NODE KEY enforces existence + uniqueness.
NODE_KEY_CONSTRAINTS: list[tuple[str, str]] = [
    ("Figure", "id"),
    ("Alias", "alias"),
    ("Candidate", "normalized_name"),
]

# Range indexes: (index_name, label, property)
RANGE_INDEXES: list[tuple[str, str, str]] = [
    ("figure_external_id", "Figure", "external_id"),
    ("figure_consensus_rank", "Figure", "consensus_rank"),
    ("ranking_source", "Ranking", "source"),
]


def _get_existing_constraints(driver) -> dict[str, dict]:
    """Get existing constraints keyed by name."""
    records, _, _ = driver.execute_query("SHOW CONSTRAINTS")
    return {r["name"]: dict(r) for r in records}


def _get_existing_indexes(driver) -> dict[str, dict]:
    """Get existing indexes keyed by name."""
    records, _, _ = driver.execute_query("SHOW INDEXES")
    return {r["name"]: dict(r) for r in records}


def _constraint_covered(existing: dict[str, dict], label: str, prop: str) -> bool:
    return any(
        c.get("labelsOrTypes") == [label] and c.get("properties") == [prop]
        for c in existing.values()
    )


def create_schema(config: Config) -> dict:
    """Create the figure/alias/candidate constraints and the range indexes.

    A constraint counts as existing when one with the same name, or any
    constraint on the same label and property, is already present.

    Args:
        config: Application configuration with Neo4j credentials.

    Returns:
        Dictionary with counts of created/existing constraints and indexes.
    """
    driver = GraphDatabase.driver(
        config.neo4j_uri,
        auth=(config.neo4j_user, config.neo4j_password),
    )
    stats = {
        "constraints_created": 0,
        "constraints_existing": 0,
        "indexes_created": 0,
        "indexes_existing": 0,
    }

    try:
        constraints = _get_existing_constraints(driver)
        for label, prop in NODE_KEY_CONSTRAINTS:
            name = f"{label}_constraint"
            if name in constraints or _constraint_covered(constraints, label, prop):
                stats["constraints_existing"] += 1
                continue
            driver.execute_query(Query(
                f"CREATE CONSTRAINT {name} IF NOT EXISTS "
                f"FOR (n:{label}) REQUIRE n.{prop} IS NODE KEY"
            ))
            stats["constraints_created"] += 1
            logger.debug(f"Created constraint {name} on {label}.{prop}")

        indexes = _get_existing_indexes(driver)
        for name, label, prop in RANGE_INDEXES:
            if name in indexes:
                stats["indexes_existing"] += 1
                continue
            driver.execute_query(Query(
                f"CREATE INDEX {name} IF NOT EXISTS FOR (n:{label}) ON (n.{prop})"
            ))
            stats["indexes_created"] += 1
            logger.debug(f"Created index {name} on {label}.{prop}")
    finally:
        driver.close()

    logger.info(
        f"Schema: {stats['constraints_created']} constraints and "
        f"{stats['indexes_created']} indexes created"
    )
    return stats


def verify_schema(config: Config) -> dict:
    """Verify that the Neo4j schema is correctly set up.

    Args:
        config: Application configuration with Neo4j credentials.

    Returns:
        Dictionary with constraint and index names, plus which of the
        expected ones are missing.
    """
    driver = GraphDatabase.driver(
        config.neo4j_uri,
        auth=(config.neo4j_user, config.neo4j_password),
    )

    try:
        constraints = _get_existing_constraints(driver)
        indexes = _get_existing_indexes(driver)

        covered = {
            (c["labelsOrTypes"][0], c["properties"][0])
            for c in constraints.values()
            if c.get("labelsOrTypes") and c.get("properties")
        }
        missing_constraints = [
            f"{label}.{prop}" for label, prop in NODE_KEY_CONSTRAINTS
            if (label, prop) not in covered
        ]
        missing_indexes = [name for name, _, _ in RANGE_INDEXES if name not in indexes]

        result = {
            "constraints": len(constraints),
            "constraint_names": sorted(constraints),
            "indexes": len(indexes),
            "index_names": sorted(indexes),
            "missing_constraints": missing_constraints,
            "missing_indexes": missing_indexes,
        }

        logger.info(
            f"Schema verified: {result['constraints']} constraints, "
            f"{result['indexes']} indexes, "
            f"{len(missing_constraints) + len(missing_indexes)} missing"
        )

        return result

    finally:
        driver.close()
