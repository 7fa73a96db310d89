"""Integration tests for the Neo4j-backed EntityStore.

Require a running Neo4j instance; skipped otherwise. Every node created
here uses the "hrank-test-" id prefix and is removed afterwards.
"""

import pytest

from historyrank.config import Config
from historyrank.graph.store import MissingEntityError
from historyrank.models import Candidate, ConsensusResult, Figure, RankingContribution

PREFIX = "hrank-test-"


def _neo4j_available() -> bool:
    """Check if Neo4j is reachable."""
    from neo4j import GraphDatabase

    config = Config()
    try:
        driver = GraphDatabase.driver(
            config.neo4j_uri,
            auth=(config.neo4j_user, config.neo4j_password),
        )
        driver.verify_connectivity()
        driver.close()
        return True
    except Exception:
        return False


def _cleanup(store) -> None:
    store.driver.execute_query(
        "MATCH (f:Figure) WHERE f.id STARTS WITH $prefix "
        "OPTIONAL MATCH (f)<-[:RANKS|ALIAS_OF]-(n) "
        "DETACH DELETE f, n",
        prefix=PREFIX,
    )
    store.driver.execute_query(
        "MATCH (a:Alias) WHERE a.alias STARTS WITH $prefix DETACH DELETE a",
        prefix=PREFIX,
    )


@pytest.fixture
def store():
    """Neo4jEntityStore with two test figures, skip if Neo4j is unavailable."""
    if not _neo4j_available():
        pytest.skip("Neo4j not available")

    from historyrank.graph.neo4j_store import Neo4jEntityStore

    s = Neo4jEntityStore(Config())
    _cleanup(s)
    s.add_figure(Figure(id=f"{PREFIX}gandhi", canonical_name="Mahatma Gandhi",
                        external_id="Q9582", importance_rank=12, domain="Politics"))
    s.add_figure(Figure(id=f"{PREFIX}mohandas", canonical_name="Mohandas Gandhi",
                        external_id="Q9582", importance_rank=340, birth_year=1869))
    s.add_contribution(RankingContribution(f"{PREFIX}mohandas", "gpt-4o", 8, "list-1"))
    s.add_alias(f"{PREFIX}bapu", f"{PREFIX}mohandas")
    yield s
    _cleanup(s)
    s.close()


def test_add_figure_is_insert_or_ignore(store):
    assert store.add_figure(Figure(id=f"{PREFIX}gandhi", canonical_name="Other")) is False
    assert store.get(f"{PREFIX}gandhi").canonical_name == "Mahatma Gandhi"


def test_figure_round_trip_types(store):
    figure = store.get(f"{PREFIX}mohandas")
    assert figure.birth_year == 1869
    assert figure.domain is None
    assert figure.created_at.tzinfo is not None


def test_alias_insert_or_ignore(store):
    assert store.add_alias(f"{PREFIX}bapu", f"{PREFIX}gandhi") is False
    assert store.aliases()[f"{PREFIX}bapu"] == f"{PREFIX}mohandas"
    assert store.add_alias(f"{PREFIX}ghost", f"{PREFIX}nobody") is False


def test_merge(store):
    outcome = store.merge(f"{PREFIX}gandhi", f"{PREFIX}mohandas")

    assert store.get(f"{PREFIX}mohandas") is None
    survivor = store.get(f"{PREFIX}gandhi")
    assert survivor.birth_year == 1869
    assert survivor.domain == "Politics"
    assert len(store.contributions(f"{PREFIX}gandhi")) == 1
    aliases = store.aliases()
    assert aliases[f"{PREFIX}bapu"] == f"{PREFIX}gandhi"
    assert aliases[f"{PREFIX}mohandas"] == f"{PREFIX}gandhi"
    assert outcome.contributions_moved == 1
    assert outcome.aliases_moved == 1


def test_merge_missing_loser_changes_nothing(store):
    with pytest.raises(MissingEntityError):
        store.merge(f"{PREFIX}gandhi", f"{PREFIX}nobody")
    assert len(store.contributions(f"{PREFIX}mohandas")) == 1


def test_write_consensus_resets(store):
    store.write_consensus([ConsensusResult(f"{PREFIX}gandhi", 3.0, 0.1, 1)])
    store.write_consensus([ConsensusResult(f"{PREFIX}mohandas", 8.0, 0.0, 1)])
    assert store.get(f"{PREFIX}gandhi").consensus_rank is None
    assert store.get(f"{PREFIX}mohandas").consensus_rank == 8.0


def test_update_attributes(store):
    assert store.update_attributes(f"{PREFIX}gandhi", {"era": "Modern"})
    assert store.get(f"{PREFIX}gandhi").era == "Modern"
    assert store.update_attributes(f"{PREFIX}nobody", {"era": "Modern"}) is False


def test_candidates_replaced(store):
    original = store.candidates()
    try:
        store.replace_candidates([Candidate("ada lovelace", "Ada Lovelace", {"a", "b"}, 2, 150.0)])
        [candidate] = store.candidates()
        assert candidate.sources == {"a", "b"}
        assert candidate.avg_rank == 150.0
    finally:
        store.replace_candidates(original)


def test_rename(store):
    assert store.rename(f"{PREFIX}gandhi", "Hrank Test Bapu") >= 1
    assert store.get(f"{PREFIX}gandhi").canonical_name == "Hrank Test Bapu"
    assert store.aliases()["hrank test bapu"] == f"{PREFIX}gandhi"
    with pytest.raises(MissingEntityError):
        store.rename(f"{PREFIX}nobody", "Someone")
