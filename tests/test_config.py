"""Tests for configuration defaults."""

from pathlib import Path

from historyrank.config import Config


def test_consensus_defaults():
    config = Config()
    assert config.baseline_source == "pantheon"
    assert config.missing_source_penalty == 1001.0
    assert config.variance_cap == 1.0


def test_duplicate_scan_defaults():
    config = Config()
    assert config.fuzzy_max_distance == 3
    assert config.duplicate_report_limit == 300


def test_artifact_paths():
    config = Config()
    assert config.merge_table_path == Path("data/merge_table.json")
    assert config.alias_seed_path == Path("data/alias_seed.json")


def test_overrides():
    config = Config(neo4j_uri="bolt://graph:7687", rank_threshold=100.0)
    assert config.neo4j_uri == "bolt://graph:7687"
    assert config.rank_threshold == 100.0
