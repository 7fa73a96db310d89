"""Tests for candidate building and promotion."""

import json

import pytest

from historyrank.candidates.lists import ListFile
from historyrank.candidates.promoter import (
    CandidatePromoter,
    PromotionThresholds,
    build_candidates,
)
from historyrank.config import Config
from historyrank.graph.merge import DuplicateResolver, MergeTable
from historyrank.graph.store import InMemoryEntityStore
from historyrank.models import Candidate, Figure


def _write_list(directory, filename, source, sample_id, entries):
    path = directory / filename
    path.write_text(json.dumps([{"rank": r, "name": n} for r, n in entries]))
    return ListFile(path=path, source=source, sample_id=sample_id)


class TestCandidate:
    """Tests for Candidate.add_mention."""

    def test_running_average(self):
        candidate = Candidate("ada lovelace", "Ada Lovelace")
        candidate.add_mention("a", 100)
        candidate.add_mention("b", 200)
        candidate.add_mention("a", 300)
        assert candidate.mention_count == 3
        assert candidate.avg_rank == pytest.approx(200.0)
        assert candidate.sources == {"a", "b"}


class TestBuildCandidates:
    """Tests for build_candidates."""

    def test_mentions_folded_by_normalized_name(self, tmp_path):
        files = [
            _write_list(tmp_path, "GPT-4O LIST 1 (x).txt", "gpt-4o", "list-1",
                        [(1, "Isaac Newton"), (100, "Ada Lovelace")]),
            _write_list(tmp_path, "CLAUDE LIST 1 (x).txt", "claude", "list-1",
                        [(2, "Sir Isaac Newton"), (200, "Ada Lovelace")]),
        ]
        result = build_candidates(files)
        by_name = {c.normalized_name: c for c in result.candidates}

        assert set(by_name) == {"isaac newton", "ada lovelace"}
        newton = by_name["isaac newton"]
        assert newton.display_name == "Isaac Newton"
        assert newton.sources == {"gpt-4o", "claude"}
        assert newton.mention_count == 2
        assert newton.avg_rank == 1.5
        assert by_name["ada lovelace"].avg_rank == 150.0
        assert result.files_read == 2

    def test_broken_file_counted(self, tmp_path):
        good = _write_list(tmp_path, "GPT-4O LIST 1 (x).txt", "gpt-4o", "list-1", [(1, "Plato")])
        bad_path = tmp_path / "CLAUDE LIST 1 (x).txt"
        bad_path.write_text("I'd rather not.")
        bad = ListFile(path=bad_path, source="claude", sample_id="list-1")

        result = build_candidates([good, bad])
        assert result.files_read == 1
        assert result.files_failed == 1
        assert len(result.candidates) == 1

    def test_empty_normalized_name_skipped(self, tmp_path):
        files = [
            _write_list(tmp_path, "GPT-4O LIST 1 (x).txt", "gpt-4o", "list-1",
                        [(1, "(unknown)"), (2, "Plato")]),
        ]
        result = build_candidates(files)
        assert [c.normalized_name for c in result.candidates] == ["plato"]
        assert result.records_skipped == 1


class TestPromotionThresholds:
    """A candidate qualifies if it meets any threshold."""

    def test_sources(self):
        assert PromotionThresholds().qualifies(Candidate("x", "X", {"a", "b"}, 1, 900.0))

    def test_mentions(self):
        assert PromotionThresholds().qualifies(Candidate("x", "X", {"a"}, 2, 900.0))

    def test_rank(self):
        assert PromotionThresholds().qualifies(Candidate("x", "X", {"a"}, 1, 300.0))

    def test_none(self):
        assert not PromotionThresholds().qualifies(Candidate("x", "X", {"a"}, 1, 500.0))

    def test_from_config(self):
        config = Config(source_threshold=5, sample_threshold=6, rank_threshold=50.0)
        thresholds = PromotionThresholds.from_config(config)
        assert (thresholds.min_sources, thresholds.min_mentions, thresholds.max_avg_rank) == (5, 6, 50.0)


class TestCandidatePromoter:
    """Tests for CandidatePromoter.promote."""

    def test_qualifying_candidate_promoted(self):
        store = InMemoryEntityStore()
        candidates = [
            Candidate("ada lovelace", "Ada Lovelace", {"a", "b"}, 2, 150.0),
            Candidate("ada lovelace 2", "Ada Lovelace (mathematician)", {"a"}, 1, 500.0),
        ]
        promoted = CandidatePromoter(store).promote(candidates)

        assert promoted == 1
        figure = store.get("ada-lovelace")
        assert figure.canonical_name == "Ada Lovelace"
        assert figure.birth_year is None
        assert figure.domain is None
        assert figure.consensus_rank is None
        assert figure.created_at is not None
        assert len(store.figures()) == 1

    def test_taken_slug_skipped(self):
        store = InMemoryEntityStore(
            figures=[Figure(id="ada-lovelace", canonical_name="Augusta Ada King")]
        )
        candidates = [Candidate("ada lovelace", "Ada Lovelace", {"a", "b", "c"}, 3, 10.0)]
        assert CandidatePromoter(store).promote(candidates) == 0
        assert store.get("ada-lovelace").canonical_name == "Augusta Ada King"

    def test_same_slug_within_batch(self):
        store = InMemoryEntityStore()
        candidates = [
            Candidate("ada lovelace", "Ada Lovelace", {"a", "b"}, 2, 150.0),
            Candidate("ada  lovelace", "ADA LOVELACE", {"a", "b"}, 2, 160.0),
        ]
        assert CandidatePromoter(store).promote(candidates) == 1

    def test_empty_slug_skipped(self):
        store = InMemoryEntityStore()
        candidates = [Candidate("???", "???", {"a", "b"}, 2, 1.0)]
        assert CandidatePromoter(store).promote(candidates) == 0

    def test_reads_store_candidates_by_default(self):
        store = InMemoryEntityStore()
        store.replace_candidates([Candidate("plato", "Plato", {"a"}, 1, 10.0)])
        assert CandidatePromoter(store).promote() == 1
        assert store.get("plato") is not None

    def test_custom_thresholds(self):
        store = InMemoryEntityStore()
        candidates = [Candidate("plato", "Plato", {"a"}, 1, 10.0)]
        strict = PromotionThresholds(min_sources=3, min_mentions=3, max_avg_rank=5)
        assert CandidatePromoter(store).promote(candidates, strict) == 0

    def test_merged_away_id_not_recreated(self):
        store = InMemoryEntityStore(
            figures=[
                Figure(id="confucius", canonical_name="Confucius"),
                Figure(id="kong-fuzi", canonical_name="Kong Fuzi"),
            ]
        )
        table = MergeTable(merges={"confucius": ["kong-fuzi"]})
        DuplicateResolver(merge_table=table).resolve_duplicates(store)

        candidates = [Candidate("kong fuzi", "Kong Fuzi", {"a", "b"}, 2, 40.0)]
        assert CandidatePromoter(store).promote(candidates) == 0
        assert [f.id for f in store.figures()] == ["confucius"]
        assert store.aliases()["kong-fuzi"] == "confucius"

    def test_name_already_an_alias_skipped(self):
        store = InMemoryEntityStore(
            figures=[Figure(id="confucius", canonical_name="Confucius")],
            aliases={"master kong": "confucius"},
        )
        candidates = [Candidate("master kong", "Master Kong", {"a", "b"}, 2, 40.0)]
        assert CandidatePromoter(store).promote(candidates) == 0
        assert store.get("master-kong") is None
