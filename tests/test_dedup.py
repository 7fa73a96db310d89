"""Tests for alias resolution and curated alias seeding."""

import json

import pytest

from historyrank.graph.dedup import AliasIndex, load_alias_seed, seed_aliases
from historyrank.graph.store import InMemoryEntityStore
from historyrank.models import Figure


@pytest.fixture
def store():
    return InMemoryEntityStore(
        figures=[
            Figure(id="isaac-newton", canonical_name="Isaac Newton"),
            Figure(id="confucius", canonical_name="Confucius"),
            Figure(id="marie-curie", canonical_name="Marie Curie"),
            Figure(id="pierre-curie", canonical_name="Pierre Curie"),
            Figure(id="avicenna", canonical_name="Avicenna"),
        ],
        aliases={"kong fuzi": "confucius", "ibn sina": "avicenna"},
    )


@pytest.fixture
def index(store):
    return AliasIndex(store)


class TestAliasIndexResolve:
    """Tests for the AliasIndex lookup order."""

    def test_exact_slug(self, index):
        assert index.resolve("Isaac Newton") == "isaac-newton"

    def test_slug_after_normalization(self, index):
        assert index.resolve("Sir Isaac Newton") == "isaac-newton"

    def test_stored_alias(self, index):
        assert index.resolve("Kong Fuzi") == "confucius"
        assert index.resolve("Ibn  Sina") == "avicenna"

    def test_unique_last_name(self, index):
        assert index.resolve("Newton") == "isaac-newton"

    def test_ambiguous_last_name(self, index):
        assert index.resolve("Curie") is None

    def test_unknown_name(self, index):
        assert index.resolve("Unknown Person") is None

    def test_normalized_canonical_name(self):
        store = InMemoryEntityStore(
            figures=[Figure(id="q1001", canonical_name="Simón Bolívar")]
        )
        index = AliasIndex(store)
        assert index.resolve("simón  bolívar") == "q1001"


class TestAliasIndexState:
    """Tests for alias bookkeeping and merge mirroring."""

    def test_ids_map_to_themselves(self, index):
        assert index.resolve_id("confucius") == "confucius"
        assert "confucius" in index
        assert "kong fuzi" not in index
        assert len(index) == 7

    def test_add_alias_insert_or_ignore(self, index):
        assert index.add_alias("kongzi", "confucius") is True
        assert index.add_alias("kongzi", "avicenna") is False
        assert index.resolve("Kongzi") == "confucius"

    def test_resolve_id_detects_loops(self, index):
        index.alias_table["a"] = "b"
        index.alias_table["b"] = "a"
        assert index.resolve_id("a") is None

    def test_resolve_id_follows_hops(self, index):
        index.alias_table["old-id"] = "kong fuzi"
        assert index.resolve_id("old-id") == "confucius"

    def test_add_figure(self, index):
        index.add_figure(Figure(id="ada-lovelace", canonical_name="Ada Lovelace"))
        assert index.resolve("Lovelace") == "ada-lovelace"

    def test_apply_merge(self, store, index):
        loser = store.get("marie-curie")
        store.merge("pierre-curie", "marie-curie")
        index.apply_merge("pierre-curie", loser)

        assert "marie-curie" not in index
        assert index.resolve_id("marie-curie") == "pierre-curie"
        assert index.resolve("Marie Curie") == "pierre-curie"
        assert index.resolve("Curie") == "pierre-curie"

    def test_rebuild_matches_store_after_merge(self, store, index):
        store.merge("confucius", "avicenna")
        index.rebuild(store)
        assert index.resolve("Avicenna") == "confucius"
        assert index.resolve("Ibn Sina") == "confucius"

    def test_merge_keeps_existing_alias_targets(self):
        store = InMemoryEntityStore(
            figures=[
                Figure(id="plato", canonical_name="Plato"),
                Figure(id="platon", canonical_name="Platon"),
                Figure(id="other", canonical_name="Other Platon"),
            ],
            aliases={"platon": "other"},
        )
        index = AliasIndex(store)
        loser = store.get("platon")
        store.merge("plato", "platon")
        index.apply_merge("plato", loser)

        assert store.aliases()["platon"] == "other"
        assert index.alias_table == store.aliases()
        assert index.resolve_id("platon") == "other"
        assert index.resolve_id("platon") == AliasIndex(store).resolve_id("platon")

    def test_add_alias_needs_live_figure(self, index):
        assert index.add_alias("nobody", "ghost") is False
        assert "nobody" not in index.alias_table

    def test_apply_rename(self, store, index):
        figure = store.get("avicenna")
        store.rename("avicenna", "Ibn Sina (Avicenna)")
        index.apply_rename(figure, "Ibn Sina (Avicenna)")

        assert index.alias_table == store.aliases()
        assert index.resolve("Avicenna") == "avicenna"
        assert index.resolve("Ibn Sina") == "avicenna"


class TestAliasSeed:
    """Tests for load_alias_seed and seed_aliases."""

    def test_load_skips_malformed(self, tmp_path):
        path = tmp_path / "aliases.json"
        path.write_text(json.dumps([
            {"alias": "Kong Fuzi", "entity_id": "confucius"},
            {"alias": "missing id"},
            "not an object",
        ]))
        assert load_alias_seed(path) == [("Kong Fuzi", "confucius")]

    def test_load_missing_file(self, tmp_path):
        assert load_alias_seed(tmp_path / "nope.json") == []

    def test_seed_stats(self, store):
        stats = seed_aliases(store, [
            ("Kongzi", "confucius"),
            ("KONGZI", "confucius"),
            ("Nobody", "ghost"),
            ("!!!", "confucius"),
        ])
        assert stats == {"inserted": 1, "existing": 1, "missing_entity": 1, "invalid": 1}
        assert store.aliases()["kongzi"] == "confucius"
