"""Entity store, alias index, duplicate merging and ranking ingestion."""
