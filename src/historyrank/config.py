"""Central configuration for the HistoryRank consensus engine."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load .env file from project root
load_dotenv()


class Config(BaseModel):
    """All configuration for the HistoryRank maintenance jobs.

    Paths are relative to the project root unless absolute.
    Neo4j credentials should be overridden via environment or .env file.
    """

    # Paths
    raw_dir: Path = Field(default=Path(os.getenv("HRANK_RAW_DIR", "data/raw")))
    merge_table_path: Path = Path("data/merge_table.json")
    alias_seed_path: Path = Path("data/alias_seed.json")

    # Neo4j
    neo4j_uri: str = Field(default=os.getenv("NEO4J_URI", "bolt://localhost:7687"))
    neo4j_user: str = Field(default=os.getenv("NEO4J_USER", "neo4j"))
    neo4j_password: str = Field(default=os.getenv("NEO4J_PASSWORD", "password"))

    # Consensus
    baseline_source: str = "pantheon"  # reference ranking, excluded from model consensus
    missing_source_penalty: float = 1001.0
    variance_cap: float = 1.0

    # Candidate promotion
    source_threshold: int = Field(default=int(os.getenv("LLM_SOURCE_THRESHOLD", "2")))
    sample_threshold: int = Field(default=int(os.getenv("LLM_SAMPLE_THRESHOLD", "2")))
    rank_threshold: float = Field(default=float(os.getenv("LLM_RANK_THRESHOLD", "300")))

    # Duplicate detection
    fuzzy_max_distance: int = 3
    duplicate_report_limit: int = 300
