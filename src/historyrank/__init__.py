"""HistoryRank consensus engine.

Resolves noisy, inconsistently spelled rankings of historical figures
from many independent sources into canonical figures with a consensus
rank and a disagreement score.
"""

__version__ = "0.1.0"
