"""Raw source lists and the candidates aggregated from them."""

from historyrank.candidates.lists import (
    ListFile,
    ListParseError,
    detect_list_files,
    parse_list_file,
)
from historyrank.candidates.promoter import (
    CandidatePromoter,
    PromotionThresholds,
    build_candidates,
)

__all__ = [
    "CandidatePromoter",
    "ListFile",
    "ListParseError",
    "PromotionThresholds",
    "build_candidates",
    "detect_list_files",
    "parse_list_file",
]
