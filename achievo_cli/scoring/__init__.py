from achievo_cli.scoring.features import DiffFeatureSummary, SymbolCounts, extract_diff_features
from achievo_cli.scoring.normalizer import NormalizedScore, normalize_local_score
from achievo_cli.scoring.progress import calc_progress_percent
from achievo_cli.scoring.ratchet import BaseUpdate, compute_base_update, compute_cumulative_base
from achievo_cli.scoring.raw import RawScorer

__all__ = [
    "DiffFeatureSummary",
    "SymbolCounts",
    "extract_diff_features",
    "NormalizedScore",
    "normalize_local_score",
    "calc_progress_percent",
    "BaseUpdate",
    "compute_base_update",
    "compute_cumulative_base",
    "RawScorer",
]
