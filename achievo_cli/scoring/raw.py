import math

from achievo_cli.scoring.features import DiffFeatureSummary
from achievo_cli.scoring.util import clamp, round_half_up


class RawScorer:
    """
    Raw Semantic Score
    ──────────────────
    Maps a DiffFeatureSummary to 0..100 before any history is considered.

      complexity  code files, hunks, distinct languages (each capped)
      quality     test files, +bonus when docs were touched
      size        40 * (1 - e^(-changed/300)), diminishing returns
      risk        dependency manifests, security-sensitive paths, renames (<= 5)

    Many files with very few hunks looks like mechanical reformatting, so the
    sum is scaled by 0.85. Touching code and tests together earns +6.
    """

    def __init__(self):
        self.weights = {
            "code_file":     3.0,   # per file, capped at 20
            "hunk":          1.5,   # per hunk, capped at 15
            "language":      4.0,   # per distinct language, capped at 10
            "test_file":     4.0,   # per file, capped at 10
            "doc_bonus":     4.0,
            "size":         40.0,
            "dependency":    5.0,
            "security":      5.0,
            "rename":        1.0,   # per rename, at most 5 counted
            "code_and_test": 6.0,
        }
        self.caps = {"code_file": 20.0, "hunk": 15.0, "language": 10.0, "test_file": 10.0}
        self.size_scale = 300.0
        self.max_renames = 5
        self.cosmetic_min_files = 10
        self.cosmetic_max_hunks = 5
        self.cosmetic_factor = 0.85

    def _capped(self, key: str, count: int) -> float:
        return min(self.caps[key], self.weights[key] * count)

    def breakdown(self, feats: DiffFeatureSummary) -> dict:
        w = self.weights
        complexity = (
            self._capped("code_file", feats.code_files)
            + self._capped("hunk", feats.hunks)
            + self._capped("language", len(feats.languages))
        )
        quality = self._capped("test_file", feats.test_files) + (w["doc_bonus"] if feats.doc_files > 0 else 0.0)
        size = w["size"] * (1 - math.exp(-max(0, feats.total_changed) / self.size_scale))
        risk = (
            (w["dependency"] if feats.dependency_changes else 0.0)
            + (w["security"] if feats.has_security_sensitive else 0.0)
            + w["rename"] * min(self.max_renames, feats.rename_or_move)
        )
        return {"complexity": complexity, "quality": quality, "size": size, "risk": risk}

    def score(self, feats: DiffFeatureSummary) -> int:
        parts = self.breakdown(feats)
        total = sum(parts.values())

        if feats.files_total >= self.cosmetic_min_files and feats.hunks <= self.cosmetic_max_hunks:
            total *= self.cosmetic_factor

        if feats.code_files > 0 and feats.test_files > 0:
            total += self.weights["code_and_test"]

        return clamp(round_half_up(total), 0, 100)
