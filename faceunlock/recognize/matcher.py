import logging
import numpy as np
from typing import List, Optional, Sequence, Tuple

from .errors import DimensionMismatch
from .types import MatchResult, Template

logger = logging.getLogger(__name__)

# Store comparator: a template set "matches" above this fused score
DEFAULT_MATCH_THRESHOLD = 0.75
# Live unlock additionally requires the best score to clear this
UNLOCK_CONFIDENCE_THRESHOLD = 0.7

# cosine, inverse-euclidean, pearson
SIMILARITY_WEIGHTS: Tuple[float, float, float] = (0.5, 0.3, 0.2)


def _as_vec(v) -> np.ndarray:
    return np.asarray(v, dtype=np.float64).reshape(-1)


def _check_dims(mat: np.ndarray, e: np.ndarray) -> None:
    if mat.shape[1] != e.shape[0]:
        raise DimensionMismatch(int(mat.shape[1]), int(e.shape[0]))


def _cosine_rows(mat: np.ndarray, e: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(mat, axis=1) * np.linalg.norm(e)
    dots = mat @ e
    out = np.zeros(mat.shape[0], dtype=np.float64)
    ok = norms > 0
    out[ok] = dots[ok] / norms[ok]
    return np.clip(out, 0.0, 1.0)


def _euclidean_rows(mat: np.ndarray, e: np.ndarray) -> np.ndarray:
    dist = np.linalg.norm(mat - e[None, :], axis=1)
    return 1.0 / (1.0 + dist)


def _pearson_rows(mat: np.ndarray, e: np.ndarray) -> np.ndarray:
    mc = mat - mat.mean(axis=1, keepdims=True)
    ec = e - e.mean()
    denom = np.sqrt(np.sum(mc * mc, axis=1) * float(np.sum(ec * ec)))
    num = mc @ ec
    out = np.zeros(mat.shape[0], dtype=np.float64)
    ok = denom > 0
    out[ok] = (num[ok] / denom[ok] + 1.0) / 2.0
    return np.clip(out, 0.0, 1.0)


def fused_scores(mat: np.ndarray, e: np.ndarray,
                 weights: Tuple[float, float, float] = SIMILARITY_WEIGHTS) -> np.ndarray:
    """Fused similarity of every row of mat (K,D) against e (D,). Returns (K,)."""
    _check_dims(mat, e)
    w_cos, w_euc, w_pear = weights
    return (
        w_cos * _cosine_rows(mat, e)
        + w_euc * _euclidean_rows(mat, e)
        + w_pear * _pearson_rows(mat, e)
    )


def _pair(a, b) -> Tuple[np.ndarray, np.ndarray]:
    a = _as_vec(a)
    b = _as_vec(b)
    if a.shape[0] != b.shape[0]:
        raise DimensionMismatch(int(a.shape[0]), int(b.shape[0]))
    return a[None, :], b


def cosine_similarity(a, b) -> float:
    mat, e = _pair(a, b)
    return float(_cosine_rows(mat, e)[0])


def euclidean_similarity(a, b) -> float:
    mat, e = _pair(a, b)
    return float(_euclidean_rows(mat, e)[0])


def pearson_similarity(a, b) -> float:
    mat, e = _pair(a, b)
    return float(_pearson_rows(mat, e)[0])


def similarity(a, b, weights: Tuple[float, float, float] = SIMILARITY_WEIGHTS) -> float:
    """0.5*cosine + 0.3*inverse-euclidean + 0.2*pearson, in [0, 1]."""
    mat, e = _pair(a, b)
    return float(fused_scores(mat, e, weights)[0])


def is_match(score: float, threshold: float = DEFAULT_MATCH_THRESHOLD) -> bool:
    return score > threshold


class TemplateMatcher:
    """
    Scores a live feature vector against every enrolled template.
    All templates are scored; the best one wins (first on ties).
    """
    def __init__(
        self,
        templates: Sequence[Template],
        match_threshold: float = DEFAULT_MATCH_THRESHOLD,
        weights: Tuple[float, float, float] = SIMILARITY_WEIGHTS,
    ):
        self.match_threshold = float(match_threshold)
        self.weights = weights
        self._templates: List[Template] = []
        self._mat: Optional[np.ndarray] = None
        self.reload(templates)

    def reload(self, templates: Sequence[Template]) -> None:
        templates = list(templates)
        vecs = [_as_vec(t.features) for t in templates]
        for v in vecs[1:]:
            if v.shape[0] != vecs[0].shape[0]:
                raise DimensionMismatch(int(vecs[0].shape[0]), int(v.shape[0]))
        self._templates = templates
        # (K,D)
        self._mat = np.stack(vecs, axis=0) if vecs else None

    def __len__(self) -> int:
        return len(self._templates)

    @property
    def templates(self) -> List[Template]:
        return list(self._templates)

    def match(self, features) -> MatchResult:
        if self._mat is None:
            return MatchResult(identity_id=None, confidence=0.0, is_match=False)

        e = _as_vec(features)
        try:
            scores = fused_scores(self._mat, e, self.weights)
        except DimensionMismatch:
            logger.error("live vector has %d values, templates have %d", e.shape[0], self._mat.shape[1])
            raise

        best_i = int(np.argmax(scores))
        best = float(scores[best_i])
        ok = is_match(best, self.match_threshold)
        return MatchResult(
            identity_id=self._templates[best_i].identity_id,
            confidence=best,
            is_match=bool(ok),
            template_index=best_i,
            templates_compared=int(scores.shape[0]),
            scores=scores,
        )
