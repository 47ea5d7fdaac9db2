"""
evaluate.py
Threshold tuning / evaluation over the enrolled template DB.
Assumptions:
- Templates exist in data/db/face_templates.npz (as saved by enroll.py)
- At least two identities for impostor scores
Outputs:
- Prints summary stats for genuine/impostor fused similarity scores
- Suggests a match threshold based on a target FAR
Run:
python -m faceunlock.evaluate
"""

from __future__ import annotations
import argparse
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple
import numpy as np

from .recognize.matcher import DEFAULT_MATCH_THRESHOLD, fused_scores
from .recognize.store import load_templates_npz
from .recognize.types import Template

logger = logging.getLogger(__name__)


# -------------------------
# Config
# -------------------------

@dataclass
class EvalConfig:
    db_npz: Path = Path("data/db/face_templates.npz")
    min_templates_per_person: int = 5
    max_templates_per_person: int = 80  # cap for speed
    target_far: float = 0.01  # 1% FAR target
    thresholds: Tuple[float, float, float] = (0.50, 1.00, 0.01)  # start, end, step


# -------------------------
# Eval
# -------------------------

def _stack(templates: List[Template]) -> np.ndarray:
    return np.stack([np.asarray(t.features, dtype=np.float64).reshape(-1) for t in templates], axis=0)


def pairwise_scores(a: List[Template], b: List[Template], same: bool) -> List[float]:
    """Fused similarity of every pair; same=True takes each unordered pair of `a` once."""
    if not a or (not same and not b):
        return []
    scores: List[float] = []
    mat_b = _stack(a if same else b)
    for i, t in enumerate(a):
        row = fused_scores(mat_b, np.asarray(t.features, dtype=np.float64).reshape(-1))
        if same:
            scores.extend(float(s) for s in row[i + 1:])
        else:
            scores.extend(float(s) for s in row)
    return scores


def genuine_impostor(per_person: Dict[str, List[Template]]) -> Tuple[np.ndarray, np.ndarray]:
    names = sorted(per_person.keys())

    genuine_all: List[float] = []
    for name in names:
        genuine_all.extend(pairwise_scores(per_person[name], per_person[name], same=True))

    impostor_all: List[float] = []
    for i in range(len(names)):
        for j in range(i + 1, len(names)):
            impostor_all.extend(pairwise_scores(per_person[names[i]], per_person[names[j]], same=False))

    return np.array(genuine_all, dtype=np.float64), np.array(impostor_all, dtype=np.float64)


def sweep_thresholds(genuine: np.ndarray, impostor: np.ndarray, cfg: EvalConfig):
    t0, t1, step = cfg.thresholds
    thresholds = np.arange(t0, t1 + 1e-9, step, dtype=np.float64)

    # FAR: impostor accepted => score > thr | FRR: genuine rejected => score <= thr
    results = []
    for thr in thresholds:
        far = float(np.mean(impostor > thr)) if impostor.size else 0.0
        frr = float(np.mean(genuine <= thr)) if genuine.size else 0.0
        results.append((float(thr), far, frr))
    return results


def suggest_threshold(results, target_far: float) -> Optional[Tuple[float, float, float]]:
    """Threshold with FAR <= target and minimal FRR (lowest such threshold on ties)."""
    best = None
    for thr, far, frr in results:
        if far <= target_far:
            if best is None or frr < best[2]:
                best = (thr, far, frr)
    return best


def describe(arr: np.ndarray) -> str:
    if arr.size == 0:
        return "n=0"

    return (
        f"n={arr.size} mean={arr.mean():.3f} std={arr.std():.3f} "
        f"p05={np.percentile(arr, 5):.3f} p50={np.percentile(arr, 50):.3f} p95={np.percentile(arr, 95):.3f}"
    )


def load_per_person(cfg: EvalConfig) -> Dict[str, List[Template]]:
    if not cfg.db_npz.exists():
        raise FileNotFoundError(f"Template DB not found: {cfg.db_npz}. Run enroll.py first.")
    db = load_templates_npz(cfg.db_npz)

    per_person: Dict[str, List[Template]] = {}
    for name in sorted(db.keys()):
        templates = db[name][: cfg.max_templates_per_person]
        if len(templates) >= cfg.min_templates_per_person:
            per_person[name] = templates
        else:
            print(f"Skipping {name}: only {len(templates)} templates (need >={cfg.min_templates_per_person}).")
    return per_person


def main(argv=None):
    ap = argparse.ArgumentParser(description="Genuine/impostor threshold sweep over enrolled templates.")
    ap.add_argument("--db", type=Path, default=EvalConfig.db_npz)
    ap.add_argument("--target-far", type=float, default=EvalConfig.target_far)
    args = ap.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg = EvalConfig(db_npz=args.db, target_far=args.target_far)
    per_person = load_per_person(cfg)
    if len(per_person) < 1:
        print("Not enough data to evaluate. Enroll more samples.")
        return

    genuine, impostor = genuine_impostor(per_person)

    print("\n=== Score Distributions (fused similarity, 0.5 cos + 0.3 euc + 0.2 pearson) ===")
    print(f"Genuine (same person): {describe(genuine)}")
    print(f"Impostor (diff persons): {describe(impostor)}")

    results = sweep_thresholds(genuine, impostor, cfg)
    best = suggest_threshold(results, cfg.target_far)

    print("\n=== Threshold Sweep ===")
    stride = max(1, len(results) // 10)
    for thr, far, frr in results[::stride]:
        print(f"thr={thr:.2f} FAR={far*100:5.2f}% FRR={frr*100:5.2f}%")

    if best is not None:
        thr, far, frr = best
        print(f"\nSuggested threshold (target FAR {cfg.target_far*100:.1f}%): thr={thr:.2f} FAR={far*100:.2f}% FRR={frr*100:.2f}%")
        print(f"(current default match threshold: {DEFAULT_MATCH_THRESHOLD:.2f})")
    else:
        print(f"\nNo threshold in range met FAR <= {cfg.target_far*100:.1f}%. Try widening threshold sweep range or collecting more varied samples.")

    print()


if __name__ == "__main__":
    main()
