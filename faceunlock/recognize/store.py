import json
import logging
import os
import time
import numpy as np
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

from .types import Template, FEATURE_DIM

logger = logging.getLogger(__name__)


class TemplateStore(Protocol):
    """Key-value record store for enrolled templates, keyed by identity."""

    def put_templates(self, identity_id: str, templates: Sequence[Template]) -> None:
        ...

    def get_templates(self, identity_id: str) -> List[Template]:
        ...

    def delete_templates(self, identity_id: str) -> None:
        ...

    def identities(self) -> List[str]:
        ...


def _frozen(v: np.ndarray) -> np.ndarray:
    v = np.array(v, dtype=np.float64).reshape(-1)
    v.flags.writeable = False
    return v


def all_templates(store: TemplateStore) -> List[Template]:
    out: List[Template] = []
    for identity_id in store.identities():
        out.extend(store.get_templates(identity_id))
    return out


class InMemoryTemplateStore:
    def __init__(self):
        self._db: Dict[str, List[Template]] = {}

    def put_templates(self, identity_id: str, templates: Sequence[Template]) -> None:
        self._db.setdefault(identity_id, []).extend(templates)

    def get_templates(self, identity_id: str) -> List[Template]:
        return list(self._db.get(identity_id, []))

    def delete_templates(self, identity_id: str) -> None:
        self._db.pop(identity_id, None)

    def identities(self) -> List[str]:
        return sorted(self._db.keys())


class NpzTemplateStore:
    """
    File-backed store:
    - <db>.npz: per identity "<id>/features" (N,12), "<id>/steps" (N,), "<id>/created_at" (N,)
    - <db>.json: metadata (names, counts, updated_at)
    The whole DB is rewritten on every change.
    """
    def __init__(
        self,
        npz_path: Path = Path("data/db/face_templates.npz"),
        json_path: Optional[Path] = Path("data/db/face_templates.json"),
    ):
        self.npz_path = Path(npz_path)
        self.json_path = Path(json_path) if json_path is not None else None
        self._db: Dict[str, List[Template]] = {}
        self.reload_from_disk()

    def reload_from_disk(self) -> None:
        self._db = load_templates_npz(self.npz_path)
        logger.info("Loaded %d identities from %s", len(self._db), self.npz_path)

    def put_templates(self, identity_id: str, templates: Sequence[Template]) -> None:
        db = dict(self._db)
        db[identity_id] = db.get(identity_id, []) + list(templates)
        self._save_to_disk(db)
        self._db = db

    def get_templates(self, identity_id: str) -> List[Template]:
        return list(self._db.get(identity_id, []))

    def delete_templates(self, identity_id: str) -> None:
        if identity_id in self._db:
            db = dict(self._db)
            del db[identity_id]
            self._save_to_disk(db)
            self._db = db

    def identities(self) -> List[str]:
        return sorted(self._db.keys())

    def _save_to_disk(self, db: Dict[str, List[Template]]) -> None:
        """
        Both files are written to temporaries first and only swapped in once
        every write succeeded, so a failed save leaves the old DB readable.
        """
        self.npz_path.parent.mkdir(parents=True, exist_ok=True)
        staged = [(_stage(self.npz_path, lambda f: np.savez(f, **_npz_arrays(db))), self.npz_path)]
        try:
            if self.json_path is not None:
                meta = {
                    "updated_at": time.strftime("%Y-%m-%d %H:%M:%S"),
                    "feature_dim": FEATURE_DIM,
                    "names": sorted(db.keys()),
                    "templates_per_identity": {k: len(v) for k, v in sorted(db.items())},
                    "note": "Geometric landmark ratios. Matching uses fused cosine/euclidean/pearson similarity.",
                }
                self.json_path.parent.mkdir(parents=True, exist_ok=True)
                text = json.dumps(meta, indent=2).encode("utf-8")
                staged.append((_stage(self.json_path, lambda f: f.write(text)), self.json_path))
            for tmp, path in staged:
                os.replace(tmp, path)
        except OSError:
            for tmp, _ in staged:
                tmp.unlink(missing_ok=True)
            raise


def load_templates_npz(db_path: Path) -> Dict[str, List[Template]]:
    db_path = Path(db_path)
    if not db_path.exists():
        return {}
    out: Dict[str, List[Template]] = {}
    with np.load(str(db_path), allow_pickle=False) as data:
        ids = sorted({k.rpartition("/")[0] for k in data.files if k.endswith("/features")})
        for identity_id in ids:
            feats = np.asarray(data[f"{identity_id}/features"], dtype=np.float64).reshape(-1, FEATURE_DIM)
            steps = np.asarray(data[f"{identity_id}/steps"]).reshape(-1)
            created = np.asarray(data[f"{identity_id}/created_at"], dtype=np.float64).reshape(-1)
            out[identity_id] = [
                Template(
                    identity_id=identity_id,
                    pose_step=int(steps[i]),
                    features=_frozen(feats[i]),
                    created_at=float(created[i]),
                )
                for i in range(feats.shape[0])
            ]
    return out


def _stage(path: Path, write) -> Path:
    """Write through `write(f)` into "<path>.tmp" beside the target and return it."""
    tmp = path.with_name(path.name + ".tmp")
    try:
        with open(tmp, "wb") as f:
            write(f)
    except Exception:
        if tmp.is_file():
            tmp.unlink()
        raise
    return tmp


def _npz_arrays(db: Dict[str, List[Template]]) -> Dict[str, np.ndarray]:
    arrays: Dict[str, np.ndarray] = {}
    for identity_id, templates in db.items():
        if not templates:
            continue
        arrays[f"{identity_id}/features"] = np.stack(
            [np.asarray(t.features, dtype=np.float64).reshape(-1) for t in templates], axis=0
        )
        arrays[f"{identity_id}/steps"] = np.array([t.pose_step for t in templates], dtype=np.int32)
        arrays[f"{identity_id}/created_at"] = np.array([t.created_at for t in templates], dtype=np.float64)
    return arrays

