"""
Geometric face descriptor from the 6 detector landmarks.

Every feature is a ratio of pixel distances normalized by the face box, so the
vector does not change when the face moves closer to or further from the camera.
"""

from typing import Optional
import numpy as np

from .errors import InvalidObservation
from .types import (
    BoundingBox,
    Observation,
    FEATURE_DIM,
    NUM_LANDMARKS,
    IDX_RIGHT_EYE,
    IDX_LEFT_EYE,
    IDX_NOSE,
    IDX_MOUTH,
)

DEFAULT_EAR = 0.3


def _as_points(landmarks) -> np.ndarray:
    if landmarks is None:
        raise InvalidObservation("no landmarks")
    try:
        k = np.asarray(landmarks, dtype=np.float64).reshape(-1, 2)
    except (TypeError, ValueError) as e:
        raise InvalidObservation(f"landmarks are not (x, y) pairs: {e}") from e
    if k.shape[0] < NUM_LANDMARKS:
        raise InvalidObservation(f"need {NUM_LANDMARKS} landmarks, got {k.shape[0]}")
    if not np.all(np.isfinite(k[:NUM_LANDMARKS])):
        raise InvalidObservation("landmarks contain non-finite coordinates")
    return k


def extract_features(landmarks, bbox: Optional[BoundingBox]) -> np.ndarray:
    """Return the 12-value feature vector (read-only float64 array).

    Raises InvalidObservation for fewer than 6 landmarks or a box with
    non-positive width/height.
    """
    k = _as_points(landmarks)
    if bbox is None or not bbox.is_valid():
        raise InvalidObservation(f"bounding box has no area: {bbox}")

    right_eye = k[IDX_RIGHT_EYE]
    left_eye = k[IDX_LEFT_EYE]
    nose = k[IDX_NOSE]
    mouth = k[IDX_MOUTH]

    face_w = bbox.width
    face_h = bbox.height
    origin = np.asarray(bbox.top_left, dtype=np.float64)
    scale = np.array([face_w, face_h], dtype=np.float64)

    eye_dist = float(np.linalg.norm(right_eye - left_eye))
    eye_mid = (right_eye + left_eye) / 2.0
    eye_to_nose = float(np.linalg.norm(eye_mid - nose))
    nose_to_mouth = float(np.linalg.norm(nose - mouth))

    # positions of eyes/nose/mouth relative to the box, in box units
    rel = (np.stack([right_eye, left_eye, nose, mouth], axis=0) - origin) / scale

    feats = np.empty((FEATURE_DIM,), dtype=np.float64)
    feats[0] = eye_dist / face_w
    feats[1] = eye_to_nose / face_h
    feats[2] = nose_to_mouth / face_h
    feats[3] = face_w / face_h
    feats[4:] = rel.reshape(-1)
    feats.flags.writeable = False
    return feats


def extract_from_observation(obs: Observation) -> np.ndarray:
    if not obs.has_face:
        raise InvalidObservation("no face in observation")
    return extract_features(obs.landmarks, obs.bbox)


def eye_aspect_ratio(landmarks) -> float:
    """
    Eye openness proxy from the sparse 6-point set:
    mean eye-to-nose distance over the eye distance.
    Falls back to DEFAULT_EAR when the eyes coincide.
    This value never drops below 0.5, so it cannot show a blink; detectors
    with eyelid landmarks set Observation.ear from mesh_eye_aspect_ratio.
    """
    k = _as_points(landmarks)
    right_eye = k[IDX_RIGHT_EYE]
    left_eye = k[IDX_LEFT_EYE]
    nose = k[IDX_NOSE]

    eye_dist = float(np.linalg.norm(right_eye - left_eye))
    if eye_dist < 1e-9:
        return DEFAULT_EAR
    r = float(np.linalg.norm(right_eye - nose))
    l = float(np.linalg.norm(left_eye - nose))
    return (r + l) / (2.0 * eye_dist)


def observation_ear(obs: Observation) -> float:
    if obs.ear is not None:
        return float(obs.ear)
    return eye_aspect_ratio(obs.landmarks)


def mesh_eye_aspect_ratio(eye_pts) -> float:
    """
    EAR from 6 dense eye landmarks ordered [p1, p2, p3, p4, p5, p6]
    (outer corner, two upper lid points, inner corner, two lower lid points):

        EAR = (|p2 - p6| + |p3 - p5|) / (2 * |p1 - p4|)

    Open eyes sit around 0.25-0.35, a closed lid drops toward 0.
    """
    p = np.asarray(eye_pts, dtype=np.float64).reshape(-1, 2)
    if p.shape[0] != 6:
        raise InvalidObservation(f"expected 6 eye points, got {p.shape[0]}")
    horiz = float(np.linalg.norm(p[0] - p[3]))
    if horiz < 1e-9:
        return DEFAULT_EAR
    vert = float(np.linalg.norm(p[1] - p[5])) + float(np.linalg.norm(p[2] - p[4]))
    return vert / (2.0 * horiz)
