from typing import Optional


class FaceUnlockError(Exception):
    """Base class for errors raised by the liveness and matching engine."""


class InvalidObservation(FaceUnlockError, ValueError):
    """Landmarks or bounding box unusable for this frame; the frame is skipped."""


class DimensionMismatch(FaceUnlockError, ValueError):
    """Two feature vectors of different lengths were compared."""

    def __init__(self, len_a: int, len_b: int):
        super().__init__(f"feature vectors differ in length: {len_a} != {len_b}")
        self.len_a = len_a
        self.len_b = len_b


class NoTemplatesForIdentity(FaceUnlockError, LookupError):
    def __init__(self, identity_id: Optional[str]):
        who = identity_id if identity_id is not None else "<any identity>"
        super().__init__(f"no enrolled templates for {who}")
        self.identity_id = identity_id


class SessionAlreadyTerminal(FaceUnlockError, RuntimeError):
    def __init__(self, state: str):
        super().__init__(f"session already ended ({state})")
        self.state = state
