"""
Front door for embedders (camera tools, a UI, a service).

Holds at most one active session. Completed enrollments are written to the
template store, and every terminal outcome goes to the audit log.
"""

import logging
import time
from typing import Callable, Dict, List, Optional, Union

from .enroll import (
    EnrollConfig,
    EnrollmentAbandoned,
    EnrollmentComplete,
    EnrollmentSession,
)
from .recognize.logger import ActivityLogger
from .recognize.store import InMemoryTemplateStore, TemplateStore, all_templates
from .recognize.types import Observation, Template
from .unlock import (
    UnlockConfig,
    VerificationAccepted,
    VerificationCancelled,
    VerificationRejected,
    VerificationSession,
    VerificationTimedOut,
)

logger = logging.getLogger(__name__)

Session = Union[EnrollmentSession, VerificationSession]


class FaceUnlockEngine:
    def __init__(
        self,
        store: Optional[TemplateStore] = None,
        enroll_config: Optional[EnrollConfig] = None,
        unlock_config: Optional[UnlockConfig] = None,
        activity_logger: Optional[ActivityLogger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store if store is not None else InMemoryTemplateStore()
        self.enroll_config = enroll_config or EnrollConfig()
        self.unlock_config = unlock_config or UnlockConfig()
        self.activity_logger = activity_logger
        self.clock = clock

        self.session: Optional[Session] = None
        # completed enrollments the store could not take yet
        self.pending: Dict[str, List[Template]] = {}

    # -------------------------
    # Sessions
    # -------------------------

    def start_enrollment(self, identity_id: str) -> EnrollmentSession:
        self.cancel()
        session = EnrollmentSession(identity_id, config=self.enroll_config, clock=self.clock)
        self.session = session
        return session

    def start_verification(self, identity_id: Optional[str] = None) -> VerificationSession:
        """Raises NoTemplatesForIdentity when there is nothing to compare against."""
        self.cancel()
        if identity_id is None:
            templates = all_templates(self.store)
            for pending in self.pending.values():
                templates.extend(pending)
        else:
            templates = self.store.get_templates(identity_id) + self.pending.get(identity_id, [])

        session = VerificationSession(
            templates,
            identity_id=identity_id,
            config=self.unlock_config,
            clock=self.clock,
        )
        self.session = session
        return session

    @property
    def active(self) -> bool:
        return self.session is not None and not self.session.is_terminal

    def process_frame(self, obs: Observation) -> list:
        if self.session is None:
            return []
        return self._handle(self.session.process_frame(obs))

    def tick(self) -> list:
        if self.session is None:
            return []
        return self._handle(self.session.tick())

    def cancel(self) -> list:
        if self.session is None:
            return []
        events = self._handle(self.session.cancel())
        self.session = None
        return events

    def force_advance(self) -> list:
        if not isinstance(self.session, EnrollmentSession):
            return []
        return self._handle(self.session.force_advance())

    # -------------------------
    # Stored data
    # -------------------------

    def identities(self) -> List[str]:
        return sorted(set(self.store.identities()) | set(self.pending))

    def erase_identity(self, identity_id: str) -> bool:
        """
        Delete every template of one identity (store and pending).
        Returns False when the store could not be rewritten; stored templates
        are then left in place and the erase can be retried.
        """
        if self.session is not None and self.session.identity_id == identity_id:
            self.cancel()
        self.pending.pop(identity_id, None)
        try:
            self.store.delete_templates(identity_id)
        except OSError as e:
            logger.error("could not erase templates for %s: %s", identity_id, e)
            return False
        logger.info("erased templates for %s", identity_id)
        if self.activity_logger is not None:
            self.activity_logger.log_erasure(identity_id)
        return True

    def flush_pending(self) -> int:
        """Retry writing pending templates. Returns how many identities were written."""
        written = 0
        for identity_id in list(self.pending):
            if self._persist(identity_id, self.pending[identity_id]):
                del self.pending[identity_id]
                written += 1
        return written

    def _persist(self, identity_id: str, templates: List[Template]) -> bool:
        try:
            self.store.put_templates(identity_id, templates)
        except OSError as e:
            logger.error("could not store %d templates for %s: %s", len(templates), identity_id, e)
            return False
        logger.info("stored %d templates for %s", len(templates), identity_id)
        return True

    # -------------------------
    # Events
    # -------------------------

    def _handle(self, events: list) -> list:
        for ev in events:
            if isinstance(ev, EnrollmentComplete):
                if not self._persist(ev.identity_id, ev.templates):
                    self.pending.setdefault(ev.identity_id, []).extend(ev.templates)
                if self.activity_logger is not None:
                    steps_timed_out = getattr(self.session, "steps_timed_out", 0)
                    self.activity_logger.log_enrollment(ev.identity_id, len(ev.templates), steps_timed_out)
            elif isinstance(ev, EnrollmentAbandoned):
                if self.activity_logger is not None:
                    self.activity_logger.log_enrollment_abandoned(ev.identity_id, ev.discarded)
            elif isinstance(ev, (VerificationAccepted, VerificationRejected)):
                outcome = "accepted" if isinstance(ev, VerificationAccepted) else "rejected"
                if self.activity_logger is not None:
                    self.activity_logger.log_verification(ev.identity_id, outcome, ev.confidence)
            elif isinstance(ev, (VerificationTimedOut, VerificationCancelled)):
                outcome = "timed_out" if isinstance(ev, VerificationTimedOut) else "cancelled"
                if self.activity_logger is not None:
                    self.activity_logger.log_verification(self.session.identity_id, outcome)
        return events
