import logging
import time
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class ActivityLogger:
    """
    Appends authentication activity to a text file.
    One line per event: enrollments, verification outcomes, data erasure.
    """
    def __init__(self, log_file_path: str = "data/auth_activity.txt"):
        self.log_file_path = Path(log_file_path)
        self.log_file_path.parent.mkdir(parents=True, exist_ok=True)

    def log_activity(self, identity_id: Optional[str], activity: str):
        """Log an activity with timestamp to the file."""
        timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
        who = identity_id if identity_id is not None else "<unknown>"
        log_entry = f"[{timestamp}] {who}: {activity}\n"

        try:
            with open(self.log_file_path, 'a', encoding='utf-8') as f:
                f.write(log_entry)
        except OSError as e:
            logger.warning("Error writing activity log %s: %s", self.log_file_path, e)

        logger.info("[Activity] %s: %s", who, activity)

    def log_enrollment(self, identity_id: str, n_templates: int, steps_timed_out: int = 0):
        msg = f"enrolled {n_templates} templates"
        if steps_timed_out:
            msg += f" ({steps_timed_out} steps timed out)"
        self.log_activity(identity_id, msg)

    def log_enrollment_abandoned(self, identity_id: str, discarded: int):
        self.log_activity(identity_id, f"enrollment abandoned, {discarded} samples discarded")

    def log_verification(self, identity_id: Optional[str], outcome: str, confidence: Optional[float] = None):
        if confidence is None:
            self.log_activity(identity_id, f"verification {outcome}")
        else:
            self.log_activity(identity_id, f"verification {outcome} (confidence {confidence:.4f})")

    def log_erasure(self, identity_id: str):
        self.log_activity(identity_id, "face data erased")
