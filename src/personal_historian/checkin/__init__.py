"""Check-ins.

Periodically nudges the user for a status update, timed by how long the
last reported activity was expected to take.
"""

from personal_historian.checkin.messages import FALLBACK_CHECKIN, generate_checkin_message
from personal_historian.checkin.scheduler import CheckinScheduler

__all__ = [
    "CheckinScheduler",
    "FALLBACK_CHECKIN",
    "generate_checkin_message",
]
