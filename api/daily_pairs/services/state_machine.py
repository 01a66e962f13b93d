from datetime import datetime

from .records import COMPLETED, FLAKED, INCOMPLETE_STATUSES, MIGRATED, PARTIAL_A, PARTIAL_B, PENDING


def transition_status(current: str, action: str, now: datetime, expires_at: datetime) -> str:
    if current not in INCOMPLETE_STATUSES:
        return current

    if action == "migrate":
        return MIGRATED

    if action == "flake":
        if now >= expires_at:
            return FLAKED
        return current

    return current


def status_for_slots(user_a_submitted: bool, user_b_submitted: bool) -> str:
    if user_a_submitted and user_b_submitted:
        return COMPLETED
    if user_a_submitted:
        return PARTIAL_A
    if user_b_submitted:
        return PARTIAL_B
    return PENDING
