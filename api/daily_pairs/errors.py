"""Failure modes of a pairing cycle.

Pool-level and persistence-level errors abort the cycle. Per-item errors
(a missing replacement partner, a user record that no longer resolves) are
caught where they happen, logged, and the cycle continues.
"""


class PairingCycleError(Exception):
    code = "pairing_cycle_error"


class InsufficientPoolError(PairingCycleError):
    code = "insufficient_pool"

    def __init__(self, eligible_count: int):
        self.eligible_count = eligible_count
        super().__init__(f"Not enough eligible users to pair (found {eligible_count}, need at least 2)")


class PartnerNotFoundError(PairingCycleError):
    code = "partner_not_found"

    def __init__(self, pairing_id: str, user_id: str):
        self.pairing_id = pairing_id
        self.user_id = user_id
        super().__init__(f"No replacement partner for user {user_id} in pairing {pairing_id}")


class CollaboratorLookupFailure(PairingCycleError):
    code = "collaborator_lookup_failure"

    def __init__(self, user_id: str | None, reason: str):
        self.user_id = user_id
        self.reason = reason
        super().__init__(f"User {user_id or '<unknown>'} could not be resolved: {reason}")


class PersistenceError(PairingCycleError):
    code = "persistence_error"
