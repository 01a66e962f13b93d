from __future__ import annotations

from datetime import datetime
from typing import Iterable, Sequence

from .records import PairingUser, UserFlagUpdate


def waitlist_updates(waitlist: Sequence[PairingUser], now: datetime) -> list[UserFlagUpdate]:
    return [UserFlagUpdate(user_id=u.id, priority_next_pairing=True, waitlisted_at=now) for u in waitlist]


def priority_clear_updates(paired: Iterable[PairingUser]) -> list[UserFlagUpdate]:
    # The boost lasts one cycle: anyone who carried it and got a partner loses it.
    seen: set[str] = set()
    out: list[UserFlagUpdate] = []
    for u in paired:
        if not u.priority_next_pairing or u.id in seen:
            continue
        seen.add(u.id)
        out.append(UserFlagUpdate(user_id=u.id, priority_next_pairing=False))
    return out
