from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Iterable

from ..config import PAIRING_TIMEZONE
from .records import FLAKED, INCOMPLETE_STATUSES, Pairing, local_cycle_date, pairing_from_row
from .state_machine import transition_status

logger = logging.getLogger(__name__)


def plan_flakes(pairings: Iterable[Pairing], now: datetime) -> tuple[list[str], dict[str, int]]:
    flaked_ids: list[str] = []
    flake_counts: dict[str, int] = {}
    for p in pairings:
        if transition_status(p.status, "flake", now, p.expires_at) != FLAKED:
            continue
        flaked_ids.append(p.id)
        flakers = []
        if not p.user_a_submitted:
            flakers.append(p.user_a)
        if not p.user_b_submitted:
            flakers.append(p.user_b)
        for uid in flakers:
            flake_counts[uid] = flake_counts.get(uid, 0) + 1
    return flaked_ids, flake_counts


def close_expired_pairings(repo, now: datetime | None = None, cycle_date: date | None = None) -> dict[str, int]:
    now = now or datetime.now(timezone.utc)
    cycle_date = cycle_date or local_cycle_date(now, PAIRING_TIMEZONE)

    pairings = [pairing_from_row(r) for r in repo.list_cycle_pairings(cycle_date, INCOMPLETE_STATUSES)]
    flaked_ids, flake_counts = plan_flakes(pairings, now)
    if flaked_ids:
        repo.commit_flakes(flaked_ids, flake_counts, now)

    logger.info("[FLAKES] cycle %s: flaked %s pairings, %s users penalised", cycle_date, len(flaked_ids), len(flake_counts))
    return {"flaked_pairings": len(flaked_ids), "users_updated": len(flake_counts)}
