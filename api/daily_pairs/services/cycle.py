"""Daily pairing cycle.

One run reads the user directory, today's pairings and the lookback history,
migrates stranded submitters, greedily pairs everyone else, and writes the
whole result in a single atomic commit. Each stage returns a new immutable
value; nothing is shared between stages except what is passed explicitly.
"""
from __future__ import annotations

import logging
import random
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable

from ..config import (
    ACTIVE_WITHIN_DAYS,
    LOOKBACK_DAYS,
    MAX_FLAKE_STREAK,
    PAIRING_EXPIRY_HOUR,
    PAIRING_SEED,
    PAIRING_TIMEZONE,
    VIRTUAL_MEETING_BASE_URL,
)
from ..errors import InsufficientPoolError, PersistenceError
from .directory import fetch_eligible_users
from .history import fetch_history_exclusions
from .matching import MatchOutcome, build_matcher_pool, match_users
from .migration import MigrationOutcome, migrate_incomplete_pairings
from .persistence import build_cycle_writes, commit_cycle_writes
from .records import (
    ACTIVE_STATUSES,
    CycleWrites,
    Pairing,
    cycle_expires_at,
    local_cycle_date,
    new_pairing_id,
    pairing_from_row,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CyclePlan:
    cycle_date: date
    eligible_count: int
    pool_size: int
    migration: MigrationOutcome
    match: MatchOutcome
    writes: CycleWrites


@dataclass
class CycleReport:
    success: bool
    cycle_date: str
    pairings_created: int = 0
    migrated_pairings: int = 0
    waitlisted_users: int = 0
    eligible_users: int = 0
    reason: str | None = None
    error: str | None = None
    details: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def make_rng(seed: int | None = PAIRING_SEED) -> random.Random:
    return random.Random(seed)


def meeting_link_for(pairing_id: str) -> str:
    return f"{VIRTUAL_MEETING_BASE_URL}{pairing_id}"


def fetch_cycle_pairings(repo, cycle_date: date) -> list[Pairing]:
    out: list[Pairing] = []
    for row in repo.list_cycle_pairings(cycle_date, ACTIVE_STATUSES):
        try:
            out.append(pairing_from_row(row))
        except (KeyError, ValueError) as exc:
            logger.warning("[PAIRING] skipping unreadable pairing row %s: %s", row.get("id"), exc)
    return out


def plan_pairing_cycle(
    repo,
    now: datetime,
    cycle_date: date,
    rng: random.Random,
    id_factory: Callable[[], str] = new_pairing_id,
    lookback_days: int = LOOKBACK_DAYS,
    active_within_days: int = ACTIVE_WITHIN_DAYS,
    max_flake_streak: int = MAX_FLAKE_STREAK,
) -> CyclePlan:
    eligible = fetch_eligible_users(repo, now, active_within_days=active_within_days, max_flake_streak=max_flake_streak)
    if len(eligible) < 2:
        raise InsufficientPoolError(len(eligible))

    today = fetch_cycle_pairings(repo, cycle_date)
    incomplete = [p for p in today if p.is_incomplete]
    busy_ids = frozenset(uid for p in today for uid in p.users)
    exclusions = fetch_history_exclusions(repo, cycle_date, lookback_days=lookback_days)
    logger.info(
        "[PAIRING] cycle %s: %s eligible, %s active pairings today (%s incomplete)",
        cycle_date,
        len(eligible),
        len(today),
        len(incomplete),
    )

    expires_at = cycle_expires_at(cycle_date, PAIRING_TIMEZONE, PAIRING_EXPIRY_HOUR)
    migration = migrate_incomplete_pairings(
        incomplete,
        eligible,
        busy_ids,
        cycle_date=cycle_date,
        expires_at=expires_at,
        now=now,
        meeting_link=meeting_link_for,
        id_factory=id_factory,
    )

    pool = build_matcher_pool(eligible, migration.used_ids | busy_ids)
    match = match_users(pool, exclusions, rng)

    writes = build_cycle_writes(
        migration,
        match,
        cycle_date=cycle_date,
        expires_at=expires_at,
        now=now,
        meeting_link=meeting_link_for,
        id_factory=id_factory,
    )
    return CyclePlan(
        cycle_date=cycle_date,
        eligible_count=len(eligible),
        pool_size=len(pool),
        migration=migration,
        match=match,
        writes=writes,
    )


def _details(plan: CyclePlan) -> list[dict[str, Any]]:
    migrated_ids = {m.pairing.id for m in plan.migration.migrations}
    return [
        {
            "id": p.id,
            "user_a": p.user_a,
            "user_b": p.user_b,
            "type": "migrated" if p.id in migrated_ids else "new",
        }
        for p in plan.writes.pairings
    ]


def run_pairing_cycle(
    repo,
    now: datetime | None = None,
    cycle_date: date | None = None,
    rng: random.Random | None = None,
    id_factory: Callable[[], str] = new_pairing_id,
) -> CycleReport:
    now = now or datetime.now(timezone.utc)
    cycle_date = cycle_date or local_cycle_date(now, PAIRING_TIMEZONE)
    rng = rng or make_rng()

    try:
        plan = plan_pairing_cycle(repo, now, cycle_date, rng, id_factory=id_factory)
        commit_cycle_writes(repo, plan.writes)
    except InsufficientPoolError as exc:
        logger.error("[PAIRING] cycle %s aborted: %s", cycle_date, exc)
        return CycleReport(
            success=False,
            cycle_date=str(cycle_date),
            eligible_users=exc.eligible_count,
            reason=str(exc),
            error=exc.code,
        )
    except PersistenceError as exc:
        logger.error("[PAIRING] cycle %s failed to persist: %s", cycle_date, exc)
        return CycleReport(success=False, cycle_date=str(cycle_date), reason=str(exc), error=exc.code)

    report = CycleReport(
        success=True,
        cycle_date=str(cycle_date),
        pairings_created=len(plan.match.pairs),
        migrated_pairings=len(plan.migration.migrations),
        waitlisted_users=len(plan.match.waitlist),
        eligible_users=plan.eligible_count,
        details=_details(plan),
    )
    logger.info(
        "[PAIRING] cycle %s committed: %s new, %s migrated, %s waitlisted",
        cycle_date,
        report.pairings_created,
        report.migrated_pairings,
        report.waitlisted_users,
    )
    return report
