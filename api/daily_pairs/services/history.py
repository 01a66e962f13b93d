from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Iterable

logger = logging.getLogger(__name__)


def build_exclusion_map(rows: Iterable[dict[str, Any]]) -> dict[str, frozenset[str]]:
    partners: dict[str, set[str]] = {}
    for row in rows:
        a = str(row.get("user_a") or "")
        b = str(row.get("user_b") or "")
        if not a or not b or a == b:
            continue
        partners.setdefault(a, set()).add(b)
        partners.setdefault(b, set()).add(a)
    return {uid: frozenset(ps) for uid, ps in partners.items()}


def fetch_history_exclusions(repo, cycle_date: date, lookback_days: int = 7) -> dict[str, frozenset[str]]:
    since = cycle_date - timedelta(days=lookback_days)
    rows = repo.list_pairings_between(since, cycle_date)
    exclusions = build_exclusion_map(rows)
    logger.info("[HISTORY] %s pairings since %s exclude %s users", len(rows), since, len(exclusions))
    return exclusions


def was_paired_recently(exclusions: dict[str, frozenset[str]], user_a: str, user_b: str) -> bool:
    return user_b in exclusions.get(user_a, frozenset())
