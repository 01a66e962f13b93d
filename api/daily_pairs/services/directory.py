from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from ..errors import CollaboratorLookupFailure
from .records import PairingUser

logger = logging.getLogger(__name__)


def _as_datetime(value: Any, field_name: str, user_id: str) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise CollaboratorLookupFailure(user_id, f"{field_name} is not a timestamp")
    if not isinstance(value, datetime):
        raise CollaboratorLookupFailure(user_id, f"{field_name} is not a timestamp")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _as_id_set(value: Any, user_id: str) -> frozenset[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            raise CollaboratorLookupFailure(user_id, "blocked_ids is not valid JSON")
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise CollaboratorLookupFailure(user_id, "blocked_ids is not a list")
    return frozenset(str(v) for v in value if v)


def user_from_row(row: dict[str, Any]) -> PairingUser:
    user_id = str(row.get("id") or "").strip()
    if not user_id:
        raise CollaboratorLookupFailure(None, "missing id")
    try:
        flake_streak = int(row.get("flake_streak") or 0)
    except (TypeError, ValueError):
        raise CollaboratorLookupFailure(user_id, "flake_streak is not a number")
    return PairingUser(
        id=user_id,
        blocked_ids=_as_id_set(row.get("blocked_ids"), user_id),
        flake_streak=flake_streak,
        last_active_at=_as_datetime(row.get("last_active_at"), "last_active_at", user_id),
        priority_next_pairing=bool(row.get("priority_next_pairing")),
        waitlisted_at=_as_datetime(row.get("waitlisted_at"), "waitlisted_at", user_id),
        display_name=row.get("display_name"),
    )


def is_user_eligible(user: PairingUser, now: datetime, active_within_days: int, max_flake_streak: int) -> bool:
    if user.last_active_at is None:
        return False
    if user.last_active_at <= now - timedelta(days=active_within_days):
        return False
    return user.flake_streak < max_flake_streak


def fetch_eligible_users(repo, now: datetime, active_within_days: int = 3, max_flake_streak: int = 5) -> list[PairingUser]:
    eligible: list[PairingUser] = []
    skipped = 0
    for row in repo.list_active_users():
        try:
            user = user_from_row(row)
        except CollaboratorLookupFailure as exc:
            skipped += 1
            logger.warning("[DIRECTORY] skipping user: %s", exc)
            continue
        if is_user_eligible(user, now, active_within_days, max_flake_streak):
            eligible.append(user)

    logger.info("[DIRECTORY] %s eligible users (%s unresolvable rows skipped)", len(eligible), skipped)
    return eligible
