from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

PENDING = "pending"
PARTIAL_A = "partial_A"
PARTIAL_B = "partial_B"
COMPLETED = "completed"
MIGRATED = "migrated"
FLAKED = "flaked"

INCOMPLETE_STATUSES = (PENDING, PARTIAL_A, PARTIAL_B)
ACTIVE_STATUSES = (PENDING, PARTIAL_A, PARTIAL_B, COMPLETED)
ALL_STATUSES = (PENDING, PARTIAL_A, PARTIAL_B, COMPLETED, MIGRATED, FLAKED)


@dataclass(frozen=True)
class PairingUser:
    id: str
    blocked_ids: frozenset[str] = frozenset()
    flake_streak: int = 0
    last_active_at: datetime | None = None
    priority_next_pairing: bool = False
    waitlisted_at: datetime | None = None
    display_name: str | None = None


@dataclass(frozen=True)
class Pairing:
    id: str
    cycle_date: date
    expires_at: datetime
    user_a: str
    user_b: str
    status: str = PENDING
    user_a_content_ref: str | None = None
    user_b_content_ref: str | None = None
    user_a_submitted_at: datetime | None = None
    user_b_submitted_at: datetime | None = None
    chat_id: str | None = None
    virtual_meeting_link: str | None = None
    migrated_from: str | None = None
    migrated_to: str | None = None

    def __post_init__(self) -> None:
        if self.user_a == self.user_b:
            raise ValueError(f"pairing {self.id} has the same user in both slots")
        if self.status not in ALL_STATUSES:
            raise ValueError(f"unknown pairing status: {self.status}")

    @property
    def users(self) -> tuple[str, str]:
        return (self.user_a, self.user_b)

    @property
    def is_incomplete(self) -> bool:
        return self.status in INCOMPLETE_STATUSES

    @property
    def user_a_submitted(self) -> bool:
        return bool(self.user_a_content_ref)

    @property
    def user_b_submitted(self) -> bool:
        return bool(self.user_b_content_ref)


@dataclass(frozen=True)
class ConversationChannel:
    id: str
    pairing_id: str
    user_ids: tuple[str, str]
    created_at: datetime


@dataclass(frozen=True)
class PairingRetirement:
    pairing_id: str
    migrated_to: str
    retired_at: datetime


@dataclass(frozen=True)
class UserFlagUpdate:
    """Priority flag change for one user. ``waitlisted_at=None`` leaves the stored value alone."""

    user_id: str
    priority_next_pairing: bool
    waitlisted_at: datetime | None = None


@dataclass(frozen=True)
class CycleWrites:
    cycle_date: date
    created_at: datetime
    pairings: tuple[Pairing, ...] = ()
    channels: tuple[ConversationChannel, ...] = ()
    retirements: tuple[PairingRetirement, ...] = ()
    user_flags: tuple[UserFlagUpdate, ...] = ()


def is_blocked_between(u: PairingUser, v: PairingUser) -> bool:
    return v.id in u.blocked_ids or u.id in v.blocked_ids


def new_pairing_id() -> str:
    return str(uuid.uuid4())


def chat_id_for(pairing_id: str) -> str:
    return f"chat_{pairing_id}"


def cycle_expires_at(cycle_date: date, tz: str, expiry_hour: int) -> datetime:
    local = datetime.combine(cycle_date, time(hour=expiry_hour), tzinfo=ZoneInfo(tz))
    return local.astimezone(timezone.utc)


def local_cycle_date(now: datetime, tz: str) -> date:
    return now.astimezone(ZoneInfo(tz)).date()


def pairing_from_row(row: dict) -> Pairing:
    return Pairing(
        id=str(row["id"]),
        cycle_date=row["cycle_date"],
        expires_at=row["expires_at"],
        user_a=str(row["user_a"]),
        user_b=str(row["user_b"]),
        status=str(row.get("status") or PENDING),
        user_a_content_ref=row.get("user_a_content_ref"),
        user_b_content_ref=row.get("user_b_content_ref"),
        user_a_submitted_at=row.get("user_a_submitted_at"),
        user_b_submitted_at=row.get("user_b_submitted_at"),
        chat_id=row.get("chat_id"),
        virtual_meeting_link=row.get("virtual_meeting_link"),
        migrated_from=row.get("migrated_from"),
        migrated_to=row.get("migrated_to"),
    )
