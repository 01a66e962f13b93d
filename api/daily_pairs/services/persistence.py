from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable

from .matching import MatchOutcome
from .migration import MigrationOutcome
from .records import ConversationChannel, CycleWrites, Pairing, chat_id_for, new_pairing_id
from .waitlist import priority_clear_updates, waitlist_updates

logger = logging.getLogger(__name__)


def build_cycle_writes(
    migration: MigrationOutcome,
    match: MatchOutcome,
    cycle_date: date,
    expires_at: datetime,
    now: datetime,
    meeting_link: Callable[[str], str],
    id_factory: Callable[[], str] = new_pairing_id,
) -> CycleWrites:
    pairings: list[Pairing] = [m.pairing for m in migration.migrations]
    channels: list[ConversationChannel] = [m.channel for m in migration.migrations]

    for user_a, user_b in match.pairs:
        pairing_id = id_factory()
        chat_id = chat_id_for(pairing_id)
        pairings.append(
            Pairing(
                id=pairing_id,
                cycle_date=cycle_date,
                expires_at=expires_at,
                user_a=user_a.id,
                user_b=user_b.id,
                chat_id=chat_id,
                virtual_meeting_link=meeting_link(pairing_id),
            )
        )
        channels.append(ConversationChannel(id=chat_id, pairing_id=pairing_id, user_ids=(user_a.id, user_b.id), created_at=now))

    paired_users = [u for m in migration.migrations for u in (m.submitter, m.partner)]
    paired_users += [u for pair in match.pairs for u in pair]

    return CycleWrites(
        cycle_date=cycle_date,
        created_at=now,
        pairings=tuple(pairings),
        channels=tuple(channels),
        retirements=tuple(m.retirement for m in migration.migrations),
        user_flags=tuple(waitlist_updates(match.waitlist, now) + priority_clear_updates(paired_users)),
    )


def commit_cycle_writes(repo, writes: CycleWrites) -> None:
    logger.info(
        "[PERSIST] committing cycle %s: pairings=%s channels=%s retirements=%s user_flags=%s",
        writes.cycle_date,
        len(writes.pairings),
        len(writes.channels),
        len(writes.retirements),
        len(writes.user_flags),
    )
    repo.commit_cycle(writes)
