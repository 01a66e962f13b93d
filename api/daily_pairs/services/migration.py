"""Re-home users stranded in an incomplete pairing.

A pairing where exactly one participant has submitted content is split: the
submitter moves into a fresh pairing with a new partner and carries the
submitted content along untouched, and the old pairing is retired as
``migrated``. Pairings with no submissions, or with both, are left alone.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Iterable, Sequence

from ..errors import CollaboratorLookupFailure, PartnerNotFoundError
from .records import (
    ConversationChannel,
    Pairing,
    PairingRetirement,
    PairingUser,
    chat_id_for,
    is_blocked_between,
    new_pairing_id,
)
from .state_machine import status_for_slots

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    pairing: Pairing
    channel: ConversationChannel
    retirement: PairingRetirement
    submitter: PairingUser
    partner: PairingUser


@dataclass(frozen=True)
class MigrationOutcome:
    migrations: tuple[Migration, ...] = ()
    used_ids: frozenset[str] = frozenset()
    unresolved: tuple[str, ...] = ()


def split_submission(pairing: Pairing) -> tuple[str, str, str, datetime | None] | None:
    """Return ``(submitter, waiting_partner, content_ref, submitted_at)`` when exactly one slot is filled."""
    if pairing.user_a_submitted == pairing.user_b_submitted:
        return None
    if pairing.user_a_submitted:
        return pairing.user_a, pairing.user_b, pairing.user_a_content_ref, pairing.user_a_submitted_at
    return pairing.user_b, pairing.user_a, pairing.user_b_content_ref, pairing.user_b_submitted_at


def find_replacement(
    submitter: PairingUser,
    original_partner_id: str,
    pool: Sequence[PairingUser],
    used_ids: Iterable[str],
    pairing_id: str,
) -> PairingUser:
    used = set(used_ids)
    for candidate in pool:
        if candidate.id in used:
            continue
        if candidate.id in {submitter.id, original_partner_id}:
            continue
        if is_blocked_between(submitter, candidate):
            continue
        return candidate
    raise PartnerNotFoundError(pairing_id, submitter.id)


def migrate_incomplete_pairings(
    incomplete: Sequence[Pairing],
    pool: Sequence[PairingUser],
    busy_ids: Iterable[str],
    cycle_date: date,
    expires_at: datetime,
    now: datetime,
    meeting_link: Callable[[str], str],
    id_factory: Callable[[], str] = new_pairing_id,
) -> MigrationOutcome:
    """Plan migrations for ``incomplete`` pairings, in the order given.

    ``pool`` is the eligible-user list in directory order. ``busy_ids`` holds
    users who already own an active pairing for the day; they are never chosen
    as a replacement partner.
    """
    by_id = {u.id: u for u in pool}
    busy = frozenset(busy_ids)
    used: frozenset[str] = frozenset()
    migrations: list[Migration] = []
    unresolved: list[str] = []

    for old in incomplete:
        if not old.is_incomplete or old.migrated_from:
            continue
        split = split_submission(old)
        if split is None:
            continue
        submitter_id, partner_id, content_ref, submitted_at = split
        if submitter_id in used:
            continue

        try:
            submitter = by_id.get(submitter_id)
            if submitter is None:
                raise CollaboratorLookupFailure(submitter_id, "submitter is not an eligible user")
            candidates = [u for u in pool if u.id not in busy]
            partner = find_replacement(submitter, partner_id, candidates, used, old.id)
        except CollaboratorLookupFailure as exc:
            logger.warning("[MIGRATION] pairing %s skipped: %s", old.id, exc)
            unresolved.append(old.id)
            continue
        except PartnerNotFoundError as exc:
            logger.info("[MIGRATION] %s; leaving pairing as-is", exc)
            unresolved.append(old.id)
            continue

        new_id = id_factory()
        chat_id = chat_id_for(new_id)
        pairing = Pairing(
            id=new_id,
            cycle_date=cycle_date,
            expires_at=expires_at,
            user_a=submitter.id,
            user_b=partner.id,
            status=status_for_slots(True, False),
            user_a_content_ref=content_ref,
            user_a_submitted_at=submitted_at,
            chat_id=chat_id,
            virtual_meeting_link=meeting_link(new_id),
            migrated_from=old.id,
        )
        migrations.append(
            Migration(
                pairing=pairing,
                channel=ConversationChannel(id=chat_id, pairing_id=new_id, user_ids=pairing.users, created_at=now),
                retirement=PairingRetirement(pairing_id=old.id, migrated_to=new_id, retired_at=now),
                submitter=submitter,
                partner=partner,
            )
        )
        used = used | {submitter.id, partner.id}
        logger.info("[MIGRATION] moved %s from pairing %s to %s with %s", submitter.id, old.id, new_id, partner.id)

    return MigrationOutcome(migrations=tuple(migrations), used_ids=used, unresolved=tuple(unresolved))
