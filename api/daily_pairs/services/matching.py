from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Iterable, Sequence

from .history import was_paired_recently
from .records import PairingUser, is_blocked_between

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchOutcome:
    pairs: tuple[tuple[PairingUser, PairingUser], ...] = ()
    waitlist: tuple[PairingUser, ...] = ()


def build_matcher_pool(eligible: Sequence[PairingUser], excluded_ids: Iterable[str]) -> list[PairingUser]:
    excluded = set(excluded_ids)
    return [u for u in eligible if u.id not in excluded]


def order_pool(pool: Sequence[PairingUser], rng: random.Random) -> list[PairingUser]:
    """Shuffle once, then float priority users to the front without disturbing shuffle order."""
    ordered = list(pool)
    rng.shuffle(ordered)
    return sorted(ordered, key=lambda u: not u.priority_next_pairing)


def can_pair(u: PairingUser, v: PairingUser, exclusions: dict[str, frozenset[str]]) -> bool:
    if u.id == v.id:
        return False
    if is_blocked_between(u, v):
        return False
    if was_paired_recently(exclusions, u.id, v.id) or was_paired_recently(exclusions, v.id, u.id):
        return False
    return True


def greedy_pairing(ordered: Sequence[PairingUser], exclusions: dict[str, frozenset[str]]) -> MatchOutcome:
    paired: set[str] = set()
    pairs: list[tuple[PairingUser, PairingUser]] = []
    waitlist: list[PairingUser] = []

    for i, u in enumerate(ordered):
        if u.id in paired:
            continue
        partner = None
        for v in ordered[i + 1:]:
            if v.id in paired:
                continue
            if can_pair(u, v, exclusions):
                partner = v
                break
        if partner is None:
            waitlist.append(u)
            continue
        pairs.append((u, partner))
        paired.add(u.id)
        paired.add(partner.id)

    return MatchOutcome(pairs=tuple(pairs), waitlist=tuple(waitlist))


def match_users(
    pool: Sequence[PairingUser],
    exclusions: dict[str, frozenset[str]],
    rng: random.Random,
) -> MatchOutcome:
    outcome = greedy_pairing(order_pool(pool, rng), exclusions)
    logger.info(
        "[MATCHER] pool=%s pairs=%s waitlisted=%s",
        len(pool),
        len(outcome.pairs),
        len(outcome.waitlist),
    )
    return outcome
