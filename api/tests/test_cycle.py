import random
from datetime import date, datetime, timedelta, timezone

import pytest

from fakes import CYCLE, NOW, IdentityRandom, InMemoryPairingRepository, id_sequence, make_pairing, make_user
from daily_pairs.errors import InsufficientPoolError
from daily_pairs.services.cycle import plan_pairing_cycle, run_pairing_cycle
from daily_pairs.services.directory import fetch_eligible_users
from daily_pairs.services.matching import order_pool
from daily_pairs.services.records import is_blocked_between

SUBMITTED_AT = datetime(2026, 10, 19, 8, 15, tzinfo=timezone.utc)


def _run(repo, rng=None, cycle_date=CYCLE):
    return run_pairing_cycle(repo, now=NOW, cycle_date=cycle_date, rng=rng or random.Random(42), id_factory=id_sequence())


def _new_pairings(repo):
    return [p for p in repo.pairings.values() if p["cycle_date"] == CYCLE and p["status"] != "migrated"]


def test_scenario_four_users_two_pairings():
    repo = InMemoryPairingRepository(users=[make_user(x) for x in "abcd"])
    report = _run(repo)

    assert report.success is True
    assert report.pairings_created == 2
    assert report.waitlisted_users == 0
    assert report.migrated_pairings == 0
    assert len(repo.pairings) == 2
    assert len(repo.chat_rooms) == 2
    assert repo.commits == 1


def test_scenario_five_users_one_waitlisted():
    repo = InMemoryPairingRepository(users=[make_user(x) for x in "abcde"])
    report = _run(repo)

    assert report.pairings_created == 2
    assert report.waitlisted_users == 1
    flagged = [u for u in repo.users.values() if u["priority_next_pairing"]]
    assert len(flagged) == 1
    assert flagged[0]["waitlisted_at"] == NOW


def test_scenario_migration_rehomes_submitter():
    users = [make_user("e"), make_user("f"), make_user("g")]
    old = make_pairing(
        "old-ef",
        "e",
        "f",
        status="partial_A",
        user_a_content_ref="photos/e.jpg",
        user_a_submitted_at=SUBMITTED_AT,
    )
    repo = InMemoryPairingRepository(users=users, pairings=[old])
    report = _run(repo)

    assert report.success is True
    assert report.migrated_pairings == 1
    assert report.pairings_created == 0
    assert report.waitlisted_users == 0

    retired = repo.pairings["old-ef"]
    assert retired["status"] == "migrated"
    new = repo.pairings[retired["migrated_to"]]
    assert (new["user_a"], new["user_b"]) == ("e", "g")
    assert new["status"] == "partial_A"
    assert new["user_a_content_ref"] == "photos/e.jpg"
    assert new["user_a_submitted_at"] == SUBMITTED_AT
    assert new["migrated_from"] == "old-ef"
    assert repo.chat_rooms[new["chat_id"]]["user_ids"] == ["e", "g"]
    # f keeps its old pairing record and is not re-matched this cycle
    assert repo.users["f"]["priority_next_pairing"] is False
    assert report.details == [{"id": new["id"], "user_a": "e", "user_b": "g", "type": "migrated"}]


def test_scenario_mutual_block_waitlists_both():
    users = [make_user("a", blocked_ids=["b"]), make_user("b", blocked_ids=["a"])]
    repo = InMemoryPairingRepository(users=users)
    report = _run(repo)

    assert report.success is True
    assert report.pairings_created == 0
    assert report.waitlisted_users == 2
    assert all(u["priority_next_pairing"] for u in repo.users.values())


def test_insufficient_pool_aborts_without_writes():
    users = [make_user("a"), make_user("b", is_active=False), make_user("c", flake_streak=5)]
    repo = InMemoryPairingRepository(users=users)
    report = _run(repo)

    assert report.success is False
    assert report.error == "insufficient_pool"
    assert report.eligible_users == 1
    assert "at least 2" in report.reason
    assert repo.commits == 0
    assert repo.pairings == {}


def test_plan_raises_insufficient_pool_for_empty_directory():
    repo = InMemoryPairingRepository()
    with pytest.raises(InsufficientPoolError):
        plan_pairing_cycle(repo, NOW, CYCLE, random.Random(1))


def test_failed_commit_leaves_no_trace_of_the_cycle():
    users = [make_user(x) for x in "efghij"]
    old = make_pairing(
        "old-ef",
        "e",
        "f",
        status="partial_A",
        user_a_content_ref="photos/e.jpg",
        user_a_submitted_at=SUBMITTED_AT,
    )
    repo = InMemoryPairingRepository(users=users, pairings=[old], fail_after_writes=3)
    before_users = {k: dict(v) for k, v in repo.users.items()}

    report = _run(repo)

    assert report.success is False
    assert report.error == "persistence_error"
    assert list(repo.pairings) == ["old-ef"]
    assert repo.pairings["old-ef"]["status"] == "partial_A"
    assert repo.pairings["old-ef"]["migrated_to"] is None
    assert repo.chat_rooms == {}
    assert repo.users == before_users
    assert repo.commits == 0


def test_failed_commit_can_be_retried_from_scratch():
    repo = InMemoryPairingRepository(users=[make_user(x) for x in "abcde"], fail_after_writes=1)
    assert _run(repo).success is False

    repo.fail_after_writes = None
    report = _run(repo)
    assert report.success is True
    assert len(_new_pairings(repo)) == 2


def test_rerun_same_day_creates_no_duplicates():
    users = [make_user(x) for x in "abcdef"]
    repo = InMemoryPairingRepository(users=users)
    first = _run(repo, rng=random.Random(1))
    assert first.pairings_created == 3

    second = _run(repo, rng=random.Random(2))
    assert second.success is True
    assert second.pairings_created == 0
    assert second.migrated_pairings == 0
    assert len(_new_pairings(repo)) == 3


def test_rerun_after_migration_does_not_migrate_again():
    users = [make_user(x) for x in "efg"]
    old = make_pairing(
        "old-ef",
        "e",
        "f",
        status="partial_A",
        user_a_content_ref="photos/e.jpg",
        user_a_submitted_at=SUBMITTED_AT,
    )
    repo = InMemoryPairingRepository(users=users + [make_user("h")], pairings=[old])
    assert _run(repo, rng=IdentityRandom()).migrated_pairings == 1

    second = _run(repo, rng=IdentityRandom())
    assert second.migrated_pairings == 0
    assert sum(1 for p in repo.pairings.values() if p["status"] == "migrated") == 1


def test_no_user_in_two_active_pairings_and_no_blocked_pairs():
    rng = random.Random(8)
    users = []
    for i in range(24):
        blocked = [f"u{j}" for j in range(24) if j != i and rng.random() < 0.15]
        users.append(make_user(f"u{i}", blocked_ids=blocked))
    repo = InMemoryPairingRepository(users=users)
    assert _run(repo).success is True

    by_id = {u["id"]: u for u in users}
    seen: set[str] = set()
    for p in _new_pairings(repo):
        a, b = p["user_a"], p["user_b"]
        assert a != b
        assert b not in by_id[a]["blocked_ids"] and a not in by_id[b]["blocked_ids"]
        assert a not in seen and b not in seen
        seen.update({a, b})


def test_recent_history_is_respected():
    yesterday = CYCLE - timedelta(days=1)
    history = [
        make_pairing("h1", "a", "b", cycle_date=yesterday, status="completed", user_a_content_ref="x", user_b_content_ref="y"),
        make_pairing("h2", "c", "d", cycle_date=yesterday, status="flaked"),
    ]
    repo = InMemoryPairingRepository(users=[make_user(x) for x in "abcd"], pairings=history)
    report = _run(repo, rng=IdentityRandom())

    assert report.pairings_created == 2
    pairs = {frozenset((p["user_a"], p["user_b"])) for p in _new_pairings(repo)}
    assert pairs == {frozenset(("a", "c")), frozenset(("b", "d"))}


def test_history_outside_window_is_ignored():
    old_date = CYCLE - timedelta(days=8)
    history = [make_pairing("h1", "a", "b", cycle_date=old_date, status="completed", user_a_content_ref="x", user_b_content_ref="y")]
    repo = InMemoryPairingRepository(users=[make_user("a"), make_user("b")], pairings=history)
    report = _run(repo)
    assert report.pairings_created == 1


def test_waitlisted_users_lead_the_next_cycle():
    users = [make_user(x) for x in "abcde"]
    repo = InMemoryPairingRepository(users=users)
    _run(repo, rng=random.Random(4))
    waitlisted = [uid for uid, u in repo.users.items() if u["priority_next_pairing"]]
    assert len(waitlisted) == 1

    next_cycle_users = fetch_eligible_users(repo, NOW + timedelta(days=1))
    ordered = order_pool(next_cycle_users, random.Random(5))
    assert ordered[0].id == waitlisted[0]


def test_priority_flag_is_cleared_once_paired():
    users = [make_user("a", priority_next_pairing=True, waitlisted_at=NOW - timedelta(days=1)), make_user("b")]
    repo = InMemoryPairingRepository(users=users)
    report = _run(repo)

    assert report.pairings_created == 1
    assert repo.users["a"]["priority_next_pairing"] is False
    assert repo.users["a"]["waitlisted_at"] == NOW - timedelta(days=1)


def test_users_waiting_on_incomplete_pairing_are_not_rematched():
    users = [make_user(x) for x in "abcd"]
    pending = make_pairing("pending-ab", "a", "b")
    repo = InMemoryPairingRepository(users=users, pairings=[pending])
    report = _run(repo)

    assert report.pairings_created == 1
    new = [p for p in repo.pairings.values() if p["id"] != "pending-ab"]
    assert {new[0]["user_a"], new[0]["user_b"]} == {"c", "d"}


def test_default_cycle_date_is_local_date():
    repo = InMemoryPairingRepository(users=[make_user("a"), make_user("b")])
    late_utc = datetime(2026, 10, 20, 3, 0, tzinfo=timezone.utc)
    repo.users["a"]["last_active_at"] = late_utc - timedelta(hours=1)
    repo.users["b"]["last_active_at"] = late_utc - timedelta(hours=1)
    report = run_pairing_cycle(repo, now=late_utc, rng=random.Random(1))
    assert report.cycle_date == str(date(2026, 10, 19))


def test_every_created_pairing_has_distinct_users_and_a_chat_room():
    repo = InMemoryPairingRepository(users=[make_user(f"u{i}") for i in range(9)])
    _run(repo)
    for p in _new_pairings(repo):
        assert p["user_a"] != p["user_b"]
        room = repo.chat_rooms[p["chat_id"]]
        assert room["pairing_id"] == p["id"]
        assert room["user_ids"] == [p["user_a"], p["user_b"]]


def test_blocked_helper_used_by_pipeline_is_bidirectional():
    users = fetch_eligible_users(
        InMemoryPairingRepository(users=[make_user("a", blocked_ids=["b"]), make_user("b")]),
        NOW,
    )
    a, b = users
    assert is_blocked_between(a, b) and is_blocked_between(b, a)
