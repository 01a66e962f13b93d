from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Any, Protocol, Sequence

from sqlalchemy import bindparam, text
from sqlalchemy.exc import SQLAlchemyError

from .errors import PersistenceError
from .services.events import cycle_events, log_pairing_event
from .services.records import INCOMPLETE_STATUSES, CycleWrites

logger = logging.getLogger(__name__)


class PairingRepository(Protocol):
    def list_active_users(self) -> list[dict[str, Any]]: ...

    def list_pairings_between(self, start: date, end: date) -> list[dict[str, Any]]: ...

    def list_cycle_pairings(self, cycle_date: date, statuses: Sequence[str]) -> list[dict[str, Any]]: ...

    def count_cycle_statuses(self, cycle_date: date) -> dict[str, int]: ...

    def commit_cycle(self, writes: CycleWrites) -> None: ...

    def commit_flakes(self, pairing_ids: Sequence[str], flake_counts: dict[str, int], flaked_at: datetime) -> None: ...


_PAIRING_COLUMNS = """
    id, cycle_date, expires_at, user_a, user_b, status,
    user_a_content_ref, user_b_content_ref, user_a_submitted_at, user_b_submitted_at,
    chat_id, virtual_meeting_link, migrated_from, migrated_to
"""


class SqlPairingRepository:
    """Backing-store access for one cycle run, bound to a single session.

    Reads run inside the session's implicit transaction; ``commit_cycle`` and
    ``commit_flakes`` issue every write and then commit exactly once, so a
    failure rolls back everything the call attempted.
    """

    def __init__(self, db):
        self.db = db

    def list_active_users(self) -> list[dict[str, Any]]:
        rows = self.db.execute(
            text(
                """
                SELECT id, display_name, blocked_ids, flake_streak, last_active_at,
                       priority_next_pairing, waitlisted_at
                FROM app_user
                WHERE is_active = TRUE
                ORDER BY created_at ASC, id ASC
                """
            )
        ).mappings().all()
        return [dict(r) for r in rows]

    def list_pairings_between(self, start: date, end: date) -> list[dict[str, Any]]:
        rows = self.db.execute(
            text(
                """
                SELECT id, user_a, user_b, cycle_date
                FROM pairing
                WHERE cycle_date >= :start
                  AND cycle_date < :end
                """
            ),
            {"start": start, "end": end},
        ).mappings().all()
        return [dict(r) for r in rows]

    def list_cycle_pairings(self, cycle_date: date, statuses: Sequence[str]) -> list[dict[str, Any]]:
        stmt = text(
            f"""
            SELECT {_PAIRING_COLUMNS}
            FROM pairing
            WHERE cycle_date >= :cycle_date
              AND status IN :statuses
            ORDER BY created_at ASC, id ASC
            """
        ).bindparams(bindparam("statuses", expanding=True))
        rows = self.db.execute(stmt, {"cycle_date": cycle_date, "statuses": list(statuses)}).mappings().all()
        return [dict(r) for r in rows]

    def count_cycle_statuses(self, cycle_date: date) -> dict[str, int]:
        rows = self.db.execute(
            text(
                """
                SELECT status, COUNT(1) AS c
                FROM pairing
                WHERE cycle_date = :cycle_date
                GROUP BY status
                """
            ),
            {"cycle_date": cycle_date},
        ).mappings().all()
        return {str(r["status"]): int(r["c"]) for r in rows}

    def commit_cycle(self, writes: CycleWrites) -> None:
        try:
            self._write_cycle(writes)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("[PERSIST] cycle %s rolled back: %s", writes.cycle_date, exc)
            raise PersistenceError(f"Cycle {writes.cycle_date} could not be committed: {exc}") from exc
        except PersistenceError:
            self.db.rollback()
            raise

    def _write_cycle(self, writes: CycleWrites) -> None:
        for p in writes.pairings:
            self.db.execute(
                text(
                    """
                    INSERT INTO pairing
                    (id, cycle_date, expires_at, user_a, user_b, status,
                     user_a_content_ref, user_b_content_ref, user_a_submitted_at, user_b_submitted_at,
                     chat_id, virtual_meeting_link, migrated_from, created_at, updated_at)
                    VALUES (:id, :cycle_date, :expires_at, :user_a, :user_b, :status,
                            :user_a_content_ref, :user_b_content_ref, :user_a_submitted_at, :user_b_submitted_at,
                            :chat_id, :virtual_meeting_link, :migrated_from, :created_at, :created_at)
                    """
                ),
                {
                    "id": p.id,
                    "cycle_date": p.cycle_date,
                    "expires_at": p.expires_at,
                    "user_a": p.user_a,
                    "user_b": p.user_b,
                    "status": p.status,
                    "user_a_content_ref": p.user_a_content_ref,
                    "user_b_content_ref": p.user_b_content_ref,
                    "user_a_submitted_at": p.user_a_submitted_at,
                    "user_b_submitted_at": p.user_b_submitted_at,
                    "chat_id": p.chat_id,
                    "virtual_meeting_link": p.virtual_meeting_link,
                    "migrated_from": p.migrated_from,
                    "created_at": writes.created_at,
                },
            )

        for c in writes.channels:
            self.db.execute(
                text(
                    """
                    INSERT INTO chat_room (id, pairing_id, user_ids, created_at, last_message, last_activity_at)
                    VALUES (:id, :pairing_id, CAST(:user_ids AS jsonb), :created_at, NULL, :created_at)
                    """
                ),
                {
                    "id": c.id,
                    "pairing_id": c.pairing_id,
                    "user_ids": json.dumps(list(c.user_ids)),
                    "created_at": c.created_at,
                },
            )

        for r in writes.retirements:
            res = self.db.execute(
                text(
                    """
                    UPDATE pairing
                    SET status = 'migrated', migrated_to = :migrated_to, updated_at = :retired_at
                    WHERE id = :id
                      AND status IN :statuses
                    """
                ).bindparams(bindparam("statuses", expanding=True)),
                {
                    "id": r.pairing_id,
                    "migrated_to": r.migrated_to,
                    "retired_at": r.retired_at,
                    "statuses": list(INCOMPLETE_STATUSES),
                },
            )
            if int(res.rowcount or 0) != 1:
                raise PersistenceError(f"Pairing {r.pairing_id} is no longer incomplete; refusing to migrate it")

        for f in writes.user_flags:
            self.db.execute(
                text(
                    """
                    UPDATE app_user
                    SET priority_next_pairing = :priority,
                        waitlisted_at = COALESCE(:waitlisted_at, waitlisted_at)
                    WHERE id = :id
                    """
                ),
                {"id": f.user_id, "priority": f.priority_next_pairing, "waitlisted_at": f.waitlisted_at},
            )

        for event in cycle_events(writes):
            log_pairing_event(self.db, **event)

    def commit_flakes(self, pairing_ids: Sequence[str], flake_counts: dict[str, int], flaked_at: datetime) -> None:
        try:
            for pairing_id in pairing_ids:
                self.db.execute(
                    text(
                        """
                        UPDATE pairing
                        SET status = 'flaked', flaked_at = :flaked_at, updated_at = :flaked_at
                        WHERE id = :id
                        """
                    ),
                    {"id": pairing_id, "flaked_at": flaked_at},
                )
            for user_id, count in flake_counts.items():
                self.db.execute(
                    text(
                        """
                        UPDATE app_user
                        SET flake_streak = flake_streak + :n,
                            max_flake_streak = GREATEST(max_flake_streak, flake_streak + :n)
                        WHERE id = :id
                        """
                    ),
                    {"id": user_id, "n": count},
                )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("[FLAKES] flake sweep rolled back: %s", exc)
            raise PersistenceError(f"Flake sweep could not be committed: {exc}") from exc
