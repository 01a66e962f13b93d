import json
import uuid
from typing import Any

from sqlalchemy import text

from .records import CycleWrites


def log_pairing_event(
    db,
    cycle_date,
    event_type: str,
    created_at,
    user_id: str | None = None,
    pairing_id: str | None = None,
    payload: dict[str, Any] | None = None,
) -> None:
    payload = payload or {}
    db.execute(
        text(
            """
            INSERT INTO pairing_event (id, cycle_date, pairing_id, user_id, event_type, payload, created_at)
            VALUES (:id, :cycle_date, :pairing_id, :user_id, :event_type, CAST(:payload AS jsonb), :created_at)
            """
        ),
        {
            "id": str(uuid.uuid4()),
            "cycle_date": cycle_date,
            "pairing_id": pairing_id,
            "user_id": user_id,
            "event_type": event_type,
            "payload": json.dumps(payload, default=str),
            "created_at": created_at,
        },
    )


def cycle_events(writes: CycleWrites) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    base = {"cycle_date": writes.cycle_date, "created_at": writes.created_at}
    for p in writes.pairings:
        out.append(
            {
                **base,
                "event_type": "pairing_migrated" if p.migrated_from else "pairing_created",
                "pairing_id": p.id,
                "payload": {"users": [p.user_a, p.user_b], "migrated_from": p.migrated_from},
            }
        )
    for f in writes.user_flags:
        if f.waitlisted_at is None:
            continue
        out.append({**base, "event_type": "waitlisted", "user_id": f.user_id, "payload": {}})
    return out
