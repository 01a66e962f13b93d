from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Header, HTTPException
from fastapi.encoders import jsonable_encoder

from .. import config
from ..database import SessionLocal
from ..deps import parse_cycle_date, validate_admin_token
from ..errors import PersistenceError
from ..repo import SqlPairingRepository
from ..schemas import CycleReportResponse, CycleSummaryResponse, FlakeSweepResponse
from ..services.cycle import make_rng, run_pairing_cycle
from ..services.flakes import close_expired_pairings
from ..services.records import local_cycle_date

router = APIRouter()

_FAILURE_STATUS = {"insufficient_pool": 409, "persistence_error": 503}


def _json(data: Any) -> Any:
    return jsonable_encoder(data)


def _require_admin(token: str | None) -> None:
    validate_admin_token(token, config.ADMIN_TOKEN)


@router.post("/admin/pairings/run-daily", response_model=CycleReportResponse)
def run_daily_pairing(
    cycle_date: str | None = None,
    seed: int | None = None,
    x_admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
) -> dict[str, Any]:
    _require_admin(x_admin_token)
    target = parse_cycle_date(cycle_date)
    rng = make_rng(seed) if seed is not None else None

    with SessionLocal() as db:
        report = run_pairing_cycle(SqlPairingRepository(db), cycle_date=target, rng=rng)

    if not report.success:
        raise HTTPException(status_code=_FAILURE_STATUS.get(report.error or "", 500), detail=_json(report.as_dict()))
    return _json(report.as_dict())


@router.post("/admin/pairings/close-expired", response_model=FlakeSweepResponse)
def close_expired(
    cycle_date: str | None = None,
    x_admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
) -> dict[str, Any]:
    _require_admin(x_admin_token)
    now = datetime.now(timezone.utc)
    target = parse_cycle_date(cycle_date) or local_cycle_date(now, config.PAIRING_TIMEZONE)

    with SessionLocal() as db:
        try:
            out = close_expired_pairings(SqlPairingRepository(db), now=now, cycle_date=target)
        except PersistenceError as exc:
            raise HTTPException(status_code=503, detail=str(exc))
    return _json({"cycle_date": str(target), **out})


@router.get("/admin/pairings/summary", response_model=CycleSummaryResponse)
def cycle_summary(
    cycle_date: str | None = None,
    x_admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
) -> dict[str, Any]:
    _require_admin(x_admin_token)
    target = parse_cycle_date(cycle_date) or local_cycle_date(datetime.now(timezone.utc), config.PAIRING_TIMEZONE)

    with SessionLocal() as db:
        counts = SqlPairingRepository(db).count_cycle_statuses(target)
    return _json({"cycle_date": str(target), "total_pairings": sum(counts.values()), "status_counts": counts})
