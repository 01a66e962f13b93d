from typing import Any

from pydantic import BaseModel, Field


class CycleReportResponse(BaseModel):
    success: bool
    cycle_date: str
    pairings_created: int = 0
    migrated_pairings: int = 0
    waitlisted_users: int = 0
    eligible_users: int = 0
    reason: str | None = None
    error: str | None = None
    details: list[dict[str, Any]] = Field(default_factory=list)


class FlakeSweepResponse(BaseModel):
    cycle_date: str
    flaked_pairings: int
    users_updated: int


class CycleSummaryResponse(BaseModel):
    cycle_date: str
    total_pairings: int
    status_counts: dict[str, int]
