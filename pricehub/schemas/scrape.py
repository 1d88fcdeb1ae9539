from pydantic import BaseModel


class ScrapeErrorRecord(BaseModel):
    timestamp: int
    message: str


class ScheduleState(BaseModel):
    enabled: bool
    interval_ms: int
    last_run_at: int | None = None
    next_run_at: int | None = None
    is_running: bool = False
    total_runs: int = 0
    skipped_ticks: int = 0
    recent_errors: list[ScrapeErrorRecord] = []


class ScrapeToggleRequest(BaseModel):
    enabled: bool


class ScrapeScheduleRequest(BaseModel):
    interval: int
