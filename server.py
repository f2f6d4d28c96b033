"""
Region Spend Recorder – FastAPI server with daily sync scheduler.

Scheduler runs the region spend sync (last DAYS_BACK days) once a day at a set time.

  pip install -e .
  uvicorn server:app --host 0.0.0.0 --port 9002

  Optional .env: SYNC_SCHEDULE_TIMEZONE, SYNC_SCHEDULE_HOUR, SYNC_SCHEDULE_MINUTE.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Body, FastAPI, HTTPException
from pydantic import BaseModel

from config import SYNC_SCHEDULE_HOUR, SYNC_SCHEDULE_MINUTE, SYNC_SCHEDULE_TIMEZONE, load_run_config
from sync import run_sync

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Scheduler and state (set in lifespan)
_scheduler = None
_last_sync_result: Optional[dict] = None


def _run_daily_sync() -> None:
    """Scheduled job: sync the configured lookback window for all allowed accounts."""
    global _last_sync_result
    started = datetime.now(timezone.utc).isoformat()
    try:
        result = run_sync(load_run_config())
    except Exception as e:
        logger.exception("Scheduled region spend sync failed: %s", e)
        _last_sync_result = {"status": "error", "started_at": started, "error": str(e)}
        raise
    _last_sync_result = {"status": "ok", "started_at": started, **result}
    logger.info("Scheduled region spend sync completed for %s .. %s", result["since"], result["until"])


def _get_scheduler():
    from apscheduler.schedulers.background import BackgroundScheduler

    sched = BackgroundScheduler(timezone=SYNC_SCHEDULE_TIMEZONE)
    sched.add_job(
        _run_daily_sync,
        trigger="cron",
        hour=SYNC_SCHEDULE_HOUR,
        minute=SYNC_SCHEDULE_MINUTE,
        id="daily_sync",
        max_instances=1,
        coalesce=True,
    )
    return sched


def _format_time_until(next_run: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Return human-readable string: e.g. '5h 23m' or '23 minutes' or '< 1 minute'."""
    if not next_run:
        return "unknown"
    now = now or datetime.now(timezone.utc)
    next_utc = next_run.astimezone(timezone.utc) if next_run.tzinfo else next_run.replace(tzinfo=timezone.utc)
    total_seconds = max(0, (next_utc - now).total_seconds())
    hours = int(total_seconds // 3600)
    minutes = int((total_seconds % 3600) // 60)
    if hours >= 1:
        return f"{hours}h {minutes}m" if minutes else f"{hours} hours"
    if minutes >= 1:
        return f"{minutes} minutes"
    return "< 1 minute"


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _scheduler
    _scheduler = _get_scheduler()
    _scheduler.start()
    job = _scheduler.get_job("daily_sync")
    next_run = job.next_run_time if job else None
    logger.info(
        "Scheduler started: daily sync at %02d:%02d %s; next run in %s (%s)",
        SYNC_SCHEDULE_HOUR,
        SYNC_SCHEDULE_MINUTE,
        SYNC_SCHEDULE_TIMEZONE,
        _format_time_until(next_run),
        next_run.isoformat() if next_run else "?",
    )
    yield
    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
    logger.info("Scheduler stopped.")


app = FastAPI(
    title="Region Spend Recorder",
    description="Daily upsert of Meta ad spend by region into a Google Sheet, with optional manual trigger.",
    lifespan=lifespan,
)


@app.get("/health")
def health():
    return {"status": "ok", "service": "region-spend-recorder"}


@app.get("/schedule")
def schedule():
    """Return current schedule, next run time, and time until next run."""
    if not _scheduler:
        return {"scheduler": "not_running", "schedule": None, "last_sync": _last_sync_result}
    job = _scheduler.get_job("daily_sync")
    next_run = job.next_run_time if job else None
    return {
        "scheduler": "running",
        "schedule": {
            "timezone": SYNC_SCHEDULE_TIMEZONE,
            "hour": SYNC_SCHEDULE_HOUR,
            "minute": SYNC_SCHEDULE_MINUTE,
            "next_run": next_run.isoformat() if next_run else None,
            "next_run_in": _format_time_until(next_run),
        },
        "last_sync": _last_sync_result,
    }


class SyncRequest(BaseModel):
    days: Optional[int] = None  # days back, excluding today; default DAYS_BACK
    dry_run: Optional[bool] = False  # fetch and plan only


@app.post("/sync")
def trigger_sync(body: Optional[SyncRequest] = Body(None)):
    """Run the sync once. Optional body: {"days": 7} or {"dry_run": true}."""
    days = body.days if body else None
    if days is not None and days < 1:
        raise HTTPException(status_code=400, detail="days must be >= 1")
    cfg = load_run_config(days_back=days)
    try:
        result = run_sync(cfg, dry_run=bool(body and body.dry_run))
    except Exception as e:
        logger.exception("Manual sync failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "ok", **result}
