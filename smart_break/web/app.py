import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from smart_break.config.settings import settings
from smart_break.models.insight import insight_to_dict
from smart_break.models.pause import PauseReason
from smart_break.models.stats import NudgeKind, StatsPeriod
from smart_break.services.errors import ConfigError
from smart_break.services.metrics import MetricsCollector
from smart_break.services.runner import ServiceRunner

logger = logging.getLogger(__name__)

_runner: Optional[ServiceRunner] = None


def get_runner() -> ServiceRunner:
    """Shared service runner, created on first use"""
    global _runner
    if _runner is None:
        _runner = ServiceRunner()
    return _runner


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = None
    if settings.WEB_RUN_SERVICE:
        runner = get_runner()
        # uvicorn owns SIGINT and SIGTERM; the runner stops on lifespan exit
        task = asyncio.create_task(runner.run(install_signal_handlers=False))
    yield
    if task is not None:
        await get_runner().shutdown()
        await task


app = FastAPI(title="Smart Break Dashboard", lifespan=lifespan)


class BreakRequest(BaseModel):
    completed: bool
    duration_seconds: int = 0


class NudgeRequest(BaseModel):
    followed: bool
    kind: NudgeKind = NudgeKind.GENERAL


class PauseRequest(BaseModel):
    reason: PauseReason = PauseReason.MANUAL
    related_app: Optional[str] = None


TIMER_ACTIONS = {
    "start": lambda t: t.start(),
    "stop": lambda t: t.stop(),
    "pause": lambda t: t.pause(),
    "resume": lambda t: t.resume(),
    "skip": lambda t: t.skip_break(),
    "postpone": lambda t: t.postpone_break(),
    "end-early": lambda t: t.end_break_early(),
    "break-now": lambda t: t.take_break_now(),
}


@app.get("/api/state")
async def get_state(runner: ServiceRunner = Depends(get_runner)):
    """Timer state, pause decision and today's numbers"""
    try:
        ledger = runner.ledger
        return {
            "timer": runner.timer.status(),
            "decision": runner.engine.decision.to_dict(),
            "today": ledger.today_stats().model_dump(mode="json"),
            "daily_score": round(ledger.daily_score(), 1),
            "streak": ledger.current_streak(),
            "goal": ledger.goal_progress(),
            "monitoring": runner.engine.is_monitoring,
        }
    except Exception as e:
        logger.error(f"Error getting state: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/stats/{period}")
async def get_stats(period: str, runner: ServiceRunner = Depends(get_runner)):
    try:
        stats_period = StatsPeriod(period)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown period: {period}")
    try:
        data = MetricsCollector(runner.ledger).get_period_metrics(stats_period)
        if stats_period == StatsPeriod.TODAY:
            data["pause_breakdown"] = runner.ledger.pause_breakdown()
        return data
    except Exception as e:
        logger.error(f"Error getting stats: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/insights")
async def get_insights(runner: ServiceRunner = Depends(get_runner)):
    try:
        return [insight_to_dict(i) for i in runner.refresh_insights()]
    except Exception as e:
        logger.error(f"Error generating insights: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/export/json")
async def export_json(runner: ServiceRunner = Depends(get_runner)):
    return JSONResponse(MetricsCollector(runner.ledger).export_data())


@app.get("/api/export/csv")
async def export_csv(runner: ServiceRunner = Depends(get_runner)):
    return PlainTextResponse(
        MetricsCollector(runner.ledger).export_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=smart_break.csv"},
    )


@app.post("/api/sessions/start")
async def start_session(runner: ServiceRunner = Depends(get_runner)):
    session = runner.ledger.start_session()
    return {"ok": session is not None}


@app.post("/api/sessions/end")
async def end_session(runner: ServiceRunner = Depends(get_runner)):
    session = runner.ledger.end_session()
    return {"ok": session is not None}


@app.post("/api/breaks")
async def record_break(body: BreakRequest, runner: ServiceRunner = Depends(get_runner)):
    runner.ledger.record_break(body.completed, body.duration_seconds)
    return {"ok": True, "daily_score": round(runner.ledger.daily_score(), 1)}


@app.post("/api/nudges")
async def record_nudge(body: NudgeRequest, runner: ServiceRunner = Depends(get_runner)):
    runner.ledger.record_nudge(body.followed, body.kind)
    return {"ok": True}


@app.post("/api/pauses/start")
async def start_pause(body: PauseRequest, runner: ServiceRunner = Depends(get_runner)):
    event = runner.ledger.start_pause(body.reason, body.related_app)
    return {"ok": event is not None}


@app.post("/api/pauses/end")
async def end_pause(runner: ServiceRunner = Depends(get_runner)):
    event = runner.ledger.end_pause()
    return {"ok": event is not None}


@app.post("/api/timer/{action}")
async def timer_action(action: str, runner: ServiceRunner = Depends(get_runner)):
    handler = TIMER_ACTIONS.get(action)
    if handler is None:
        raise HTTPException(status_code=400, detail=f"Unknown timer action: {action}")
    ok = handler(runner.timer)
    return {"ok": ok, "timer": runner.timer.status()}


@app.post("/api/refresh")
async def force_refresh(runner: ServiceRunner = Depends(get_runner)):
    decision = await runner.engine.refresh_async()
    return decision.to_dict()


@app.post("/api/monitoring/{action}")
async def monitoring(action: str, runner: ServiceRunner = Depends(get_runner)):
    if action == "start":
        runner.engine.start_monitoring()
    elif action == "stop":
        await runner.engine.stop_monitoring()
    else:
        raise HTTPException(status_code=400, detail=f"Unknown monitoring action: {action}")
    return {"monitoring": runner.engine.is_monitoring}


@app.get("/api/config")
async def get_config(runner: ServiceRunner = Depends(get_runner)):
    config = runner.engine.config
    return {
        **config.model_dump(mode="json"),
        "max_reachable_weight": config.max_reachable_weight(),
        "threshold_reachable": config.is_threshold_reachable(),
    }


@app.post("/api/config")
async def set_config(request: Request, runner: ServiceRunner = Depends(get_runner)):
    try:
        decision = await runner.update_config(await request.json())
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "decision": decision.to_dict()}


@app.post("/api/reset")
async def reset_stats(runner: ServiceRunner = Depends(get_runner)):
    runner.ledger.reset_all_stats()
    return {"ok": True}


@app.exception_handler(404)
async def not_found_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=404,
        content={"detail": "Not found"}
    )
