
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from settings import settings
from executor import ActionExecutor
from llm import aclose_chat_llm
from models import PlanRequest
from persistence import RunRecorder, init_db, recent_runs
from planner import generate_plan
from protocol import ChannelProtocolHandler
from session_manager import SessionBusyError, SessionInitError, SessionManager
from ticker import TickerRegistry

logging.basicConfig(
    level=settings.log_level.upper(),
    format="[%(asctime)s] %(name)s %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)

session = SessionManager()
executor = ActionExecutor(session, recorder=RunRecorder())
tickers = TickerRegistry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    if settings.auto_init_browser:
        log.info("Auto-initializing browser...")
        try:
            await session.initialize()
        except SessionInitError:
            log.error("Browser auto-initialization failed; POST /init-browser to retry")
    yield
    log.info("Shutting down...")
    await tickers.stop_all()
    await session.shutdown()
    await aclose_chat_llm()


app = FastAPI(title="Live Browser Orchestrator", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    runs = [
        {
            "runId": r.run_id,
            "totalActions": r.total_actions,
            "failedActions": r.failed_actions,
            "finished": r.finished_at is not None,
        }
        for r in recent_runs()
    ]
    return {
        "status": "ok",
        **session.status(),
        "executor": executor.state,
        "clients": len(tickers),
        "recentRuns": runs,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

@app.post("/init-browser")
async def init_browser():
    if executor.is_running:
        return JSONResponse(
            status_code=409,
            content={"success": False, "message": "Cannot initialize the browser while actions are running"},
        )
    try:
        await session.initialize()
    except SessionBusyError as exc:
        return JSONResponse(status_code=409, content={"success": False, "message": str(exc)})
    except SessionInitError as exc:
        return {"success": False, "message": f"Failed to initialize browser: {exc}"}
    return {"success": True, "message": "Browser initialized"}

@app.post("/plan")
async def plan_endpoint(payload: PlanRequest):
    plan = await generate_plan(payload.message)
    return plan.model_dump(exclude_none=True)

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    handler = ChannelProtocolHandler(
        websocket,
        session,
        executor,
        tickers,
        client_id=websocket.query_params.get("clientId"),
    )
    await handler.serve()

def run():
    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=settings.debug)

if __name__ == "__main__":
    run()
