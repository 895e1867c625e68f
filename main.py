"""FastAPI app — runs the digest scheduler and exposes run status.

Usage:
    python main.py              # serves on HOST:PORT from settings
    uvicorn main:app --port 8000
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from config import DigestConfig, load_digest_config, settings
from journal_digest import database
from journal_digest.scheduler import DigestScheduler
from journal_digest.wiring import build_pipeline, build_scheduler

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

# Populated during lifespan startup
_config: DigestConfig | None = None
_scheduler: DigestScheduler | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Resolve config once, start the background scheduler, stop it on shutdown."""
    global _config, _scheduler
    _config = load_digest_config()
    _scheduler = build_scheduler(_config, build_pipeline(_config))
    _scheduler.start()
    logger.info("[%s] Digest service started (cadence %s, %s)",
                _config.environment, _config.cron.expression, _config.timezone.key)

    if _config.run_on_startup:
        logger.info("Startup: run_on_startup is set, triggering a digest run now.")
        _scheduler.trigger("startup")

    yield
    await _scheduler.stop()


app = FastAPI(title="Journal Digest", description="Weekly journal sentiment digest", lifespan=lifespan)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {
        "status": "ok",
        "environment": _config.environment,
        **_scheduler.status(),
    }


@app.get("/api/runs")
async def api_runs(limit: int = Query(default=20, ge=1, le=200)):
    """List recent digest runs."""
    return JSONResponse(database.list_runs(limit=limit, db_path=_config.db_path))


@app.get("/api/runs/{run_id}")
async def api_run(run_id: str):
    """Get a single digest run with per-user outcomes."""
    run = database.get_run(run_id, db_path=_config.db_path)
    if not run:
        return JSONResponse({"error": "Run not found"}, status_code=404)
    return JSONResponse(run)


@app.api_route("/api/cron/digest", methods=["GET", "POST"])
async def api_cron_digest(request: Request, secret: str = Query("")):
    """External cron trigger for a digest run.

    Accepts secret via query param or Authorization: Bearer header.
    """
    if not secret:
        auth_header = request.headers.get("authorization", "")
        if auth_header.startswith("Bearer "):
            secret = auth_header[7:]

    if not _config.cron_secret:
        return JSONResponse({"error": "CRON_SECRET not configured on server."}, status_code=500)
    if secret != _config.cron_secret:
        return JSONResponse({"error": "Invalid secret."}, status_code=403)

    if not _scheduler.trigger("external"):
        return JSONResponse(
            {"status": "already_running", "message": "A digest run is already in progress."},
            status_code=409,
        )
    logger.info("Cron trigger: digest run started.")
    return JSONResponse({"status": "started", "message": "Digest run started via cron."})


@app.post("/api/cancel")
async def api_cancel():
    """Stop the active run from starting any further users."""
    if not _scheduler.request_cancel():
        return JSONResponse({"status": "idle", "message": "No digest run in progress."}, status_code=409)
    return JSONResponse({"status": "cancelling", "message": "Cancellation requested."})


if __name__ == "__main__":
    uvicorn.run(app, host=settings.host, port=settings.port)
