# web/app.py
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from config.settings import Settings, get_settings
from mcx.errors import FetchError
from mcx.expiry_dates import day_key
from mcx.sources.option_chain import OptionChainClient
from mcx.storage.sqlite import OIDatabase
from tracker_runner import TrackerRunner

logger = logging.getLogger(__name__)


# Pydantic response models
class ExpiryOut(BaseModel):
    symbol: str = Field(..., examples=["GOLD"])
    expiryDates: List[str] = Field(default_factory=list, examples=[["29AUG2025", "26SEP2025"]])


# ===== API ENDPOINTS =====

router = APIRouter(prefix="/api/data")


@router.get("/expiries", response_model=List[ExpiryOut])
def get_expiries(request: Request):
    """All symbols with their stored expiry dates, sorted by symbol."""
    db: OIDatabase = request.app.state.db
    return [snapshot.to_dict() for snapshot in db.get_expiries()]


@router.get("/today")
def get_today(request: Request, symbol: Optional[str] = Query(None, description="Commodity symbol")):
    """Today's record for one symbol; {} until the first point is stored."""
    if not symbol or not symbol.strip():
        raise HTTPException(400, "Symbol query parameter is required.")

    db: OIDatabase = request.app.state.db
    record = db.get_daily_record(symbol.strip(), day_key(db.tz))
    if record is None:
        # Normal early in the day
        return {}
    return record.to_dict()


@router.get("/live")
async def get_live(
    request: Request,
    symbol: Optional[str] = Query(None),
    expiryDate: Optional[str] = Query(None),
):
    """Proxy the current option chain straight from MCX."""
    symbol = (symbol or "").strip()
    expiryDate = (expiryDate or "").strip()
    if not symbol or not expiryDate:
        raise HTTPException(400, "Symbol and expiryDate query parameters are required.")

    client: OptionChainClient = request.app.state.client
    try:
        return await client.fetch_raw(symbol, expiryDate)
    except FetchError as e:
        logger.error(f"Proxy error fetching live data for {symbol} {expiryDate}: {e}")
        raise HTTPException(502, "Failed to fetch data from MCX.")


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[OIDatabase] = None,
    client: Optional[OptionChainClient] = None,
    run_tracker: Optional[bool] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Settings to use (global settings if None)
        db: Store to read from (built from settings if None)
        client: Option chain client for /live (built from settings if None)
        run_tracker: Run the scheduler inside the web process
            (settings.web.run_tracker if None)
    """
    settings = settings or get_settings()
    db = db or OIDatabase(settings.database.path, settings.tzinfo)
    client = client or OptionChainClient(
        url=settings.source.option_chain_url,
        timeout_seconds=settings.source.http_timeout_seconds,
        user_agent=settings.source.user_agent,
    )
    if run_tracker is None:
        run_tracker = settings.web.run_tracker

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await asyncio.to_thread(db.init_db)

        task = None
        if run_tracker:
            runner = TrackerRunner(settings=settings, db=db, client=client)
            app.state.runner = runner
            task = asyncio.create_task(runner.run_continuous())
            logger.info(f"🚀 {settings.project_name} API started with tracker: {datetime.now()}")

        yield

        if task is not None:
            app.state.runner.stop()
            await task
        else:
            await client.close()
        logger.info(f"🛑 {settings.project_name} API stopped: {datetime.now()}")

    app = FastAPI(
        title=f"{settings.project_name} API",
        description="Read API for the stored MCX open-interest series",
        version=settings.version,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.web.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.db = db
    app.state.client = client
    app.state.runner = None

    app.include_router(router)

    @app.get("/api/health")
    async def health_check():
        """API liveness."""
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "version": settings.version,
        }

    @app.get("/api/status")
    async def tracker_status(request: Request):
        """Scheduler state when the tracker runs in this process."""
        runner: Optional[TrackerRunner] = request.app.state.runner
        return {"tracker": runner.status() if runner is not None else None}

    return app
