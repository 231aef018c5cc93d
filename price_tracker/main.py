import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from price_tracker.api.router import api_router
from price_tracker.config import load_settings
from price_tracker.services.scheduler import start_scheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = start_scheduler(settings)
        logger.info(f"Scheduler started: ingest every {settings.SYNC_INTERVAL_MINUTES} min")
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)


app = FastAPI(title="AliExpress Daily Price Tracker", lifespan=lifespan)

app.include_router(api_router)


@app.get("/")
def root():
    return {"status": "running", "message": "AliExpress Daily Price Tracker"}


@app.get("/health")
def health_check():
    return {"status": "healthy"}
