from fastapi import APIRouter
from price_tracker.api.routes import sync

api_router = APIRouter()

api_router.include_router(sync.router, prefix="/sync", tags=["Sync"])
