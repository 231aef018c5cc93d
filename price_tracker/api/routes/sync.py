from fastapi import APIRouter
from price_tracker.services.sync_manager import full_sync

router = APIRouter()


@router.post("/run")
async def run_sync():
    result = await full_sync()
    return {"message": "Ingest completed", "result": result}


@router.post("/category/{category_id}")
async def run_category_sync(category_id: str):
    result = await full_sync(category_ids=[category_id])
    return {"message": f"Ingest completed for category {category_id}", "result": result}
