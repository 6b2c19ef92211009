from fastapi import APIRouter, HTTPException

from app.models.catalog import IngestStatusResponse, IngestTriggerResponse
from app.services.ingest_service import get_ingest_status, trigger_ingest


router = APIRouter(tags=["ingest"])


@router.post("/ingest", response_model=IngestTriggerResponse)
async def api_trigger_ingest():
    try:
        started, snapshot = trigger_ingest()
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Failed to start ingest: {exc}")
    if not started:
        return {"success": False, "message": "Crawl already in progress", "status": snapshot.to_dict()}
    return {"success": True, "message": "Crawl started", "status": snapshot.to_dict()}


@router.get("/ingest/status", response_model=IngestStatusResponse)
def api_ingest_status():
    return {"success": True, "data": get_ingest_status()}
