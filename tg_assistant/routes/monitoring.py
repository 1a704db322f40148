# tg_assistant/routes/monitoring.py

from fastapi import APIRouter, Depends, Request

from tg_assistant.routes.admin import verify_api_key

router = APIRouter(prefix="/monitoring", tags=["monitoring"])


@router.get("/queue", dependencies=[Depends(verify_api_key)])
async def get_queue_stats(request: Request):
    """Get request queue depth and worker counters"""
    return request.app.state.worker_pool.stats()
