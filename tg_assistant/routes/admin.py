# tg_assistant/routes/admin.py

from fastapi import APIRouter, Depends, HTTPException, Request

router = APIRouter(prefix="/admin", tags=["admin"])


# Simple API key auth
def verify_api_key(request: Request, api_key: str):
    if api_key != request.app.state.config.ADMIN_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API key")
    return True


@router.get("/moderation/{chat_id}", dependencies=[Depends(verify_api_key)])
async def list_moderated_users(chat_id: int, request: Request):
    """List users whose messages are hidden from context windows"""
    user_ids = await request.app.state.moderation.list_users(chat_id)
    return {"chat_id": chat_id, "user_ids": user_ids}


@router.post("/moderation/{chat_id}/{user_id}", dependencies=[Depends(verify_api_key)])
async def add_moderated_user(chat_id: int, user_id: int, request: Request):
    """Hide a user's messages from future context windows"""
    added = await request.app.state.moderation.add(chat_id, user_id)
    return {"status": "added" if added else "unchanged"}


@router.delete("/moderation/{chat_id}/{user_id}", dependencies=[Depends(verify_api_key)])
async def remove_moderated_user(chat_id: int, user_id: int, request: Request):
    """Show a user's messages in context windows again"""
    removed = await request.app.state.moderation.remove(chat_id, user_id)
    return {"status": "removed" if removed else "unchanged"}
