# tg_assistant/routes/webhook.py

import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request

from tg_assistant.data_schemas.telegram import Update

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhook")
async def webhook(
    update: Update,
    request: Request,
    secret_token: Optional[str] = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
):
    expected_secret = request.app.state.config.TELEGRAM_WEBHOOK_SECRET
    if expected_secret and secret_token != expected_secret:
        logger.warning(f"Rejected update {update.update_id}: invalid secret token")
        raise HTTPException(status_code=403, detail="Invalid secret token")

    result = await request.app.state.update_handler.on_update(update)
    logger.debug(f"Update {update.update_id} handled: {result}")
    return {"status": "ok"}
