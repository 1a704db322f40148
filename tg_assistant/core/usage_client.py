# tg_assistant/core/usage_client.py

from typing import Optional
import httpx

from pydantic import BaseModel


class KeyUsage(BaseModel):
    label: Optional[str] = None
    usage: float = 0.0
    limit: Optional[float] = None
    limit_remaining: Optional[float] = None
    is_free_tier: bool = False


class UsageClient:
    """Reads API key usage from an OpenRouter-style `/key` endpoint"""

    def __init__(self, url: str, api_key: Optional[str], timeout: float = 10.0):
        self.url = url
        self.headers = {"Authorization": f"Bearer {api_key or ''}"}
        self.timeout = timeout

    async def get_key_usage(self) -> KeyUsage:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(self.url, headers=self.headers)
            response.raise_for_status()
        body = response.json()
        return KeyUsage.model_validate(body.get("data") or {})
