# ai_client.py — Gemini generateContent over HTTP
import logging
from typing import List, Optional

import httpx

from errors import CompletionFailure

_logger = logging.getLogger("iti-tech.ai")

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiClient:
    """AI Completion Service: system instruction + ordered content parts in, plain text out."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        timeout: float = 60.0,
        base_url: str = GEMINI_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def generate(self, system_instruction: str, parts: List[str]) -> str:
        if not self.is_configured():
            raise CompletionFailure("GEMINI_API_KEY não configurada")

        body = {
            "systemInstruction": {"parts": [{"text": system_instruction}]},
            "contents": [{"role": "user", "parts": [{"text": p} for p in parts]}],
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.base_url}/models/{self.model}:generateContent",
                    params={"key": self.api_key},
                    json=body,
                )
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            _logger.warning(f"Gemini call failed ({self.model}): {e}")
            raise CompletionFailure(str(e)) from e

        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            _logger.warning(f"Gemini returned no text ({self.model}): {str(data)[:200]}")
            raise CompletionFailure("Resposta vazia do modelo") from None
        return text
