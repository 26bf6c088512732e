"""TextGen: single-turn text generation over HTTP chat APIs."""

from __future__ import annotations

import logging

import anyio
import httpx

logger = logging.getLogger(__name__)

ENDPOINTS: dict[str, str] = {
    "anthropic": "https://api.anthropic.com/v1/messages",
    "google": "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
    # OpenAI-compatible providers
    "openai": "https://api.openai.com/v1/chat/completions",
    "groq": "https://api.groq.com/openai/v1/chat/completions",
    "openrouter": "https://openrouter.ai/api/v1/chat/completions",
    "deepseek": "https://api.deepseek.com/v1/chat/completions",
}

_MAX_RETRIES = 3
_RETRY_STATUSES = {429, 500, 502, 503, 529}
_RETRY_ERRORS = (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.ConnectError)


class HttpTextGen:
    """One provider/model pair behind ``chat(system, user) -> str``.

    Each provider family differs only in how the request is shaped and
    where the text sits in the reply; transport and retry are shared.
    """

    def __init__(
        self,
        provider: str,
        model: str,
        api_key: str,
        max_retries: int = _MAX_RETRIES,
        backoff: float = 1.0,
    ):
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.max_retries = max_retries
        self.backoff = backoff

    @property
    def name(self) -> str:
        return f"{self.provider}/{self.model}"

    async def chat(self, system: str, user: str) -> str:
        if self.provider not in ENDPOINTS:
            raise ValueError(f"Unknown provider: {self.provider}")
        url, headers, body = self._request(system, user)
        resp = await self._post(url, headers, body)
        text = self._reply_text(resp.json())
        if not isinstance(text, str) or not text.strip():
            raise ValueError(f"{self.name} returned an empty reply")
        return text

    # -- request / reply shapes ------------------------------------------

    def _request(self, system: str, user: str) -> tuple[str, dict, dict]:
        if self.provider == "anthropic":
            headers = {
                "x-api-key": self.api_key,
                "anthropic-version": "2023-06-01",
            }
            body = {
                "model": self.model,
                "max_tokens": 8192,
                "system": system,
                "messages": [{"role": "user", "content": user}],
            }
            return ENDPOINTS["anthropic"], headers, body

        if self.provider == "google":
            url = ENDPOINTS["google"].format(model=self.model)
            body = {
                "system_instruction": {"parts": [{"text": system}]},
                "contents": [{"role": "user", "parts": [{"text": user}]}],
            }
            return f"{url}?key={self.api_key}", {}, body

        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": 0.7,
        }
        return ENDPOINTS[self.provider], {"Authorization": f"Bearer {self.api_key}"}, body

    def _reply_text(self, data: dict) -> str:
        if self.provider == "anthropic":
            return "".join(
                block.get("text", "") for block in data["content"] if block.get("type", "text") == "text"
            )
        if self.provider == "google":
            # A blocked prompt comes back with no content parts
            parts = data["candidates"][0].get("content", {}).get("parts", [])
            return "".join(part.get("text", "") for part in parts)
        return data["choices"][0]["message"]["content"]

    # -- transport -------------------------------------------------------

    async def _post(self, url: str, headers: dict, body: dict) -> httpx.Response:
        """POST with exponential backoff on rate limits, 5xx and timeouts.

        A fresh AsyncClient per call, so there is nothing to close later.
        """
        async with httpx.AsyncClient(timeout=120) as client:
            for attempt in range(self.max_retries + 1):
                last = attempt == self.max_retries
                try:
                    resp = await client.post(url, headers=headers, json=body)
                except _RETRY_ERRORS as exc:
                    if last:
                        raise
                    logger.warning("%s: %s, retrying (attempt %d)", self.name, exc, attempt + 1)
                else:
                    if resp.status_code not in _RETRY_STATUSES or last:
                        resp.raise_for_status()
                        return resp
                    logger.warning(
                        "%s returned %s, retrying (attempt %d)",
                        self.name, resp.status_code, attempt + 1,
                    )
                    await resp.aclose()
                await anyio.sleep(self.backoff * 2 ** attempt)
        raise AssertionError("unreachable")
