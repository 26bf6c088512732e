"""Provider capabilities.

TextGen — single-turn text generation (system + user → text).
Any object with ``async chat(system, user) -> str`` satisfies it; the
orchestrator never depends on a concrete provider class.
"""

from __future__ import annotations

from typing import Protocol

from .text_gen import ENDPOINTS, HttpTextGen


class TextGen(Protocol):
    async def chat(self, system: str, user: str) -> str: ...


__all__ = ["ENDPOINTS", "HttpTextGen", "TextGen"]
