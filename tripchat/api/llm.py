"""LLM helper functions for the travel chat client.

Streams chat completions from an OpenAI-compatible endpoint (Doubao by
default) and generates short session titles. Every failure on the streaming
path is surfaced as :class:`TransportError` so the orchestrator can tell a
broken turn apart from a reply that simply had no itinerary.
"""

from __future__ import annotations

import logging
import re
from typing import AsyncIterator, Dict, List, Optional, Sequence

import httpx
import openai
from openai import AsyncOpenAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from tripchat.api.config import get_llm_config
from tripchat.api.errors import TransportError
from tripchat.api.models import (
    PLACEHOLDER_SESSION_NAMES,
    ROLE_MODEL,
    SessionMessage,
    StreamChunk,
    UserPreferences,
)
from tripchat.api.prompts import build_title_prompt

logger = logging.getLogger(__name__)

DEFAULT_TITLE = PLACEHOLDER_SESSION_NAMES[1]

_TITLE_STRIP_RE = re.compile(r'["《》]')

_retry_connect = retry(
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=0.5, max=4),
    retry=retry_if_exception_type(openai.APIConnectionError),
    reraise=True,
)


# ---------------------------------------------------------------------------
# Prompt construction helpers
# ---------------------------------------------------------------------------

def build_history(
    previous: Sequence[SessionMessage],
    user_text: str,
    preferences: Optional[UserPreferences] = None,
) -> List[Dict[str, str]]:
    """Map session messages to chat-completions roles and append the new turn.

    The preference context rides along on the outgoing user turn only; it
    is never stored in the session.
    """
    history = [
        {"role": "assistant" if m.role == ROLE_MODEL else "user", "content": m.text}
        for m in previous
    ]
    context = preferences.format_context() if preferences else ""
    content = f"{user_text}\n{context}" if context else user_text
    history.append({"role": "user", "content": content})
    return history


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class ChatTransport:
    """Streaming chat client over the chat-completions protocol."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        cfg = get_llm_config()
        self.api_key = cfg["api_key"] if api_key is None else api_key
        self.base_url = base_url or cfg["base_url"]
        self.model = model or cfg["model"]
        self.title_max_input_chars = cfg["title_max_input_chars"]
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise TransportError("No chat API key configured (set LLM_API_KEY)")
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    @_retry_connect
    async def _open_stream(self, messages: List[Dict[str, str]]):
        return await self._get_client().chat.completions.create(
            model=self.model,
            messages=messages,
            stream=True,
        )

    @_retry_connect
    async def _complete(self, prompt: str):
        return await self._get_client().chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            stream=False,
        )

    async def stream_chat(self, system_prompt: str, history: List[Dict[str, str]]) -> AsyncIterator[StreamChunk]:
        """Yield reply fragments until the server closes the stream.

        Raises:
            TransportError: If the stream cannot be opened or breaks off
        """
        messages = [{"role": "system", "content": system_prompt}, *history]
        logger.debug("Opening chat stream: model=%s messages=%d", self.model, len(messages))

        try:
            stream = await self._open_stream(messages)
            async for event in stream:
                if not event.choices:
                    continue
                content = event.choices[0].delta.content
                if content:
                    yield StreamChunk(text=content)
        except TransportError:
            raise
        except (openai.OpenAIError, httpx.HTTPError) as exc:
            logger.error("Chat stream failed: %s", exc)
            raise TransportError(str(exc)) from exc
        except Exception as exc:
            # a malformed SSE event raises JSONDecodeError from the decoder
            logger.error("Chat stream broke off: %s: %s", type(exc).__name__, exc)
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc

    async def generate_title(self, user_text: str, assistant_text: str) -> str:
        """Return a short session title, or the placeholder title on failure."""
        limit = self.title_max_input_chars
        prompt = build_title_prompt(user_text[:limit], assistant_text[:limit])

        try:
            response = await self._complete(prompt)
            title = (response.choices[0].message.content or "").strip()
        except (TransportError, openai.OpenAIError, httpx.HTTPError, IndexError) as exc:
            logger.warning("Failed to generate title: %s", exc)
            return DEFAULT_TITLE

        return _TITLE_STRIP_RE.sub("", title) or DEFAULT_TITLE


__all__ = ["ChatTransport", "build_history", "DEFAULT_TITLE"]
