"""Accumulate streamed reply fragments into a live session message."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import AsyncIterable, Callable, Optional

from tripchat.api.errors import TransportError
from tripchat.api.models import SessionMessage, StreamChunk

logger = logging.getLogger(__name__)


class StreamAccumulator:
    """Builds the full reply text from a stream of fragments.

    Each non-empty fragment extends the buffer and publishes a fresh copy of
    the in-progress message carrying the whole buffer, not just the delta.
    A transport failure ends accumulation early but keeps the text received
    so far; the failure is recorded on ``failure`` for the caller.
    """

    def __init__(
        self,
        message: SessionMessage,
        on_update: Optional[Callable[[SessionMessage], None]] = None,
    ):
        self.message = message
        self.text = ""
        self.chunk_count = 0
        self.failure: Optional[TransportError] = None
        self._on_update = on_update

    async def accumulate(self, chunks: AsyncIterable[StreamChunk]) -> str:
        """Drain ``chunks`` and return the final buffer."""
        try:
            async for chunk in chunks:
                if not chunk.text:
                    continue
                self.text += chunk.text
                self.chunk_count += 1
                self.message = replace(self.message, text=self.text)
                if self._on_update:
                    self._on_update(self.message)
        except TransportError as exc:
            self.failure = exc
            logger.warning(f"Stream broke off after {len(self.text)} chars: {exc}")

        self.message = replace(self.message, text=self.text)
        logger.debug(f"Stream finished: {self.chunk_count} chunks, {len(self.text)} chars")
        return self.text
