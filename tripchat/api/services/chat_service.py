# tripchat/api/services/chat_service.py
"""Service layer driving one chat turn from user input to finalized reply."""

import asyncio
import logging
from dataclasses import replace
from enum import Enum
from typing import Callable, Optional, Set

from tripchat.api.errors import TurnInProgressError
from tripchat.api.extraction import extract_itinerary
from tripchat.api.geocoding import get_geocoder
from tripchat.api.llm import ChatTransport, build_history
from tripchat.api.models import (
    PLACEHOLDER_SESSION_NAMES,
    ROLE_MODEL,
    ROLE_USER,
    ChatSession,
    SessionMessage,
    UserPreferences,
    new_message_id,
    now_ms,
)
from tripchat.api.prompts import SYSTEM_INSTRUCTION
from tripchat.api.services.map_service import GeocodingEnricher
from tripchat.api.streaming import StreamAccumulator

logger = logging.getLogger(__name__)

ERROR_NOTICE = "网络错误，请稍后重试。"
PLACEHOLDER_TEXT = "..."
MIN_MESSAGES_FOR_TITLE = 3


class TurnState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    EXTRACTING = "extracting"
    ENRICHING = "enriching"
    TITLING = "titling"


class ChatOrchestrator:
    """Runs chat turns: stream, extract itinerary, geocode, then title.

    The session passed to :meth:`send_message` is updated in place and
    published through ``on_session_update`` after every visible change, so
    a UI can render the reply as it types. Only one turn may be in flight
    at a time across all sessions, which keeps geocoding lookups serialized
    at the shared enricher; a second send is rejected with
    :class:`TurnInProgressError`.
    """

    def __init__(
        self,
        transport: ChatTransport,
        enricher: Optional[GeocodingEnricher] = None,
        system_prompt: str = SYSTEM_INSTRUCTION,
    ):
        self.transport = transport
        self.enricher = enricher
        self.system_prompt = system_prompt

        self._active_session: Optional[str] = None
        self._state = TurnState.IDLE
        self._title_tasks: Set[asyncio.Task] = set()

        # Callback hooks (set by the caller)
        self.on_session_update: Optional[Callable[[ChatSession], None]] = None
        self.on_session_renamed: Optional[Callable[[ChatSession], None]] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def active_session(self) -> Optional[str]:
        return self._active_session

    def state(self, session_id: Optional[str] = None) -> TurnState:
        """State of the running turn, or IDLE if ``session_id`` is not the one running."""
        if session_id is not None and session_id != self._active_session:
            return TurnState.IDLE
        return self._state

    def is_busy(self, session_id: Optional[str] = None) -> bool:
        """True while any turn is in flight, whichever session it belongs to."""
        return self._active_session is not None

    async def send_message(
        self,
        session: ChatSession,
        text: str,
        preferences: Optional[UserPreferences] = None,
    ) -> ChatSession:
        """Run one turn and return the session with the reply appended.

        Raises:
            TurnInProgressError: If any turn is already running
        """
        if self.is_busy():
            raise TurnInProgressError(self._active_session)

        self._active_session = session.id
        self._set_state(session.id, TurnState.SENDING)
        try:
            await self._run_turn(session, text, preferences or UserPreferences())
        finally:
            self._set_state(session.id, TurnState.IDLE)
            self._active_session = None
        return session

    async def wait_for_titles(self) -> None:
        """Wait for any title requests still running in the background."""
        if self._title_tasks:
            await asyncio.gather(*self._title_tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Turn stages
    # ------------------------------------------------------------------

    async def _run_turn(self, session: ChatSession, text: str, preferences: UserPreferences) -> None:
        history = build_history(session.messages, text, preferences)

        user_msg = SessionMessage(new_message_id(), ROLE_USER, text, now_ms())
        session.messages.append(user_msg)
        self._publish(session)

        self._set_state(session.id, TurnState.STREAMING)
        placeholder = SessionMessage(new_message_id(), ROLE_MODEL, PLACEHOLDER_TEXT, now_ms())
        session.messages.append(placeholder)
        index = len(session.messages) - 1
        self._publish(session)

        def _on_update(snapshot: SessionMessage) -> None:
            session.messages[index] = snapshot
            self._publish(session, touch=False)

        accumulator = StreamAccumulator(placeholder, on_update=_on_update)
        full_text = await accumulator.accumulate(
            self.transport.stream_chat(self.system_prompt, history)
        )

        if accumulator.failure is not None:
            self._fail_turn(session, index, accumulator.message)
            return

        self._set_state(session.id, TurnState.EXTRACTING)
        result = extract_itinerary(full_text)
        session.messages[index] = replace(
            accumulator.message, text=result.cleaned_text, itinerary=result.itinerary
        )
        self._publish(session)

        if result.itinerary is not None and self.enricher is not None:
            self._set_state(session.id, TurnState.ENRICHING)
            try:
                await self.enricher.enrich(result.itinerary, preferences.destination or None)
            except Exception:
                logger.exception("Geocoding failed; keeping itinerary without coordinates")
                for point in result.itinerary.points:
                    point.lat = point.lng = 0.0
            self._publish(session)

        if session.has_placeholder_name and len(session.messages) >= MIN_MESSAGES_FOR_TITLE:
            self._set_state(session.id, TurnState.TITLING)
            self._schedule_title(session, text, result.cleaned_text)

        logger.info(
            f"Turn complete for session {session.id}: "
            f"{len(full_text)} chars, itinerary={'yes' if result.has_itinerary else 'no'}"
        )

    def _fail_turn(self, session: ChatSession, index: int, partial: SessionMessage) -> None:
        """Keep whatever was streamed and append the fixed error notice."""
        if partial.text:
            session.messages[index] = partial
        else:
            del session.messages[index]

        session.messages.append(SessionMessage(new_message_id(), ROLE_MODEL, ERROR_NOTICE, now_ms()))
        self._publish(session)
        logger.error(f"Turn failed for session {session.id}; kept {len(partial.text)} chars of partial reply")

    def _schedule_title(self, session: ChatSession, user_text: str, reply_text: str) -> None:
        task = asyncio.create_task(self._generate_title(session, user_text, reply_text))
        self._title_tasks.add(task)
        task.add_done_callback(self._title_tasks.discard)

    async def _generate_title(self, session: ChatSession, user_text: str, reply_text: str) -> None:
        try:
            title = await self.transport.generate_title(user_text, reply_text)
        except Exception as e:
            logger.warning(f"Title generation failed for session {session.id}: {e}")
            return

        title = (title or "").strip()
        if not title or title in PLACEHOLDER_SESSION_NAMES or not session.has_placeholder_name:
            return

        session.name = title
        session.updated_at = now_ms()
        logger.info(f"Session {session.id} titled '{title}'")
        if self.on_session_renamed:
            self.on_session_renamed(session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, session_id: str, state: TurnState) -> None:
        self._state = state
        logger.debug(f"Session {session_id} -> {state.value}")

    def _publish(self, session: ChatSession, touch: bool = True) -> None:
        if touch:
            session.updated_at = now_ms()
        if self.on_session_update:
            try:
                self.on_session_update(session)
            except Exception as e:
                logger.error(f"on_session_update hook failed: {e}")


def create_chat_orchestrator() -> ChatOrchestrator:
    """Build an orchestrator wired to the configured LLM and geocoder."""
    enricher = GeocodingEnricher.from_config(get_geocoder())
    return ChatOrchestrator(ChatTransport(), enricher)


__all__ = ["ChatOrchestrator", "TurnState", "create_chat_orchestrator", "ERROR_NOTICE"]
