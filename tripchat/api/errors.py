"""Exceptions shared across the chat pipeline."""


class TransportError(Exception):
    """The chat stream could not be opened or broke off mid-stream."""


class TurnInProgressError(Exception):
    """A message was sent while another turn is still in flight."""

    def __init__(self, session_id: str):
        super().__init__(f"A turn is already in progress for session {session_id}")
        self.session_id = session_id
