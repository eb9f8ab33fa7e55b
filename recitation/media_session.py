# recitation/media_session.py
from typing import Callable, Dict, Optional

from pydantic import BaseModel

MEDIA_ACTIONS = ("play", "pause", "previoustrack", "nexttrack")


class MediaMetadata(BaseModel):
    title: str
    artist: str = "Quran Recitation"
    album: str = ""


class MediaSessionHost:
    """
    Now-playing metadata plus the transport handlers a host (OS controls, terminal keys)
    invokes. Handlers may fire at any time, including while nothing is playing.
    """

    def __init__(self):
        self.metadata: Optional[MediaMetadata] = None
        self._handlers: Dict[str, Callable[[], object]] = {}

    def set_metadata(self, metadata: Optional[MediaMetadata]) -> None:
        self.metadata = metadata

    def set_action_handler(self, action: str, handler: Optional[Callable[[], object]]) -> None:
        if action not in MEDIA_ACTIONS:
            raise ValueError(f"Unknown media action: {action}")
        if handler is None:
            self._handlers.pop(action, None)
        else:
            self._handlers[action] = handler

    def has_handler(self, action: str) -> bool:
        return action in self._handlers

    def invoke(self, action: str):
        """Run the handler for `action`; returns its result, or None when no handler is set."""
        handler = self._handlers.get(action)
        return handler() if handler else None

    def clear(self) -> None:
        self.metadata = None
        self._handlers.clear()
