# recitation/errors.py


class RecitationError(Exception):
    """Base exception for navigation/playback errors"""


class QuranAPIError(RecitationError):
    """Base exception for Quran content API errors"""


class ClipUnavailable(RecitationError):
    """No playable audio URL exists for the requested verse."""

    def __init__(self, verse_key: str, reason: str = "no audio URL"):
        super().__init__(f"Clip unavailable for {verse_key}: {reason}")
        self.verse_key = verse_key


class DecodeOrNetworkFailure(RecitationError):
    """The active clip failed while downloading, decoding or playing."""

    def __init__(self, verse_key: str, detail: str = ""):
        super().__init__(f"Playback failure for {verse_key}: {detail}" if detail else f"Playback failure for {verse_key}")
        self.verse_key = verse_key


class SearchUnavailable(RecitationError):
    """Remote search failed or returned an unusable payload."""


class AudioOutputError(RecitationError):
    """The audio output backend rejected a clip or a transport command."""
