# recitation/audio_output.py
import sys
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

import pygame
from colorama import Fore, Style
from mutagen import MutagenError
from mutagen.mp3 import MP3

from .errors import AudioOutputError


class AudioOutput(ABC):
    """
    One audio output handle. Implementations report a natural end by calling
    `on_ended` and a mid-play failure by calling `on_error(exc)`; the engine also
    polls `is_finished()` in case the end event never arrives.
    """
    supported = True
    # False when set_speed() cannot change the playback rate
    supports_speed = True

    def __init__(self):
        self.on_ended: Optional[Callable[[], None]] = None
        self.on_error: Optional[Callable[[Exception], None]] = None

    def _emit_ended(self):
        if self.on_ended:
            self.on_ended()

    def _emit_error(self, exc: Exception):
        if self.on_error:
            self.on_error(exc)

    @abstractmethod
    def load(self, path: Path, duration: Optional[float] = None) -> None: ...

    @abstractmethod
    def play(self) -> None: ...

    @abstractmethod
    def pause(self) -> None: ...

    @abstractmethod
    def resume(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def rewind(self) -> None: ...

    @abstractmethod
    def seek(self, seconds: float) -> None: ...

    @abstractmethod
    def set_speed(self, rate: float) -> None: ...

    @abstractmethod
    def unload(self) -> None: ...

    @abstractmethod
    def is_finished(self) -> bool: ...

    @property
    @abstractmethod
    def position(self) -> float: ...

    @property
    @abstractmethod
    def duration(self) -> float: ...


class PygameAudioOutput(AudioOutput):
    """pygame.mixer.music backend. The mixer has no rate control, so clips always play at 1.0x."""
    supports_speed = False

    def __init__(self):
        super().__init__()
        try:
            pygame.mixer.init()
        except pygame.error as e:
            print(f"{Fore.RED}Error initializing pygame mixer: {e}{Style.RESET_ALL}", file=sys.stderr)
            print(f"{Fore.YELLOW}Audio playback will be disabled.{Style.RESET_ALL}", file=sys.stderr)
            self.supported = False
        self.current_audio: Optional[Path] = None
        self._duration = 0.0
        self._offset = 0.0        # position at the last play/seek/pause
        self._start_time = 0.0
        self.is_playing = False
        self.is_paused = False

    def _require(self):
        if not self.supported:
            raise AudioOutputError("Audio system not initialized")
        if not self.current_audio:
            raise AudioOutputError("No clip loaded")

    def load(self, path: Path, duration: Optional[float] = None) -> None:
        if not self.supported:
            raise AudioOutputError("Audio system not initialized")
        path = Path(path)
        try:
            if duration is None:
                duration = MP3(str(path)).info.length
            pygame.mixer.music.load(str(path))
        except (pygame.error, MutagenError, OSError) as e:
            raise AudioOutputError(f"Cannot load {path.name}: {e}")
        self.current_audio = path
        self._duration = duration or 0.0
        self._offset = 0.0
        self.is_playing = False
        self.is_paused = False

    def play(self) -> None:
        self._require()
        try:
            pygame.mixer.music.play(start=self._offset)
        except pygame.error as e:
            raise AudioOutputError(f"Error playing audio: {e}")
        self._start_time = time.monotonic() - self._offset
        self.is_playing = True
        self.is_paused = False

    def pause(self) -> None:
        if not self.is_playing:
            return
        try:
            pygame.mixer.music.pause()
        except pygame.error as e:
            raise AudioOutputError(f"Error pausing audio: {e}")
        self._offset = self.position
        self.is_playing = False
        self.is_paused = True

    def resume(self) -> None:
        if not self.is_paused:
            return
        try:
            pygame.mixer.music.unpause()
        except pygame.error as e:
            raise AudioOutputError(f"Error resuming audio: {e}")
        self._start_time = time.monotonic() - self._offset
        self.is_playing = True
        self.is_paused = False

    def stop(self) -> None:
        if not self.supported:
            return
        try:
            pygame.mixer.music.stop()
        except pygame.error as e:
            print(f"{Fore.YELLOW}Note: Pygame mixer error during stop: {e}{Style.RESET_ALL}", file=sys.stderr)
        self._offset = 0.0
        self.is_playing = False
        self.is_paused = False

    def rewind(self) -> None:
        self._offset = 0.0
        self._start_time = time.monotonic()

    def seek(self, seconds: float) -> None:
        self._require()
        target = max(0.0, min(seconds, self._duration - 0.1)) if self._duration > 0 else 0.0
        was_paused = self.is_paused
        self._offset = target
        if self.is_playing or was_paused:
            # Stop/play(start=...) is more reliable than set_pos across codecs
            self.play()
            if was_paused:
                self.pause()

    def set_speed(self, rate: float) -> None:
        if rate != 1.0:
            raise AudioOutputError("The pygame mixer cannot change playback rate")

    def unload(self) -> None:
        if not self.supported:
            return
        self.stop()
        try:
            pygame.mixer.music.unload()  # Releases the file handle
        except pygame.error as e:
            print(f"{Fore.YELLOW}Note: Pygame mixer error during unload: {e}{Style.RESET_ALL}", file=sys.stderr)
        self.current_audio = None
        self._duration = 0.0

    def is_finished(self) -> bool:
        if not self.is_playing or not self.supported:
            return False
        return not pygame.mixer.music.get_busy()

    @property
    def position(self) -> float:
        if self.is_playing:
            # Not clamped: running past the duration is how a stalled end shows up
            return time.monotonic() - self._start_time
        return self._offset

    @property
    def duration(self) -> float:
        return self._duration


class AudioOutputService:
    """
    Holder of the single process-wide audio output.

    Whoever needs playback acquires it; acquiring for a new owner revokes the
    previous owner first (its on_revoke callback tears its session down).
    """
    _instance: Optional["AudioOutputService"] = None

    def __init__(self, factory: Callable[[], AudioOutput] = PygameAudioOutput):
        self._factory = factory
        self._output: Optional[AudioOutput] = None
        self._owner = None
        self._on_revoke: Optional[Callable[[], None]] = None

    @classmethod
    def instance(cls) -> "AudioOutputService":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def _get_output(self) -> AudioOutput:
        if self._output is None:
            self._output = self._factory()
        return self._output

    @property
    def supported(self) -> bool:
        return self._get_output().supported

    @property
    def supports_speed(self) -> bool:
        return self._get_output().supports_speed

    @property
    def owner(self):
        return self._owner

    def acquire(self, owner, on_revoke: Optional[Callable[[], None]] = None) -> AudioOutput:
        if self._owner is not None and self._owner is not owner:
            previous_revoke = self._on_revoke
            self._owner, self._on_revoke = None, None
            if previous_revoke:
                previous_revoke()
        self._owner, self._on_revoke = owner, on_revoke
        return self._get_output()

    def release(self, owner) -> None:
        if owner is not self._owner:
            return
        self._owner, self._on_revoke = None, None
        if self._output is not None:
            self._output.on_ended = None
            self._output.on_error = None
            self._output.unload()
