# recitation/playback.py
"""
Continuous per-verse playback: one clip at a time, the next one preloaded in the background,
bounded by an optional range, with per-verse repetition and media-session controls.

Everything runs on one asyncio event loop. The only overlap is the clip that is playing and
the clip being fetched for later; both fetches are tasks that can be cancelled, and every
completion checks a request id or token before touching shared state.
"""
import asyncio
import math
import sys
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Union

from colorama import Fore, Style
from pydantic import ValidationError

from .audio_output import AudioOutput, AudioOutputService
from .clip_fetcher import ClipBuffer
from .config import NEAR_END_SLACK, WATCHDOG_INTERVAL
from .errors import AudioOutputError, ClipUnavailable, DecodeOrNetworkFailure
from .media_session import MediaMetadata, MediaSessionHost
from .models import (
    AudioSettings, PlaybackRange, PlaybackState, PlaylistItem, PlayResult, PlayStatus, VerseRef,
)


class AdvanceDecision(str, Enum):
    REPEAT = "repeat"
    STOP_RANGE_END = "stop_range_end"
    STOP_CONTEXT_END = "stop_context_end"
    ADVANCE = "advance"


def decide_advance(current_key: VerseRef, repeats_completed: int, repeat_count: Union[int, float],
                   playback_range: Optional[PlaybackRange], is_last: bool) -> AdvanceDecision:
    """What happens when the current clip has finished one playthrough."""
    if math.isinf(repeat_count) or repeats_completed + 1 < repeat_count:
        return AdvanceDecision.REPEAT
    if playback_range is not None and playback_range.end <= current_key:
        return AdvanceDecision.STOP_RANGE_END
    if is_last:
        return AdvanceDecision.STOP_CONTEXT_END
    return AdvanceDecision.ADVANCE


class PlaybackSession:
    """The 'now playing' slot: the output, the current clip and at most one preloaded clip."""

    def __init__(self, output: AudioOutput):
        self.output = output
        self.state = PlaybackState.IDLE
        self.current_item: Optional[PlaylistItem] = None
        self.current_buffer: Optional[ClipBuffer] = None
        self.repeats_completed = 0
        self.backup_tried = False
        self.fetch_task: Optional[asyncio.Task] = None
        self.preload_task: Optional[asyncio.Task] = None
        self.preload_key: Optional[VerseRef] = None
        self.preload_buffer: Optional[ClipBuffer] = None
        self.preload_token = 0
        # Bumped on every playthrough; an end event is handled once per generation
        self.generation = 0
        self.handled_generation = -1
        self.watchdog_task: Optional[asyncio.Task] = None
        self.closed = False

    @property
    def current_key(self) -> Optional[VerseRef]:
        return self.current_item.verse_key if self.current_item else None

    def cancel_fetch(self):
        if self.fetch_task and not self.fetch_task.done():
            self.fetch_task.cancel()
        self.fetch_task = None

    def cancel_preload(self):
        self.preload_token += 1
        if self.preload_task and not self.preload_task.done():
            self.preload_task.cancel()
        self.preload_task = None
        self.preload_key = None
        if self.preload_buffer:
            self.preload_buffer.release()
            self.preload_buffer = None

    def take_preloaded(self, key: VerseRef) -> Optional[ClipBuffer]:
        buffer = self.preload_buffer
        if buffer is None or buffer.key != key:
            return None
        self.preload_buffer = None
        self.preload_key = None
        return buffer

    def release_current(self):
        if self.current_buffer:
            self.current_buffer.release()
            self.current_buffer = None


class PlaybackEngine:
    """
    Plays a playlist (verses of a surah or juz in document order) clip by clip.

    Public operations never raise; outcomes come back as PlayResult. `fetcher` is any
    object with `async fetch(key, url, backup_url=None) -> ClipBuffer` (ClipFetcher in
    production).
    """

    def __init__(self, fetcher, output_service: Optional[AudioOutputService] = None,
                 media_session: Optional[MediaSessionHost] = None,
                 settings: Optional[AudioSettings] = None,
                 on_auto_scroll: Optional[Callable[[PlaylistItem], None]] = None):
        self.fetcher = fetcher
        self.output_service = output_service or AudioOutputService.instance()
        self.media_session = media_session
        self.settings = settings or AudioSettings()
        self.on_auto_scroll = on_auto_scroll
        self.range: Optional[PlaybackRange] = None
        self.session: Optional[PlaybackSession] = None
        self._items: List[PlaylistItem] = []
        self._index: Dict[VerseRef, int] = {}
        self._request_id = 0
        self._transition_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        # Checked once: a host without audio support gets UNSUPPORTED from every play()
        self.supported = self.output_service.supported
        self.speed_supported = self.output_service.supports_speed

    # --- Context ---

    @property
    def playlist(self) -> List[PlaylistItem]:
        return list(self._items)

    @property
    def state(self) -> PlaybackState:
        return self.session.state if self.session else PlaybackState.IDLE

    @property
    def current_key(self) -> Optional[VerseRef]:
        return self.session.current_key if self.session else None

    def set_playlist(self, items: Sequence[PlaylistItem], playback_range: Optional[PlaybackRange] = None) -> None:
        """Replace the playback context. The previous session (output and buffers) is torn down first."""
        self._teardown()
        self._items = list(items)
        self._index = {item.verse_key: i for i, item in enumerate(self._items)}
        self.range = playback_range

    def set_range(self, playback_range: Optional[PlaybackRange]) -> None:
        """Change the range without interrupting the current clip."""
        self.range = playback_range
        session = self.session
        if session and session.state is PlaybackState.PLAYING:
            self._schedule_preload(session)

    def _item_for(self, key: VerseRef) -> Optional[PlaylistItem]:
        index = self._index.get(key)
        return self._items[index] if index is not None else None

    def _is_last(self, key: VerseRef) -> bool:
        index = self._index.get(key)
        return index is None or index == len(self._items) - 1

    def _next_playable(self, key: VerseRef) -> Optional[PlaylistItem]:
        """Next item after `key` that has a clip, never past the range end"""
        index = self._index.get(key)
        if index is None:
            return None
        for item in self._items[index + 1:]:
            if self.range is not None and self.range.end < item.verse_key:
                return None
            if item.url or item.backup_url:
                return item
        return None

    # --- Session lifecycle ---

    def _ensure_session(self) -> PlaybackSession:
        if self.session is None:
            self._loop = asyncio.get_running_loop()
            output = self.output_service.acquire(self, on_revoke=lambda: self._teardown(release_output=False))
            session = PlaybackSession(output)
            output.on_ended = lambda: self._from_output(session, None)
            output.on_error = lambda exc: self._from_output(session, exc)
            session.watchdog_task = asyncio.ensure_future(self._watchdog(session))
            self.session = session
        return self.session

    def _teardown(self, release_output: bool = True) -> None:
        # Any play() still waiting on a fetch is now stale
        self._request_id += 1
        session, self.session = self.session, None
        if session is None:
            return
        session.closed = True
        current = asyncio.current_task() if self._loop and self._loop.is_running() else None
        for task in (session.watchdog_task, self._transition_task):
            if task and not task.done() and task is not current:
                task.cancel()
        self._transition_task = None
        session.cancel_fetch()
        session.cancel_preload()
        session.output.on_ended = None
        session.output.on_error = None
        self._unload_output(session)
        session.release_current()
        session.state = PlaybackState.IDLE
        if self.media_session:
            self.media_session.clear()
        if release_output:
            self.output_service.release(self)

    async def close(self) -> None:
        self._teardown()

    # --- Transport ---

    async def play(self, key: Union[str, VerseRef], use_preloaded: bool = False) -> PlayResult:
        try:
            key = VerseRef.parse(key)
        except ValueError as e:
            return PlayResult(status=PlayStatus.FAILED, error=e)
        if not self.supported:
            return PlayResult(status=PlayStatus.UNSUPPORTED, verse_key=key)

        session = self.session
        if session and session.current_key == key and session.state in (PlaybackState.PLAYING, PlaybackState.PAUSED):
            # Same verse: toggle, never restart
            return self.pause() if session.state is PlaybackState.PLAYING else self.resume()

        item = self._item_for(key)
        if item is None:
            return PlayResult(status=PlayStatus.CLIP_UNAVAILABLE, verse_key=key,
                              error=ClipUnavailable(str(key), "not in the current playlist"))
        if self.range is not None and not self.range.contains(key):
            return PlayResult(status=PlayStatus.OUT_OF_RANGE, verse_key=key)
        if not item.url and not item.backup_url:
            return PlayResult(status=PlayStatus.CLIP_UNAVAILABLE, verse_key=key, error=ClipUnavailable(str(key)))
        return await self._start_track(item, use_preloaded)

    def pause(self) -> PlayResult:
        session = self.session
        if session is not None and session.state is PlaybackState.LOADING:
            # Abandon the download; resume() loads the clip again
            self._request_id += 1
            session.cancel_fetch()
            session.cancel_preload()
            session.state = PlaybackState.PAUSED
            return PlayResult(status=PlayStatus.PAUSED, verse_key=session.current_key)
        if session is None or session.state is not PlaybackState.PLAYING:
            return PlayResult(status=PlayStatus.NO_OP, verse_key=self.current_key)
        try:
            session.output.pause()
        except AudioOutputError as e:
            return PlayResult(status=PlayStatus.FAILED, verse_key=session.current_key, error=e)
        session.state = PlaybackState.PAUSED
        # A paused session holds no network resources
        session.cancel_preload()
        return PlayResult(status=PlayStatus.PAUSED, verse_key=session.current_key)

    def resume(self) -> PlayResult:
        session = self.session
        if session is None or session.state is not PlaybackState.PAUSED:
            return PlayResult(status=PlayStatus.NO_OP, verse_key=self.current_key)
        if session.current_buffer is None:
            # Paused before the clip finished loading
            item = session.current_item
            session.state = PlaybackState.LOADING
            self._transition_task = asyncio.ensure_future(self._start_track(item, use_preloaded=False))
            return PlayResult(status=PlayStatus.RESUMED, verse_key=item.verse_key)
        try:
            session.output.resume()
        except AudioOutputError as e:
            return PlayResult(status=PlayStatus.FAILED, verse_key=session.current_key, error=e)
        session.state = PlaybackState.PLAYING
        self._schedule_preload(session)
        return PlayResult(status=PlayStatus.RESUMED, verse_key=session.current_key)

    def stop(self) -> PlayResult:
        session = self.session
        if session is None or session.current_item is None:
            return PlayResult(status=PlayStatus.NO_OP)
        self._request_id += 1
        key = session.current_key
        session.cancel_fetch()
        self._finish(session, PlaybackState.IDLE)
        return PlayResult(status=PlayStatus.STOPPED, verse_key=key)

    def seek(self, seconds: float) -> PlayResult:
        session = self.session
        if session is None or session.state not in (PlaybackState.PLAYING, PlaybackState.PAUSED) \
                or session.current_buffer is None:
            return PlayResult(status=PlayStatus.NO_OP, verse_key=self.current_key)
        try:
            session.output.seek(seconds)
        except AudioOutputError as e:
            return PlayResult(status=PlayStatus.FAILED, verse_key=session.current_key, error=e)
        session.cancel_preload()
        if session.state is PlaybackState.PLAYING:
            self._schedule_preload(session)
        return PlayResult(status=PlayStatus.RESUMED if session.state is PlaybackState.PLAYING else PlayStatus.PAUSED,
                          verse_key=session.current_key)

    async def play_next(self) -> PlayResult:
        """Manual skip: ignores remaining repeats, stops at the range or context end."""
        session = self.session
        key = self.current_key
        if session is None or key is None:
            return PlayResult(status=PlayStatus.NO_OP)
        decision = decide_advance(key, 0, 1, self.range, self._is_last(key))
        if decision is AdvanceDecision.STOP_RANGE_END:
            self._finish(session, PlaybackState.RANGE_BOUNDARY)
            return PlayResult(status=PlayStatus.STOPPED, verse_key=key)
        if decision is AdvanceDecision.STOP_CONTEXT_END:
            self._finish(session, PlaybackState.ENDED)
            return PlayResult(status=PlayStatus.STOPPED, verse_key=key)
        next_item = self._items[self._index[key] + 1]
        return await self.play(next_item.verse_key, use_preloaded=True)

    async def play_previous(self) -> PlayResult:
        key = self.current_key
        if key is None:
            return PlayResult(status=PlayStatus.NO_OP)
        index = self._index.get(key)
        if (self.range is not None and key <= self.range.start) or not index:
            return PlayResult(status=PlayStatus.NO_OP, verse_key=key)
        return await self.play(self._items[index - 1].verse_key)

    def update_settings(self, repeat_count: Optional[Union[int, float]] = None, auto_scroll: Optional[bool] = None,
                        playback_speed: Optional[float] = None) -> bool:
        """Apply new settings. Speed applies to the live clip at once; repeat count at the next clip end."""
        if playback_speed is not None and not self.speed_supported:
            print(f"{Fore.YELLOW}Warning: This audio output plays at a fixed rate; speed unchanged.{Style.RESET_ALL}", file=sys.stderr)
            return False
        try:
            if repeat_count is not None:
                self.settings.repeat_count = repeat_count
            if auto_scroll is not None:
                self.settings.auto_scroll = auto_scroll
            if playback_speed is not None:
                self.settings.playback_speed = playback_speed
        except ValidationError as e:
            print(f"{Fore.YELLOW}Warning: Invalid audio setting ignored: {e.errors()[0]['msg']}{Style.RESET_ALL}", file=sys.stderr)
            return False
        if playback_speed is not None and self.session is not None:
            self.session.output.set_speed(self.settings.playback_speed)
        return True

    async def wait_for_transition(self) -> None:
        """Wait until pending end-of-clip handling (repeat, advance, stop) has settled."""
        while self._transition_task is not None and not self._transition_task.done():
            await asyncio.wait({self._transition_task})

    # --- Track start ---

    async def _start_track(self, item: PlaylistItem, use_preloaded: bool) -> PlayResult:
        self._request_id += 1
        request_id = self._request_id
        session = self._ensure_session()

        session.cancel_fetch()
        buffer = session.take_preloaded(item.verse_key) if use_preloaded else None
        session.cancel_preload()
        session.generation += 1
        self._unload_output(session)
        session.release_current()
        session.current_item = item
        session.repeats_completed = 0
        session.backup_tried = False
        session.state = PlaybackState.LOADING

        if buffer is None:
            buffer, result = await self._fetch(session, item, item.url, item.backup_url, request_id)
            if result is not None:
                return result
        return await self._begin(session, item, buffer, request_id)

    async def _fetch(self, session: PlaybackSession, item: PlaylistItem, url: Optional[str],
                     backup_url: Optional[str], request_id: int):
        """(buffer, None) on success, (None, PlayResult) otherwise"""
        key = item.verse_key
        task = asyncio.ensure_future(self.fetcher.fetch(key, url, backup_url))
        session.fetch_task = task
        try:
            buffer = await task
        except asyncio.CancelledError:
            if request_id != self._request_id:
                return None, PlayResult(status=PlayStatus.SUPERSEDED, verse_key=key)
            raise
        except ClipUnavailable as e:
            if request_id != self._request_id:
                return None, PlayResult(status=PlayStatus.SUPERSEDED, verse_key=key)
            session.state = PlaybackState.IDLE
            return None, PlayResult(status=PlayStatus.CLIP_UNAVAILABLE, verse_key=key, error=e)
        except DecodeOrNetworkFailure as e:
            if request_id != self._request_id:
                return None, PlayResult(status=PlayStatus.SUPERSEDED, verse_key=key)
            # The fetcher already fell back to the backup source
            session.backup_tried = True
            return None, self._fail(session, e)
        finally:
            if session.fetch_task is task:
                session.fetch_task = None

        if request_id != self._request_id or session.closed:
            buffer.release()
            return None, PlayResult(status=PlayStatus.SUPERSEDED, verse_key=key)
        if backup_url and buffer.source_url == backup_url:
            session.backup_tried = True
        return buffer, None

    async def _begin(self, session: PlaybackSession, item: PlaylistItem, buffer: ClipBuffer, request_id: int) -> PlayResult:
        session.current_buffer = buffer
        try:
            session.output.load(buffer.path, buffer.duration)
            if self.speed_supported:
                session.output.set_speed(self.settings.playback_speed)
            session.output.play()
        except AudioOutputError as e:
            return await self._recover(session, item, DecodeOrNetworkFailure(str(item.verse_key), str(e)), request_id)

        session.generation += 1
        session.state = PlaybackState.PLAYING
        self._publish_media_session(item)
        self._emit_auto_scroll(item)
        self._schedule_preload(session)
        return PlayResult(status=PlayStatus.STARTED, verse_key=item.verse_key)

    async def _recover(self, session: PlaybackSession, item: PlaylistItem, error: DecodeOrNetworkFailure,
                       request_id: int) -> PlayResult:
        """Retry once from the backup URL, otherwise treat the failure as the end of the clip"""
        print(f"{Fore.YELLOW}Warning: {error}{Style.RESET_ALL}", file=sys.stderr)
        self._unload_output(session)
        session.release_current()
        if item.backup_url and not session.backup_tried:
            session.backup_tried = True
            session.state = PlaybackState.LOADING
            buffer, result = await self._fetch(session, item, item.backup_url, None, request_id)
            if result is not None:
                return result
            return await self._begin(session, item, buffer, request_id)
        return self._fail(session, error)

    def _fail(self, session: PlaybackSession, error: Exception) -> PlayResult:
        key = session.current_key
        session.state = PlaybackState.ENDED
        self._transition_task = asyncio.ensure_future(self._after_clip(session, skip_repeats=True))
        return PlayResult(status=PlayStatus.FAILED, verse_key=key, error=error)

    # --- End of clip ---

    def _from_output(self, session: PlaybackSession, error: Optional[Exception]) -> None:
        """Output listener; may be called from the backend's own thread."""
        generation = session.generation
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._on_clip_end(session, generation, error)
        elif self._loop is not None:
            self._loop.call_soon_threadsafe(self._on_clip_end, session, generation, error)

    def _on_clip_end(self, session: PlaybackSession, generation: int, error: Optional[Exception]) -> None:
        if session.closed or session is not self.session or generation != session.generation:
            return
        if session.handled_generation == generation or session.state is not PlaybackState.PLAYING:
            return
        session.handled_generation = generation
        if error is None:
            self._transition_task = asyncio.ensure_future(self._after_clip(session))
        else:
            item = session.current_item
            failure = DecodeOrNetworkFailure(str(item.verse_key), str(error))
            self._transition_task = asyncio.ensure_future(self._recover(session, item, failure, self._request_id))

    async def _watchdog(self, session: PlaybackSession) -> None:
        """Secondary end-of-clip trigger for outputs whose end event never arrives"""
        while not session.closed:
            await asyncio.sleep(WATCHDOG_INTERVAL)
            if session.state is not PlaybackState.PLAYING:
                continue
            output = session.output
            stalled = output.duration > 0 and output.position >= output.duration + NEAR_END_SLACK
            if output.is_finished() or stalled:
                self._on_clip_end(session, session.generation, None)

    async def _after_clip(self, session: PlaybackSession, skip_repeats: bool = False) -> None:
        if session.closed or session is not self.session:
            return
        key = session.current_key
        repeat_count = 1 if skip_repeats else self.settings.repeat_count
        decision = decide_advance(key, session.repeats_completed, repeat_count, self.range, self._is_last(key))

        if decision is AdvanceDecision.REPEAT:
            session.repeats_completed += 1
            session.generation += 1
            try:
                session.output.rewind()
                session.output.play()
            except AudioOutputError as e:
                self._fail(session, DecodeOrNetworkFailure(str(key), str(e)))
            return
        if decision is AdvanceDecision.STOP_RANGE_END:
            self._finish(session, PlaybackState.RANGE_BOUNDARY)
            return
        next_item = self._next_playable(key) if decision is AdvanceDecision.ADVANCE else None
        if next_item is None:
            self._finish(session, PlaybackState.RANGE_BOUNDARY if self.range else PlaybackState.ENDED)
            return
        await self._start_track(next_item, use_preloaded=True)

    @staticmethod
    def _unload_output(session: PlaybackSession) -> None:
        # The backend must let go of the file before the buffer deletes it
        try:
            session.output.unload()
        except AudioOutputError as e:
            print(f"{Fore.YELLOW}Note: Output error while unloading: {e}{Style.RESET_ALL}", file=sys.stderr)

    def _finish(self, session: PlaybackSession, state: PlaybackState) -> None:
        session.generation += 1
        session.cancel_preload()
        self._unload_output(session)
        session.release_current()
        session.state = state

    # --- Preload ---

    def _schedule_preload(self, session: PlaybackSession) -> None:
        session.cancel_preload()
        if session.state is not PlaybackState.PLAYING or session.current_key is None:
            return
        next_item = self._next_playable(session.current_key)
        if next_item is None:
            return
        session.preload_key = next_item.verse_key
        session.preload_task = asyncio.ensure_future(self._preload(session, next_item, session.preload_token))

    async def _preload(self, session: PlaybackSession, item: PlaylistItem, token: int) -> None:
        try:
            buffer = await self.fetcher.fetch(item.verse_key, item.url, item.backup_url)
        except (ClipUnavailable, DecodeOrNetworkFailure) as e:
            print(f"{Fore.YELLOW}Preload skipped: {e}{Style.RESET_ALL}", file=sys.stderr)
            return
        if token != session.preload_token or session.closed:
            # Superseded while downloading: never adopted
            buffer.release()
            return
        if session.preload_buffer is not None:
            session.preload_buffer.release()
        session.preload_buffer = buffer
        session.preload_task = None

    # --- Side effects ---

    def _publish_media_session(self, item: PlaylistItem) -> None:
        host = self.media_session
        if host is None:
            return
        host.set_metadata(MediaMetadata(title=f"Ayah {item.verse_key}", album=item.text[:60]))
        host.set_action_handler("play", self.resume)
        host.set_action_handler("pause", self.pause)
        host.set_action_handler("previoustrack", lambda: asyncio.ensure_future(self.play_previous()))
        host.set_action_handler("nexttrack", lambda: asyncio.ensure_future(self.play_next()))

    def _emit_auto_scroll(self, item: PlaylistItem) -> None:
        if not self.settings.auto_scroll or self.on_auto_scroll is None:
            return
        asyncio.get_running_loop().call_soon(self._run_auto_scroll, item)

    def _run_auto_scroll(self, item: PlaylistItem) -> None:
        if self.on_auto_scroll is None:
            return
        try:
            self.on_auto_scroll(item)
        except Exception as e:
            print(f"{Fore.YELLOW}Warning: Auto-scroll handler failed: {e}{Style.RESET_ALL}", file=sys.stderr)
