"""
Unit tests for the playback engine: repetition, ranges, preloading, supersession,
error recovery and teardown. Uses an in-memory audio output and a scripted clip fetcher.
Run: python -m pytest tests/test_playback.py -v
"""

import asyncio
import math
import tempfile
import unittest
from unittest import mock

from recitation.audio_output import AudioOutputService
from recitation.clip_fetcher import ClipBuffer
from recitation.media_session import MediaSessionHost
from recitation.models import AudioSettings, PlaybackRange, PlaybackState, PlayStatus, VerseRef
from recitation.playback import AdvanceDecision, PlaybackEngine, decide_advance

from tests.fakes import FakeAudioOutput, FakeFetcher, FixedRateAudioOutput, UnsupportedAudioOutput, make_playlist


def key(text):
    return VerseRef.parse(text)


async def settle(rounds=10):
    """Let background tasks (preload, transitions) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestDecideAdvance(unittest.TestCase):

    def test_repeat_until_count_reached(self):
        self.assertEqual(decide_advance(key("1:1"), 0, 3, None, False), AdvanceDecision.REPEAT)
        self.assertEqual(decide_advance(key("1:1"), 1, 3, None, False), AdvanceDecision.REPEAT)
        self.assertEqual(decide_advance(key("1:1"), 2, 3, None, False), AdvanceDecision.ADVANCE)

    def test_infinite_repeat_never_advances(self):
        self.assertEqual(decide_advance(key("1:7"), 1000, math.inf, None, True), AdvanceDecision.REPEAT)

    def test_range_end(self):
        playback_range = PlaybackRange.parse("1:2-1:4")
        self.assertEqual(decide_advance(key("1:4"), 0, 1, playback_range, False), AdvanceDecision.STOP_RANGE_END)
        self.assertEqual(decide_advance(key("1:3"), 0, 1, playback_range, False), AdvanceDecision.ADVANCE)

    def test_context_end(self):
        self.assertEqual(decide_advance(key("1:7"), 0, 1, None, True), AdvanceDecision.STOP_CONTEXT_END)


class EngineTestCase(unittest.IsolatedAsyncioTestCase):

    output_class = FakeAudioOutput

    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.output = self.output_class()
        self.service = AudioOutputService(factory=lambda: self.output)
        self.fetcher = FakeFetcher(self._tmp.name)
        self.media_session = MediaSessionHost()
        self.scrolled = []
        self.engine = PlaybackEngine(self.fetcher, output_service=self.service, media_session=self.media_session,
                                     settings=AudioSettings(), on_auto_scroll=lambda item: self.scrolled.append(str(item.verse_key)))
        self.engine.set_playlist(make_playlist())

    async def asyncTearDown(self):
        await self.engine.close()

    async def end_clip(self):
        self.output.finish()
        await self.engine.wait_for_transition()


class TestPlay(EngineTestCase):

    async def test_play_starts_clip(self):
        result = await self.engine.play("1:1")
        self.assertEqual(result.status, PlayStatus.STARTED)
        self.assertEqual(self.engine.state, PlaybackState.PLAYING)
        self.assertEqual(self.output.plays, 1)
        self.assertEqual(self.output.loaded.name, self.fetcher.buffers[0].path.name)

    async def test_invalid_key_fails(self):
        result = await self.engine.play("not-a-key")
        self.assertEqual(result.status, PlayStatus.FAILED)

    async def test_same_key_toggles_instead_of_restarting(self):
        await self.engine.play("1:1")
        paused = await self.engine.play("1:1")
        resumed = await self.engine.play("1:1")
        self.assertEqual(paused.status, PlayStatus.PAUSED)
        self.assertEqual(resumed.status, PlayStatus.RESUMED)
        self.assertEqual(self.output.plays, 1)
        self.assertEqual(self.output.load_count, 1)

    async def test_missing_clip_is_unavailable(self):
        self.engine.set_playlist(make_playlist(missing=(2,)))
        self.assertEqual((await self.engine.play("1:2")).status, PlayStatus.CLIP_UNAVAILABLE)
        self.assertEqual((await self.engine.play("2:1")).status, PlayStatus.CLIP_UNAVAILABLE)
        self.assertEqual(self.fetcher.calls, [])

    async def test_auto_scroll_follows_current_verse(self):
        await self.engine.play("1:1")
        await settle()
        await self.end_clip()
        await settle()
        self.assertEqual(self.scrolled, ["1:1", "1:2"])

    async def test_auto_scroll_disabled(self):
        self.engine.update_settings(auto_scroll=False)
        await self.engine.play("1:1")
        await settle()
        self.assertEqual(self.scrolled, [])

    async def test_stop(self):
        await self.engine.play("1:1")
        result = self.engine.stop()
        self.assertEqual(result.status, PlayStatus.STOPPED)
        self.assertEqual(self.engine.state, PlaybackState.IDLE)
        self.assertFalse(self.output.playing)
        self.assertTrue(self.fetcher.buffers[0].released)

    async def test_pause_while_loading_abandons_fetch(self):
        gate = self.fetcher.gates["1:1"] = asyncio.Event()
        pending = asyncio.ensure_future(self.engine.play("1:1"))
        await settle()
        self.assertEqual(self.engine.state, PlaybackState.LOADING)
        result = self.engine.pause()
        self.assertEqual(result.status, PlayStatus.PAUSED)
        gate.set()
        self.assertEqual((await pending).status, PlayStatus.SUPERSEDED)
        await settle()
        self.assertEqual(self.engine.state, PlaybackState.PAUSED)
        self.assertFalse(self.output.playing)
        self.assertEqual(self.output.plays, 0)
        self.assertEqual(self.fetcher.buffers, [])

    async def test_resume_after_pause_while_loading(self):
        self.fetcher.gates["1:1"] = asyncio.Event()
        pending = asyncio.ensure_future(self.engine.play("1:1"))
        await settle()
        self.engine.pause()
        await pending
        del self.fetcher.gates["1:1"]
        self.assertEqual(self.engine.resume().status, PlayStatus.RESUMED)
        await self.engine.wait_for_transition()
        self.assertEqual(self.engine.state, PlaybackState.PLAYING)
        self.assertEqual(self.engine.current_key, key("1:1"))
        self.assertEqual(self.output.plays, 1)

    async def test_clip_unloaded_before_its_file_is_released(self):
        still_loaded = []
        original_release = ClipBuffer.release

        def release(buffer):
            still_loaded.append(self.output.loaded == buffer.path)
            original_release(buffer)

        with mock.patch.object(ClipBuffer, "release", release):
            await self.engine.play("1:1")
            await settle()
            await self.end_clip()
            self.engine.stop()
        self.assertTrue(still_loaded)
        self.assertFalse(any(still_loaded))

    async def test_seek_within_clip(self):
        await self.engine.play("1:1")
        result = self.engine.seek(4.0)
        self.assertEqual(result.status, PlayStatus.RESUMED)
        self.assertEqual(self.output.position, 4.0)
        self.assertEqual(self.engine.seek(1.0).verse_key, key("1:1"))


class TestRepeatAndAdvance(EngineTestCase):

    async def test_repeat_count_plays_clip_n_times(self):
        self.engine.update_settings(repeat_count=3)
        await self.engine.play("1:1")
        await self.end_clip()
        await self.end_clip()
        self.assertEqual(self.engine.current_key, key("1:1"))
        self.assertEqual(self.output.plays, 3)
        await self.end_clip()
        self.assertEqual(self.engine.current_key, key("1:2"))
        self.assertEqual(self.output.plays, 4)

    async def test_repeat_change_applies_at_next_completion(self):
        await self.engine.play("1:1")
        self.engine.update_settings(repeat_count=2)
        await self.end_clip()
        self.assertEqual(self.engine.current_key, key("1:1"))
        await self.end_clip()
        self.assertEqual(self.engine.current_key, key("1:2"))

    async def test_infinite_repeat_loops(self):
        self.engine.update_settings(repeat_count=math.inf)
        await self.engine.play("1:7")
        for _ in range(5):
            await self.end_clip()
        self.assertEqual(self.engine.current_key, key("1:7"))
        self.assertEqual(self.engine.state, PlaybackState.PLAYING)
        self.assertEqual(self.output.plays, 6)

    async def test_context_end(self):
        await self.engine.play("1:7")
        await self.end_clip()
        self.assertEqual(self.engine.state, PlaybackState.ENDED)
        self.assertFalse(self.output.playing)

    async def test_advance_skips_verses_without_audio(self):
        self.engine.set_playlist(make_playlist(missing=(2,)))
        await self.engine.play("1:1")
        await self.end_clip()
        self.assertEqual(self.engine.current_key, key("1:3"))
        self.assertNotIn("1:2", self.fetcher.fetched_keys())

    async def test_uses_preloaded_clip(self):
        await self.engine.play("1:1")
        await settle()
        self.assertEqual(self.engine.session.preload_buffer.key, key("1:2"))
        await self.end_clip()
        self.assertEqual(self.engine.current_key, key("1:2"))
        self.assertEqual(self.fetcher.fetched_keys().count("1:2"), 1)

    async def test_end_handled_once_when_both_triggers_fire(self):
        await self.engine.play("1:1")
        self.output.stall()
        self.output.finish()
        await self.engine.wait_for_transition()
        await asyncio.sleep(0.3)
        await self.engine.wait_for_transition()
        self.assertEqual(self.engine.current_key, key("1:2"))

    async def test_watchdog_detects_silent_end(self):
        await self.engine.play("1:1")
        self.output.stall()
        await asyncio.sleep(0.3)
        await self.engine.wait_for_transition()
        self.assertEqual(self.engine.current_key, key("1:2"))


class TestRange(EngineTestCase):

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.engine.set_playlist(make_playlist(), PlaybackRange.parse("1:2-1:3"))

    async def test_stops_at_range_end(self):
        await self.engine.play("1:2")
        await self.end_clip()
        self.assertEqual(self.engine.current_key, key("1:3"))
        await settle()
        await self.end_clip()
        self.assertEqual(self.engine.state, PlaybackState.RANGE_BOUNDARY)
        self.assertNotIn("1:4", self.fetcher.fetched_keys())

    async def test_play_outside_range_refused(self):
        self.assertEqual((await self.engine.play("1:5")).status, PlayStatus.OUT_OF_RANGE)
        self.assertEqual(self.fetcher.calls, [])

    async def test_manual_navigation_respects_range(self):
        await self.engine.play("1:2")
        self.assertEqual((await self.engine.play_previous()).status, PlayStatus.NO_OP)
        self.assertEqual((await self.engine.play_next()).status, PlayStatus.STARTED)
        stopped = await self.engine.play_next()
        self.assertEqual(stopped.status, PlayStatus.STOPPED)
        self.assertEqual(self.engine.state, PlaybackState.RANGE_BOUNDARY)

    async def test_range_change_keeps_current_clip(self):
        await self.engine.play("1:2")
        self.engine.set_range(PlaybackRange.parse("1:1-1:7"))
        self.assertEqual(self.engine.state, PlaybackState.PLAYING)
        self.assertEqual(self.output.plays, 1)
        await self.end_clip()
        await self.end_clip()
        self.assertEqual(self.engine.current_key, key("1:4"))


class TestConcurrency(EngineTestCase):

    async def test_newer_play_supersedes_pending_fetch(self):
        self.fetcher.gates["1:3"] = asyncio.Event()
        first = asyncio.ensure_future(self.engine.play("1:3"))
        await settle()
        second = await self.engine.play("1:4")
        first_result = await first
        self.assertEqual(first_result.status, PlayStatus.SUPERSEDED)
        self.assertEqual(second.status, PlayStatus.STARTED)
        self.assertEqual(self.engine.current_key, key("1:4"))
        self.assertEqual(self.output.plays, 1)

    async def test_stale_preload_is_released(self):
        self.fetcher.ignore_cancel = True
        gate = self.fetcher.gates["1:2"] = asyncio.Event()
        await self.engine.play("1:1")
        await settle()
        await self.engine.play("1:5")
        gate.set()
        await settle()
        stale = [b for b in self.fetcher.buffers if b.key == key("1:2")]
        self.assertEqual(len(stale), 1)
        self.assertTrue(stale[0].released)
        self.assertEqual(self.engine.session.preload_buffer.key, key("1:6"))

    async def test_pause_cancels_preload(self):
        self.fetcher.gates["1:2"] = asyncio.Event()
        await self.engine.play("1:1")
        await settle()
        self.engine.pause()
        await settle()
        self.assertIsNone(self.engine.session.preload_task)
        self.assertIsNone(self.engine.session.preload_buffer)

    async def test_speed_change_applies_without_reload(self):
        await self.engine.play("1:1")
        self.assertTrue(self.engine.update_settings(playback_speed=1.5))
        self.assertEqual(self.output.speed, 1.5)
        self.assertEqual(self.output.load_count, 1)
        self.assertEqual(self.output.plays, 1)
        self.assertFalse(self.engine.update_settings(playback_speed=0))
        self.assertEqual(self.engine.settings.playback_speed, 1.5)


class TestRecovery(EngineTestCase):

    async def test_backup_url_retried_once_on_decode_failure(self):
        self.output.fail_loads = 1
        result = await self.engine.play("1:1")
        self.assertEqual(result.status, PlayStatus.STARTED)
        self.assertEqual(self.fetcher.calls[1], ("1:1", "https://backup.test/1/1.mp3", None))

    async def test_failure_after_backup_advances(self):
        self.output.fail_loads = 2
        result = await self.engine.play("1:1")
        self.assertEqual(result.status, PlayStatus.FAILED)
        await self.engine.wait_for_transition()
        self.assertEqual(self.engine.current_key, key("1:2"))
        self.assertEqual(self.engine.state, PlaybackState.PLAYING)

    async def test_failed_fetch_advances(self):
        self.fetcher.fail_urls.update({"https://clips.test/1/1.mp3", "https://backup.test/1/1.mp3"})
        result = await self.engine.play("1:1")
        self.assertEqual(result.status, PlayStatus.FAILED)
        await self.engine.wait_for_transition()
        self.assertEqual(self.engine.current_key, key("1:2"))

    async def test_failed_clip_does_not_repeat(self):
        self.engine.update_settings(repeat_count=3)
        self.output.fail_loads = 2
        await self.engine.play("1:1")
        await self.engine.wait_for_transition()
        self.assertEqual(self.engine.current_key, key("1:2"))

    async def test_mid_play_error_uses_backup(self):
        await self.engine.play("1:1")
        self.output._emit_error(RuntimeError("decoder crashed"))
        await self.engine.wait_for_transition()
        self.assertEqual(self.engine.current_key, key("1:1"))
        self.assertEqual(self.engine.state, PlaybackState.PLAYING)
        self.assertIn(("1:1", "https://backup.test/1/1.mp3", None), self.fetcher.calls)


class TestSessionLifecycle(EngineTestCase):

    async def test_close_releases_all_buffers(self):
        await self.engine.play("1:1")
        await settle()
        self.assertEqual(len(self.fetcher.buffers), 2)
        await self.engine.close()
        self.assertTrue(all(b.released for b in self.fetcher.buffers))
        self.assertIsNone(self.service.owner)
        self.assertEqual(self.engine.state, PlaybackState.IDLE)

    async def test_new_playlist_tears_down_session(self):
        await self.engine.play("1:1")
        await settle()
        self.engine.set_playlist(make_playlist(surah=2, count=3))
        self.assertIsNone(self.engine.session)
        self.assertTrue(all(b.released for b in self.fetcher.buffers))

    async def test_second_engine_revokes_first(self):
        other = PlaybackEngine(self.fetcher, output_service=self.service)
        other.set_playlist(make_playlist(surah=2, count=3))
        await self.engine.play("1:1")
        await other.play("2:1")
        self.assertEqual(self.engine.state, PlaybackState.IDLE)
        self.assertIsNone(self.engine.session)
        self.assertIs(self.service.owner, other)
        self.assertEqual(other.state, PlaybackState.PLAYING)
        await other.close()

    async def test_media_session_controls(self):
        self.assertIsNone(self.media_session.invoke("nexttrack"))
        await self.engine.play("1:1")
        self.assertEqual(self.media_session.metadata.title, "Ayah 1:1")
        self.assertEqual(self.media_session.invoke("pause").status, PlayStatus.PAUSED)
        self.assertEqual(self.media_session.invoke("play").status, PlayStatus.RESUMED)
        result = await self.media_session.invoke("nexttrack")
        self.assertEqual(result.status, PlayStatus.STARTED)
        self.assertEqual(self.engine.current_key, key("1:2"))
        result = await self.media_session.invoke("previoustrack")
        self.assertEqual(self.engine.current_key, key("1:1"))

    async def test_controls_while_idle_are_no_ops(self):
        self.assertEqual(self.engine.pause().status, PlayStatus.NO_OP)
        self.assertEqual(self.engine.resume().status, PlayStatus.NO_OP)
        self.assertEqual(self.engine.stop().status, PlayStatus.NO_OP)
        self.assertEqual((await self.engine.play_next()).status, PlayStatus.NO_OP)


class TestFixedRateOutput(EngineTestCase):

    output_class = FixedRateAudioOutput

    async def test_speed_change_refused(self):
        self.assertFalse(self.engine.speed_supported)
        self.assertFalse(self.engine.update_settings(playback_speed=1.5))
        self.assertEqual(self.engine.settings.playback_speed, 1.0)

    async def test_plays_without_setting_rate(self):
        self.engine.settings.playback_speed = 1.5
        result = await self.engine.play("1:1")
        self.assertEqual(result.status, PlayStatus.STARTED)
        self.assertEqual(self.output.plays, 1)


class TestUnsupportedOutput(EngineTestCase):

    output_class = UnsupportedAudioOutput

    async def test_play_reports_unsupported(self):
        self.assertFalse(self.engine.supported)
        self.assertEqual((await self.engine.play("1:1")).status, PlayStatus.UNSUPPORTED)
        self.assertEqual(self.fetcher.calls, [])


if __name__ == '__main__':
    unittest.main()
