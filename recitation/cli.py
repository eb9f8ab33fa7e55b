# recitation/cli.py
"""
Interactive read-along session: type (or paste a transcription of) a surah name, a verse
reference, a juz or a fragment of a verse, and the matching verses play one clip at a time.
"""
import asyncio
import functools
import math
import sys
from typing import List, Optional

from colorama import Fore, Style, init

from . import VERSION
from .audio_output import AudioOutputService
from .catalog import JuzIndex, SurahCatalog, fix_arabic_text
from .clip_fetcher import ClipFetcher
from .config import REPEAT_CHOICES, SPEED_CHOICES
from .errors import QuranAPIError, RecitationError
from .matcher import ReferenceMatcher
from .media_session import MediaSessionHost
from .models import (
    AyahIntent, AyahOrigin, AyahRecord, JuzAyahIntent, JuzIntent, NavigationIntent, PlaybackRange,
    PlaybackState, PlaylistItem, PlayResult, PlayStatus, SurahIntent, VerseRef,
)
from .playback import PlaybackEngine
from .quran_api_client import QuranAPIClient
from .quran_cache import QuranCache
from .reciters import get_reciter
from .search_client import SearchClient
from .settings_manager import SettingsManager

RECITATION_CLI_ASCII = """
 ╦═╗┌─┐┌─┐┬┌┬┐┌─┐┌┬┐┬┌─┐┌┐┌
 ╠╦╝├┤ │  │ │ ├─┤ │ ││ ││││
 ╩╚═└─┘└─┘┴ ┴ ┴ ┴ ┴ ┴└─┘┘└┘ 𝘾𝙇𝙄
"""

SEEK_STEP = 5  # seconds for [ and ]
MAX_SEARCH_RESULTS = 5

_STATUS_MESSAGES = {
    PlayStatus.CLIP_UNAVAILABLE: (Fore.YELLOW, "No audio available for this verse."),
    PlayStatus.OUT_OF_RANGE: (Fore.YELLOW, "Verse is outside the active range. Use 'range off' first."),
    PlayStatus.UNSUPPORTED: (Fore.RED, "Audio playback is not supported on this system."),
    PlayStatus.STOPPED: (Fore.CYAN, "Playback stopped."),
    PlayStatus.NO_OP: (Fore.WHITE, "Nothing to do."),
}


class RecitationCLI:
    def __init__(self, settings_manager: Optional[SettingsManager] = None,
                 api_client: Optional[QuranAPIClient] = None,
                 search_client: Optional[SearchClient] = None,
                 fetcher: Optional[ClipFetcher] = None,
                 output_service: Optional[AudioOutputService] = None):
        self.settings_manager = settings_manager or SettingsManager()
        self.catalog = SurahCatalog.load()
        self.juz_index = JuzIndex.load()
        self.matcher = ReferenceMatcher(self.catalog)
        self.api_client = api_client or QuranAPIClient(cache=QuranCache())
        self.search_client = search_client or SearchClient()
        self.fetcher = fetcher or ClipFetcher()
        self.media_session = MediaSessionHost()
        self.engine = PlaybackEngine(
            self.fetcher,
            output_service=output_service,
            media_session=self.media_session,
            settings=self.settings_manager.load_audio_settings(),
            on_auto_scroll=self.show_verse,
        )
        self.local_ayahs: List[AyahRecord] = []
        self.context_label = ""
        self._current_scope: Optional[dict] = None
        self.arabic_reversed = bool(self.settings_manager.preferences.get("arabic_reversed", False))

    # --- Display ---

    def display_header(self):
        print(Fore.RED + RECITATION_CLI_ASCII + Style.RESET_ALL)
        print(Fore.RED + "╭──" + Style.BRIGHT + Fore.GREEN + "✨ As-salamu alaykum! " + Fore.RED + Style.NORMAL + "─" * 26 + "╮")
        print(Fore.RED + "│ " + Fore.LIGHTMAGENTA_EX + "Recitation CLI: Find a verse, then listen".ljust(49) + Fore.RED + "│")
        print(Fore.RED + "├" + "─" * 50 + "┤")
        print(Fore.RED + "│ " + Style.BRIGHT + "Version: " + Style.NORMAL + f"v{VERSION}".ljust(40) + "│")
        print(Fore.RED + "│ " + Style.BRIGHT + "Reciter: " + Style.NORMAL + self._reciter_name().ljust(40) + "│")
        print(Fore.RED + "├" + "─" * 50 + "┤")
        print(Fore.RED + "│ • " + Fore.WHITE + "Type a surah, " + Fore.CYAN + "2:255" + Fore.WHITE + ", " + Fore.CYAN + "juz 30" + Fore.WHITE + " or a verse".ljust(19) + Fore.RED + "│")
        print(Fore.RED + "│ • " + Fore.WHITE + "Type " + Fore.RED + "'help'" + Fore.WHITE + " to list playback commands".ljust(36) + Fore.RED + "│")
        print(Fore.RED + "│ • " + Fore.WHITE + "Type " + Fore.RED + "'q'" + Fore.WHITE + " to close the program".ljust(39) + Fore.RED + "│")
        print(Fore.RED + "╰" + "─" * 50 + "╯\n")

    def display_controls(self):
        print(Fore.RED + "╭─ " + Style.BRIGHT + Fore.GREEN + "🎛️  Playback Controls" + Style.RESET_ALL)
        print(Fore.RED + "│ • " + Fore.CYAN + "p " + Fore.WHITE + ": Play/Pause")
        print(Fore.RED + "│ • " + Fore.CYAN + "n " + Fore.WHITE + ": Next Ayah")
        print(Fore.RED + "│ • " + Fore.CYAN + "b " + Fore.WHITE + ": Previous Ayah")
        print(Fore.RED + "│ • " + Fore.GREEN + "[ " + Fore.WHITE + f": Seek Back {SEEK_STEP}s")
        print(Fore.RED + "│ • " + Fore.GREEN + "] " + Fore.WHITE + f": Seek Forward {SEEK_STEP}s")
        print(Fore.RED + "│ • " + Fore.MAGENTA + "r " + Fore.WHITE + ": Cycle Repeat Count")
        if self.engine.speed_supported:
            print(Fore.RED + "│ • " + Fore.MAGENTA + "s " + Fore.WHITE + ": Cycle Playback Speed")
        print(Fore.RED + "│ • " + Fore.MAGENTA + "a " + Fore.WHITE + ": Toggle Auto-scroll")
        print(Fore.RED + "│ • " + Fore.YELLOW + "range 2:1-2:5 " + Fore.WHITE + ": Limit playback (range off to clear)")
        print(Fore.RED + "│ • " + Fore.YELLOW + "reciter " + Fore.WHITE + "/" + Fore.YELLOW + " settings " + Fore.WHITE + ": Reciter and audio settings")
        print(Fore.RED + "│ • " + Fore.YELLOW + "stop " + Fore.WHITE + ": Stop playback")
        print(Fore.RED + "│ • " + Fore.YELLOW + "status " + Fore.WHITE + ": Show what is playing")
        print(Fore.RED + "│ • " + Fore.BLUE + "q " + Fore.WHITE + ": Quit")
        print(Fore.RED + "╰" + "─" * 26 + Style.RESET_ALL)

    def display_status(self):
        settings = self.engine.settings
        key = self.engine.current_key
        state = self.engine.state.value.replace("_", " ").title()
        speed_text = f"{settings.playback_speed}x" if self.engine.speed_supported else "1.0x (fixed)"
        range_text = f"{self.engine.range.start}-{self.engine.range.end}" if self.engine.range else "Off"
        print(Fore.RED + "╭─ " + Style.BRIGHT + Fore.GREEN + "📻 " + (self.context_label or "Nothing loaded") + Style.RESET_ALL)
        juz_id = self.juz_index.juz_of(key) if key else None
        ayah_text = (f"{key} (Juz {juz_id})" if juz_id else str(key)) if key else "-"
        print(Fore.RED + "│ " + Fore.CYAN + "Ayah   : " + Fore.WHITE + ayah_text + Fore.CYAN + "   State: " + Fore.WHITE + state)
        print(Fore.RED + "│ " + Fore.CYAN + "Repeat : " + Fore.WHITE + settings.repeat_label() + Fore.CYAN + "   Speed: " + Fore.WHITE + speed_text
              + Fore.CYAN + "   Auto-scroll: " + (Fore.GREEN + "On" if settings.auto_scroll else Fore.RED + "Off"))
        print(Fore.RED + "│ " + Fore.CYAN + "Range  : " + Fore.WHITE + range_text)
        print(Fore.RED + "╰" + "─" * 26 + Style.RESET_ALL)

    def show_verse(self, item: PlaylistItem):
        """Auto-scroll target: prints each verse as its clip starts"""
        text = fix_arabic_text(item.text, self.arabic_reversed) if item.text else ""
        print(Fore.RED + "\n│ " + Fore.CYAN + Style.BRIGHT + f"[{item.verse_key}] " + Style.NORMAL + Fore.WHITE + text + Style.RESET_ALL)

    def show_result(self, result: PlayResult):
        if result.status in (PlayStatus.STARTED, PlayStatus.RESUMED):
            print(Fore.GREEN + f"▶ Playing {result.verse_key}" + Style.RESET_ALL)
        elif result.status is PlayStatus.PAUSED:
            print(Fore.YELLOW + f"⏸ Paused at {result.verse_key}" + Style.RESET_ALL)
        elif result.status is PlayStatus.FAILED:
            print(Fore.RED + f"Playback failed: {result.error}" + Style.RESET_ALL)
        elif result.status in _STATUS_MESSAGES:
            color, message = _STATUS_MESSAGES[result.status]
            print(color + message + Style.RESET_ALL)

    def _reciter_name(self) -> str:
        reciter = get_reciter(self.settings_manager.reciter_id)
        return reciter.name if reciter else "Unknown"

    # --- Input ---

    async def ask(self, prompt: str = "") -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, input, Fore.RED + "  ❯ " + Fore.WHITE + prompt)

    async def ask_yes_no(self, prompt: str) -> bool:
        while True:
            choice = (await self.ask(Fore.BLUE + prompt + Fore.WHITE)).strip().lower()
            if choice in ('y', 'yes'):
                return True
            if choice in ('n', 'no'):
                return False
            print(Fore.RED + "Invalid input. Please enter 'y' or 'n'.")

    # --- Main loop ---

    async def run(self):
        self.display_header()
        if not self.engine.supported:
            print(Fore.YELLOW + "Audio output unavailable: verses can be found but not played." + Style.RESET_ALL)
        try:
            while True:
                try:
                    line = (await self.ask()).strip()
                except EOFError:
                    break
                if not line:
                    continue
                if line.lower() in ('q', 'quit', 'exit'):
                    break
                try:
                    await self.handle_line(line)
                except RecitationError as e:
                    print(Fore.RED + f"Error: {e}" + Style.RESET_ALL)
        finally:
            await self.close()
        print(Fore.RED + "\n✨ Goodbye! " + Fore.WHITE + "JazakAllah khair for using Recitation CLI!" + Style.RESET_ALL)

    async def handle_line(self, line: str):
        command = line.lower()
        if command in ('help', 'info', '?'):
            self.display_controls()
        elif command == 'p':
            if self.engine.state is PlaybackState.LOADING:
                # No media handlers yet on the first load
                self.show_result(self.engine.pause())
            else:
                await self.media_command("pause" if self.engine.state is PlaybackState.PLAYING else "play")
        elif command == 'n':
            await self.media_command("nexttrack")
        elif command == 'b':
            await self.media_command("previoustrack")
        elif command in ('[', ']'):
            self.seek_relative(-SEEK_STEP if command == '[' else SEEK_STEP)
        elif command == 'r':
            settings = self.engine.settings
            self.apply_settings(repeat_count=SettingsManager._next_choice(REPEAT_CHOICES, settings.repeat_count))
            print(Fore.GREEN + f"Repeat count: {self.engine.settings.repeat_label()}" + Style.RESET_ALL)
        elif command == 's':
            if not self.engine.speed_supported:
                print(Fore.YELLOW + "Playback speed is fixed on this audio output." + Style.RESET_ALL)
                return
            settings = self.engine.settings
            self.apply_settings(playback_speed=SettingsManager._next_choice(SPEED_CHOICES, settings.playback_speed))
            print(Fore.GREEN + f"Playback speed: {self.engine.settings.playback_speed}x" + Style.RESET_ALL)
        elif command == 'a':
            self.apply_settings(auto_scroll=not self.engine.settings.auto_scroll)
            print(Fore.GREEN + f"Auto-scroll: {'On' if self.engine.settings.auto_scroll else 'Off'}" + Style.RESET_ALL)
        elif command.startswith('range'):
            await self.set_range(line[len('range'):].strip())
        elif command in ('reciter', 'settings'):
            await self.open_settings()
        elif command == 'stop':
            self.show_result(self.engine.stop())
        elif command == 'status':
            self.display_status()
        else:
            await self.navigate(line)

    async def media_command(self, action: str):
        """Transport keys go through the media-session handlers, like OS media controls would"""
        if not self.media_session.has_handler(action):
            print(Fore.YELLOW + "Nothing is playing. Type a surah or verse first." + Style.RESET_ALL)
            return
        result = self.media_session.invoke(action)
        if asyncio.isfuture(result):
            result = await result
        if isinstance(result, PlayResult):
            self.show_result(result)

    def seek_relative(self, delta: float):
        session = self.engine.session
        if session is None:
            print(Fore.YELLOW + "Nothing is playing." + Style.RESET_ALL)
            return
        target = max(0.0, session.output.position + delta)
        result = self.engine.seek(target)
        if result.ok:
            print(Fore.GREEN + f"⏩ {target:.0f}s / {session.output.duration:.0f}s" + Style.RESET_ALL)
        else:
            self.show_result(result)

    def apply_settings(self, **changes):
        if self.engine.update_settings(**changes):
            self.settings_manager.save_audio_settings(self.engine.settings)

    async def set_range(self, text: str):
        if not text or text.lower() in ('off', 'none', 'clear'):
            self.engine.set_range(None)
            print(Fore.GREEN + "Range cleared." + Style.RESET_ALL)
            return
        try:
            playback_range = PlaybackRange.parse(text)
        except ValueError as e:
            print(Fore.RED + f"Invalid range '{text}': expected S:A-S:B ({e})" + Style.RESET_ALL)
            return
        self.engine.set_range(playback_range)
        print(Fore.GREEN + f"Range set: {playback_range.start} to {playback_range.end}" + Style.RESET_ALL)
        current = self.engine.current_key
        if current is not None and not playback_range.contains(current) and self.engine.state in (PlaybackState.PLAYING, PlaybackState.PAUSED):
            # Jump into the new range rather than finishing a verse outside it
            self.show_result(await self.engine.play(playback_range.start))

    async def open_settings(self):
        previous_reciter = self.settings_manager.reciter_id
        loop = asyncio.get_running_loop()
        menu = functools.partial(self.settings_manager.show_settings_menu, self.engine.settings,
                                 speed_adjustable=self.engine.speed_supported)
        settings = await loop.run_in_executor(None, menu)
        self.engine.update_settings(repeat_count=settings.repeat_count, auto_scroll=settings.auto_scroll,
                                    playback_speed=settings.playback_speed if self.engine.speed_supported else None)
        if self.settings_manager.reciter_id != previous_reciter and self.engine.playlist:
            # Clip URLs depend on the reciter: rebuild the context and continue from the same verse
            current = self.engine.current_key
            print(Fore.CYAN + f"Reciter changed to {self._reciter_name()}, reloading audio..." + Style.RESET_ALL)
            scope = self._current_scope
            if scope and await self.load_context(**scope):
                start = current or self.engine.playlist[0].verse_key
                self.show_result(await self.engine.play(start))

    # --- Navigation ---

    async def navigate(self, text: str):
        intent = self.matcher.match(text, self.local_ayahs)
        if intent.kind == "no_match":
            await self.search(text)
            return
        if not ReferenceMatcher.should_auto_navigate(intent):
            if not await self.ask_yes_no(f"Did you mean {self.describe(intent)}? (y/n): "):
                await self.search(text)
                return
        await self.go_to(intent)

    def describe(self, intent: NavigationIntent) -> str:
        if isinstance(intent, SurahIntent):
            entry = self.catalog.get(intent.id)
            return f"Surah {entry.simple_name} ({intent.id})" if entry else f"Surah {intent.id}"
        if isinstance(intent, AyahIntent):
            return f"Ayah {intent.verse_key}"
        if isinstance(intent, JuzIntent):
            return f"Juz {intent.id}"
        if isinstance(intent, JuzAyahIntent):
            return f"Ayah {intent.index_within_juz} of Juz {intent.juz_id}"
        return "nothing"

    async def go_to(self, intent: NavigationIntent):
        if isinstance(intent, SurahIntent):
            if await self.load_context(chapter=intent.id):
                self.show_result(await self.engine.play(self.engine.playlist[0].verse_key))
        elif isinstance(intent, AyahIntent):
            loaded = intent.origin is AyahOrigin.LOCAL or self._has_verse(intent.verse_key)
            if loaded or await self.load_context(chapter=intent.verse_key.surah):
                self.show_result(await self.engine.play(intent.verse_key))
        elif isinstance(intent, JuzIntent):
            if await self.load_context(juz=intent.id):
                self.show_result(await self.engine.play(self.engine.playlist[0].verse_key))
        elif isinstance(intent, JuzAyahIntent):
            if await self.load_context(juz=intent.juz_id):
                playlist = self.engine.playlist
                if intent.index_within_juz > len(playlist):
                    print(Fore.YELLOW + f"Juz {intent.juz_id} has only {len(playlist)} ayahs." + Style.RESET_ALL)
                    return
                self.show_result(await self.engine.play(playlist[intent.index_within_juz - 1].verse_key))

    def _juz_label(self, juz_id: int) -> str:
        try:
            start, end = self.juz_index.bounds(juz_id)
        except KeyError:
            return f"Juz {juz_id}"
        return f"Juz {juz_id} ({start} to {end})"

    def _has_verse(self, key: VerseRef) -> bool:
        return any(record.verse_key == key for record in self.local_ayahs)

    async def load_context(self, chapter: Optional[int] = None, juz: Optional[int] = None) -> bool:
        """Fetch verses and clip URLs for a chapter or juz and hand them to the engine"""
        reciter = get_reciter(self.settings_manager.reciter_id)
        label = self.describe(SurahIntent(id=chapter, confidence=100)) if chapter else self._juz_label(juz)
        print(Fore.CYAN + f"Loading {label}..." + Style.RESET_ALL)
        loop = asyncio.get_running_loop()
        try:
            verses = await loop.run_in_executor(None, functools.partial(self.api_client.get_verses, chapter=chapter, juz=juz))
            items = await loop.run_in_executor(
                None, functools.partial(self.api_client.build_playlist, reciter, chapter=chapter, juz=juz, verses=verses))
        except (QuranAPIError, ValueError) as e:
            print(Fore.RED + f"Could not load {label}: {e}" + Style.RESET_ALL)
            return False
        if not items:
            print(Fore.YELLOW + f"No verses found for {label}." + Style.RESET_ALL)
            return False
        self.engine.set_playlist(items)
        self.local_ayahs = verses
        self.context_label = label
        self._current_scope = {"chapter": chapter} if chapter else {"juz": juz}
        return True

    async def search(self, text: str):
        print(Fore.CYAN + "No direct match, searching verses..." + Style.RESET_ALL)
        response = await self.search_client.search(text, size=MAX_SEARCH_RESULTS)
        if response.superseded:
            return
        if not response.results:
            message = f"Search failed: {response.error}" if response.error else "No verses matched your query."
            print(Fore.YELLOW + message + Style.RESET_ALL)
            return

        print(Fore.RED + "╭─ " + Style.BRIGHT + Fore.GREEN + "🔍 Search Results" + Style.RESET_ALL)
        for number, result in enumerate(response.results, start=1):
            snippet = result.translation or fix_arabic_text(result.text, self.arabic_reversed)
            if len(snippet) > 70:
                snippet = snippet[:67] + "..."
            print(Fore.RED + f"│ {Fore.CYAN}{number}{Fore.WHITE}. [{result.verse_key}] "
                  + Fore.GREEN + f"{math.floor(result.score * 100)}% " + Fore.WHITE + snippet)
        print(Fore.RED + "╰" + "─" * 26 + Style.RESET_ALL)

        choice = (await self.ask("Select a result number (Enter to skip): ")).strip()
        if not choice.isdigit() or not 1 <= int(choice) <= len(response.results):
            return
        key = response.results[int(choice) - 1].verse_key
        await self.go_to(AyahIntent(verse_key=key, confidence=100))

    async def close(self):
        await self.engine.close()
        await self.search_client.close()
        await self.fetcher.close()
        self.api_client.close()


def main():
    init(autoreset=True)
    try:
        asyncio.run(RecitationCLI().run())
    except KeyboardInterrupt:
        print(Style.BRIGHT + Fore.YELLOW + "\n⚠ Interrupted. Type 'q' next time to exit cleanly." + Style.RESET_ALL)
        sys.exit(1)
    except RecitationError as e:
        print(Fore.RED + Style.BRIGHT + f"Fatal: {e}" + Style.RESET_ALL, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
