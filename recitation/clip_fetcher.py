# recitation/clip_fetcher.py
import asyncio
import itertools
import os
import sys
from pathlib import Path
from typing import Optional

import aiofiles
import aiohttp
import platformdirs
from colorama import Fore, Style
from mutagen import MutagenError
from mutagen.mp3 import MP3

from .config import APP_AUTHOR, APP_NAME, CLIP_MAX_RETRIES, CLIP_TIMEOUT
from .errors import ClipUnavailable, DecodeOrNetworkFailure
from .models import VerseRef
from .utils import get_app_path

CHUNK_SIZE = 8192


class ClipBuffer:
    """A downloaded, validated clip on disk. Owned by exactly one holder until release()."""

    def __init__(self, key: VerseRef, path: Path, duration: float, source_url: str = ""):
        self.key = key
        self.path = Path(path)
        self.duration = duration
        self.source_url = source_url
        self.released = False

    def release(self):
        if self.released:
            return
        self.released = True
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            print(f"{Fore.YELLOW}Warning: Could not remove clip {self.path.name}: {e}{Style.RESET_ALL}", file=sys.stderr)

    def __repr__(self):
        return f"ClipBuffer({self.key}, {self.path.name}, released={self.released})"


def default_audio_dir() -> Path:
    if sys.platform == "win32":
        return Path(get_app_path('audio_cache', writable=True))
    return Path(platformdirs.user_cache_dir(APP_NAME, APP_AUTHOR)) / 'audio_cache'


class ClipFetcher:
    """Downloads per-verse clips with retries and a backup source"""

    def __init__(self, audio_dir: Optional[Path] = None, max_retries: int = CLIP_MAX_RETRIES,
                 timeout: float = CLIP_TIMEOUT, retry_delay: float = 1.0):
        self.audio_dir = Path(audio_dir) if audio_dir else default_audio_dir()
        os.makedirs(self.audio_dir, exist_ok=True)
        self.max_retries = max_retries
        self.timeout = timeout
        self.retry_delay = retry_delay
        self._session: Optional[aiohttp.ClientSession] = None
        self._counter = itertools.count(1)
        self.purge()

    def purge(self) -> None:
        """Remove clips and partial downloads left behind by an earlier run"""
        for leftover in itertools.chain(self.audio_dir.glob('clip_*.mp3'), self.audio_dir.glob('clip_*.part')):
            leftover.unlink(missing_ok=True)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={
                'User-Agent': 'Mozilla/5.0',
                'Accept': '*/*',
                'Accept-Encoding': 'identity',
            })
        return self._session

    async def fetch(self, key: VerseRef, url: Optional[str], backup_url: Optional[str] = None) -> ClipBuffer:
        """
        Download the clip for `key` and return its buffer.

        Raises ClipUnavailable when there is no URL at all and DecodeOrNetworkFailure
        when neither source yields a valid MP3. Cancelling removes any partial file.
        """
        if not url and not backup_url:
            raise ClipUnavailable(str(key))

        target = self.audio_dir / f"clip_{key.surah:03d}{key.ayah:03d}_{next(self._counter)}.mp3"
        temp_file = target.with_suffix('.part')
        errors = []
        try:
            for source in (url, backup_url):
                if not source:
                    continue
                duration = await self._try_download(source, target, temp_file, errors)
                if duration is not None:
                    return ClipBuffer(key, target, duration, source)
        except asyncio.CancelledError:
            temp_file.unlink(missing_ok=True)
            target.unlink(missing_ok=True)
            raise
        temp_file.unlink(missing_ok=True)
        raise DecodeOrNetworkFailure(str(key), '; '.join(errors))

    async def _try_download(self, url: str, target: Path, temp_file: Path, errors: list) -> Optional[float]:
        """Duration of the validated clip at `target`, or None when this source is exhausted"""
        for attempt in range(self.max_retries):
            try:
                session = await self._get_session()
                async with session.get(url, timeout=aiohttp.ClientTimeout(total=self.timeout)) as response:
                    if response.status in (403, 404):
                        # Missing on this source; retrying will not help
                        errors.append(f"{url}: HTTP {response.status}")
                        return None
                    response.raise_for_status()
                    async with aiofiles.open(temp_file, mode='wb') as f:
                        async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                            await f.write(chunk)

                if temp_file.stat().st_size == 0:
                    raise ValueError("Download resulted in empty file.")
                try:
                    duration = MP3(temp_file).info.length
                except MutagenError as e:
                    raise ValueError(f"MP3 validation failed: {e}")
                os.replace(temp_file, target)
                return duration
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, OSError) as e:
                errors.append(f"{url}: {e or type(e).__name__}")
                temp_file.unlink(missing_ok=True)
            if attempt < self.max_retries - 1:
                await asyncio.sleep((attempt + 1) * self.retry_delay)
        return None

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
