# recitation/quran_api_client.py
import json
import sys
from typing import Dict, List, Optional, Tuple

import requests
from colorama import Fore, Style

from .config import API_BASE_URL, HTTP_TIMEOUT, TOTAL_JUZ, TOTAL_SURAHS
from .errors import QuranAPIError
from .models import AyahRecord, PlaylistItem, ScriptVariant
from .quran_cache import QuranCache
from .reciters import Reciter, absolute_audio_url, clip_urls

VERSE_FIELDS = ",".join(v.value for v in ScriptVariant if v is not ScriptVariant.TRANSLITERATION)


class QuranAPIClient:
    """Synchronous client for verse text and per-verse audio listings, with a JSON cache"""
    BASE_URL = API_BASE_URL
    TIMEOUT = HTTP_TIMEOUT
    PER_PAGE = 50

    def __init__(self, cache: Optional[QuranCache] = None, session: Optional[requests.Session] = None,
                 base_url: Optional[str] = None):
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "RecitationNav/1.0"})
        self.cache = cache
        if base_url:
            self.BASE_URL = base_url

    def _handle_response(self, response: requests.Response) -> dict:
        """Handle API response and return JSON data"""
        try:
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            raise QuranAPIError(f"Request failed: {e}")
        except json.JSONDecodeError as e:
            raise QuranAPIError(f"Invalid JSON response: {e}")

    def _get_paged(self, path: str, items_field: str, params: Optional[dict] = None) -> List[dict]:
        """Follow pagination.next_page until exhausted"""
        items: List[dict] = []
        page = 1
        while page:
            query = dict(params or {}, page=page, per_page=self.PER_PAGE)
            try:
                response = self.session.get(f"{self.BASE_URL}{path}", params=query, timeout=self.TIMEOUT)
            except requests.exceptions.RequestException as e:
                raise QuranAPIError(f"Request failed: {e}")
            data = self._handle_response(response)
            if not isinstance(data, dict) or not isinstance(data.get(items_field), list):
                raise QuranAPIError(f"Unexpected payload for {path}: missing '{items_field}'")
            items.extend(data[items_field])
            page = (data.get("pagination") or {}).get("next_page")
        return items

    @staticmethod
    def _scope(chapter: Optional[int], juz: Optional[int]) -> Tuple[str, int]:
        if (chapter is None) == (juz is None):
            raise ValueError("Exactly one of chapter or juz is required")
        if chapter is not None:
            if not 1 <= chapter <= TOTAL_SURAHS:
                raise ValueError(f"Chapter must be 1..{TOTAL_SURAHS}, got {chapter}")
            return "by_chapter", chapter
        if not 1 <= juz <= TOTAL_JUZ:
            raise ValueError(f"Juz must be 1..{TOTAL_JUZ}, got {juz}")
        return "by_juz", juz

    def _cached_paged(self, cache_key: str, path: str, items_field: str, params: Optional[dict] = None) -> List[dict]:
        if self.cache:
            cached = self.cache.get(cache_key)
            if isinstance(cached, list):
                return cached
        items = self._get_paged(path, items_field, params)
        if self.cache:
            self.cache.save(cache_key, items)
        return items

    def get_verses(self, chapter: Optional[int] = None, juz: Optional[int] = None) -> List[AyahRecord]:
        """Verse texts in document order. Malformed items are skipped with a warning."""
        scope, number = self._scope(chapter, juz)
        raw_items = self._cached_paged(f"verses_{scope}_{number}", f"verses/{scope}/{number}", "verses",
                                       {"fields": VERSE_FIELDS, "words": "false"})
        records = []
        for item in raw_items:
            try:
                records.append(AyahRecord.from_payload(item))
            except ValueError as e:
                print(f"{Fore.YELLOW}Warning: Skipping malformed verse payload: {e}{Style.RESET_ALL}", file=sys.stderr)
        return records

    def get_audio_files(self, reciter_id: int, chapter: Optional[int] = None, juz: Optional[int] = None) -> Dict[str, str]:
        """{verse_key: absolute clip URL} for an API reciter"""
        scope, number = self._scope(chapter, juz)
        raw_items = self._cached_paged(f"audio_{reciter_id}_{scope}_{number}",
                                       f"recitations/{reciter_id}/{scope}/{number}", "audio_files")
        urls = {}
        for item in raw_items:
            if not isinstance(item, dict):
                continue
            key, url = item.get("verse_key"), absolute_audio_url(item.get("url"))
            if key and url:
                urls[key] = url
        return urls

    def build_playlist(self, reciter: Reciter, chapter: Optional[int] = None, juz: Optional[int] = None,
                       verses: Optional[List[AyahRecord]] = None) -> List[PlaylistItem]:
        """Ordered playback context for a chapter or juz, with primary and backup clip URLs per verse"""
        if verses is None:
            verses = self.get_verses(chapter=chapter, juz=juz)
        api_urls: Dict[str, str] = {}
        if reciter.uses_api:
            try:
                api_urls = self.get_audio_files(reciter.id, chapter=chapter, juz=juz)
            except QuranAPIError as e:
                # everyayah backups still cover the verses
                print(f"{Fore.YELLOW}Warning: Audio listing unavailable, using backup source: {e}{Style.RESET_ALL}", file=sys.stderr)

        items = []
        for record in verses:
            url, backup = clip_urls(reciter, record.verse_key, api_urls.get(str(record.verse_key)))
            items.append(PlaylistItem(verse_key=record.verse_key, url=url, backup_url=backup, text=record.display_text()))
        return items

    def close(self):
        self.session.close()
