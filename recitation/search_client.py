# recitation/search_client.py
import asyncio
import json
import re
import sys
from typing import Awaitable, Callable, Dict, List, Optional

import aiohttp
from colorama import Fore, Style
from pydantic import ValidationError

from .arabic_text import contains_arabic, phonetic_fold
from .config import (
    API_BASE_URL, COVERAGE_WEIGHT, FALLBACK_KEEP_SCORE, FALLBACK_MIN_KEYWORDS,
    FALLBACK_TRIGGER_SCORE, HTTP_TIMEOUT, MAX_QUERY_CHARS, MAX_TYPO_DISTANCE,
    ORDER_WEIGHT, PHASE1_MIN_SIZE, PHASE2_SIZE,
)
from .errors import SearchUnavailable
from .models import RankedResult, SearchApiItem, SearchResponse, VerseRef
from .query_cleaner import clean_speech_text, extract_keywords
from .similarity import within_edit_distance

# (query, size, language) -> raw result items; raises SearchUnavailable
FetchFn = Callable[[str, int, str], Awaitable[List[dict]]]

_MARKUP_RE = re.compile(r'<[^>]*>')


def strip_markup(text: Optional[str]) -> str:
    """Remove search-engine highlight tags (<em>...</em>) and other inline markup."""
    return _MARKUP_RE.sub('', text or '').strip()


def calculate_match_score(target_text: str, keywords: List[str]) -> float:
    """
    Coverage/order score of a result text against the query keywords, in [0, 1].

    A keyword matches a word if it is a substring of it, or (both longer than 3 chars)
    within edit distance 2. A match counts as ordered only when it lands after the
    previous ordered match, so results keeping the query's word order rank higher.
    """
    if not target_text or not keywords:
        return 0.0
    target_words = phonetic_fold(target_text).split()
    matched = 0
    ordered = 0
    last_index = -1

    for keyword in keywords:
        keyword = phonetic_fold(keyword)
        if not keyword:
            continue
        for index, word in enumerate(target_words):
            if keyword in word or (len(keyword) > 3 and len(word) > 3
                                   and within_edit_distance(keyword, word, MAX_TYPO_DISTANCE)):
                matched += 1
                if index > last_index:
                    ordered += 1
                    last_index = index
                break

    total = len(keywords)
    return COVERAGE_WEIGHT * (matched / total) + ORDER_WEIGHT * (ordered / total)


def truncate_query(text: str, limit: int = MAX_QUERY_CHARS) -> str:
    """Cut at the last word boundary before `limit` characters."""
    if len(text) <= limit:
        return text
    last_space = text.rfind(' ', 0, limit + 1)
    return text[:last_space] if last_space > 0 else text[:limit]


class SearchClient:
    """
    Two-phase remote verse search with local rescoring.

    search() never raises: failures come back as SearchResponse.error with no results,
    and a call overtaken by a newer one comes back with superseded=True.
    """

    def __init__(self, fetch: Optional[FetchFn] = None, base_url: str = API_BASE_URL):
        self.base_url = base_url
        self._fetch = fetch or self._fetch_remote
        self._session: Optional[aiohttp.ClientSession] = None
        self._request_id = 0
        self._inflight: Optional[asyncio.Task] = None

    async def search(self, query_text: str, size: int = 10) -> SearchResponse:
        self._request_id += 1
        request_id = self._request_id
        if self._inflight and not self._inflight.done():
            self._inflight.cancel()

        task = asyncio.ensure_future(self._search(query_text, size))
        self._inflight = task
        try:
            response = await task
        except asyncio.CancelledError:
            if request_id != self._request_id:
                return SearchResponse(superseded=True)
            raise
        except Exception as e:
            print(f"{Fore.RED}Search failed unexpectedly: {e}{Style.RESET_ALL}", file=sys.stderr)
            response = SearchResponse(error=str(e))

        if request_id != self._request_id:
            return SearchResponse(superseded=True)
        return response

    async def _search(self, query_text: str, size: int) -> SearchResponse:
        is_arabic = contains_arabic(query_text)
        keywords = extract_keywords(clean_speech_text(query_text, is_arabic))
        if not keywords:
            return SearchResponse()
        language = 'ar' if is_arabic else 'en'
        errors = []

        # Phase 1: full query
        results = await self._scored_call(truncate_query(' '.join(keywords)), max(size, PHASE1_MIN_SIZE),
                                          language, keywords, is_arabic, errors)
        top_score = results[0].score if results else 0.0

        # Phase 2: broader query on the first two keywords
        if (not results or top_score < FALLBACK_TRIGGER_SCORE) and len(keywords) >= FALLBACK_MIN_KEYWORDS:
            fallback = await self._scored_call(' '.join(keywords[:2]), PHASE2_SIZE,
                                               language, keywords, is_arabic, errors)
            merged: Dict[str, RankedResult] = {}
            for result in results + [r for r in fallback if r.score > FALLBACK_KEEP_SCORE]:
                key = str(result.verse_key)
                if key not in merged or merged[key].score < result.score:
                    merged[key] = result
            results = sorted(merged.values(), key=lambda r: r.score, reverse=True)

        return SearchResponse(results=results[:size], error='; '.join(errors) or None)

    async def _scored_call(self, query: str, size: int, language: str, keywords: List[str],
                           is_arabic: bool, errors: List[str]) -> List[RankedResult]:
        try:
            items = await self._fetch(query, size, language)
        except SearchUnavailable as e:
            print(f"{Fore.YELLOW}Warning: Search API call failed: {e}{Style.RESET_ALL}", file=sys.stderr)
            errors.append(str(e))
            return []

        ranked = []
        for raw in items or []:
            result = self._rank_item(raw, keywords, is_arabic)
            if result:
                ranked.append(result)
        ranked.sort(key=lambda r: r.score, reverse=True)
        return ranked

    @staticmethod
    def _rank_item(raw, keywords: List[str], is_arabic: bool) -> Optional[RankedResult]:
        try:
            item = SearchApiItem.model_validate(raw)
            verse_key = VerseRef.parse(item.verse_key)
        except (ValidationError, ValueError):
            return None
        text = strip_markup(item.text)
        translation = strip_markup(item.translations[0].text) if item.translations else None
        # Latin queries are compared with the translation when the API supplies one
        target = text if is_arabic or not translation else translation
        return RankedResult(verse_key=verse_key, text=text, translation=translation or None,
                            score=calculate_match_score(target, keywords))

    # --- Network ---

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": "RecitationNav/1.0"},
                timeout=aiohttp.ClientTimeout(total=HTTP_TIMEOUT),
            )
        return self._session

    async def _fetch_remote(self, query: str, size: int, language: str) -> List[dict]:
        params = {"q": query, "size": str(size), "page": "1", "language": language}
        try:
            session = await self._get_session()
            async with session.get(f"{self.base_url}search", params=params) as response:
                if response.status == 204:
                    return []
                if response.status >= 400:
                    raise SearchUnavailable(f"API Error: {response.status}")
                raw_text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SearchUnavailable(f"Request failed: {e}")

        if not raw_text.strip():
            return []
        try:
            data = json.loads(raw_text)
        except json.JSONDecodeError as e:
            raise SearchUnavailable(f"Invalid JSON response: {e}")
        if not isinstance(data, dict) or not isinstance(data.get("search", {}), dict):
            raise SearchUnavailable("Unexpected search payload")
        results = data.get("search", {}).get("results") or []
        if not isinstance(results, list):
            raise SearchUnavailable("Unexpected search payload")
        return results

    async def close(self):
        if self._inflight and not self._inflight.done():
            self._inflight.cancel()
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
