# recitation/matcher.py
"""
Reference Matcher: turns a free-form spoken or typed query into a navigation target.

Evaluated as a priority chain, first hit wins:
    'surah:ayah'  ->  juz + index  ->  numeric 'surah ayah'  ->  'surah <n>'  ->  fuzzy surah name
    ->  fuzzy local verse text  ->  juz  ->  NoMatch
"""
import re
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from .arabic_text import contains_arabic, normalize, phonetic_fold, strip_digits
from .catalog import SurahCatalog
from .config import (
    AUTO_NAVIGATE_CONFIDENCE, AYAH_SIMILARITY_FLOOR, SURAH_SIMILARITY_FLOOR,
    TOTAL_JUZ, TOTAL_SURAHS,
)
from .models import (
    NO_MATCH, AyahIntent, AyahOrigin, AyahRecord, JuzAyahIntent, JuzIntent,
    NavigationIntent, NoMatchIntent, ScriptVariant, SurahIntent, VerseRef, to_ascii_digits,
)
from .query_cleaner import clean_speech_text
from .similarity import Similarity, name_similarity, text_similarity

# All patterns run on normalize()d text: punctuation is already spaces, "جزء" is "جزا", "آية" is "ايه"
_JUZ_WORD = r'(?<![a-z])(?:juz|juzz|para|part|جزا|جز)'
_AYAH_WORD = r'(?:ayah|aya|ayat|verse|ايه|ايات)'

_JUZ_AYAH_RE = re.compile(_JUZ_WORD + r'\s*(\d+)(?:\s*' + _AYAH_WORD + r'\s*|\s+)(\d+)\b')
_JUZ_RE = re.compile(_JUZ_WORD + r'\s*(\d+)\b')
_NUMERIC_PAIR_RE = re.compile(r'(?<!\d)(\d+)\s+(?:' + _AYAH_WORD + r'\s+)?(\d+)(?!\d)')
# Runs on the raw text, before normalize() turns the colon into a space
_COLON_PAIR_RE = re.compile(r"(?<!\d)(\d+)\s*:\s*(\d+)(?!\d)")
_EXPLICIT_SURAH_RE = re.compile(r'^(?:surah|sura|surat|سوره)\s*(\d+)$')
_TRAILING_NUMBER_RE = re.compile(r'(\d+)\s*$')
_HAS_LETTERS_RE = re.compile(r'[^\d\s]')

_ARABIC_ARTICLE_RE = re.compile(r'^ال\s*')
_LATIN_ARTICLE_RE = re.compile(r'^(?:al|an|ar|as|ash|at|ad|adh|az|aal)\s+')


def _fold_name(name: str) -> str:
    """Normalize a surah name or query, drop the leading article, then fold."""
    text = normalize(name)
    arabic = contains_arabic(text)
    stripped = (_ARABIC_ARTICLE_RE if arabic else _LATIN_ARTICLE_RE).sub('', text, count=1)
    return phonetic_fold(stripped or text, arabic)


class ReferenceMatcher:
    def __init__(self, catalog: Optional[SurahCatalog] = None,
                 name_similarity: Similarity = name_similarity,
                 text_similarity: Similarity = text_similarity,
                 surah_floor: float = SURAH_SIMILARITY_FLOOR,
                 ayah_floor: float = AYAH_SIMILARITY_FLOOR):
        self.catalog = catalog or SurahCatalog.load()
        self.name_similarity = name_similarity
        self.text_similarity = text_similarity
        self.surah_floor = surah_floor
        self.ayah_floor = ayah_floor
        self._names = self._index_names()

    def _index_names(self) -> List[Tuple[int, str]]:
        names = []
        for entry in self.catalog:
            for name in [entry.simple_name, entry.arabic_name] + list(entry.aliases):
                folded = _fold_name(name)
                if folded:
                    names.append((entry.id, folded))
        return names

    def match(self, raw_text: str, local_ayahs: Optional[Sequence[Union[AyahRecord, dict]]] = None) -> NavigationIntent:
        """Resolve a query to a navigation intent. Never raises; unknown input is NoMatch."""
        text = to_ascii_digits(raw_text or "").strip()
        if not text:
            return NO_MATCH
        normalized = normalize(text)

        intent = self._match_numeric_pair(text, _COLON_PAIR_RE)
        if intent:
            return intent

        intent = self._match_juz_ayah(normalized)
        if intent:
            return intent

        # A juz reference never doubles as a surah:ayah pair
        if not _JUZ_RE.search(normalized):
            intent = self._match_numeric_pair(normalized) or self._match_explicit_surah(normalized)
            if intent:
                return intent

        is_arabic = contains_arabic(text)
        cleaned = clean_speech_text(text, is_arabic)

        intent = self._match_surah_name(cleaned)
        if intent:
            return intent

        if local_ayahs:
            intent = self._match_local_ayah(cleaned, is_arabic, local_ayahs)
            if intent:
                return intent

        return self._match_juz(normalized) or NO_MATCH

    # --- Chain stages ---

    def _match_juz_ayah(self, normalized: str) -> Optional[NavigationIntent]:
        m = _JUZ_AYAH_RE.search(normalized)
        if not m:
            return None
        juz_id, index = int(m.group(1)), int(m.group(2))
        if not 1 <= juz_id <= TOTAL_JUZ or index < 1:
            return NO_MATCH
        return JuzAyahIntent(juz_id=juz_id, index_within_juz=index)

    def _match_numeric_pair(self, text: str, pattern: re.Pattern = _NUMERIC_PAIR_RE) -> Optional[AyahIntent]:
        for m in pattern.finditer(text):
            surah, ayah = int(m.group(1)), int(m.group(2))
            if 1 <= surah <= TOTAL_SURAHS and ayah >= 1:
                return AyahIntent(verse_key=VerseRef(surah=surah, ayah=ayah), confidence=100)
        return None

    def _match_explicit_surah(self, normalized: str) -> Optional[SurahIntent]:
        m = _EXPLICIT_SURAH_RE.match(normalized)
        if m and 1 <= int(m.group(1)) <= TOTAL_SURAHS:
            return SurahIntent(id=int(m.group(1)), confidence=100)
        return None

    def _match_surah_name(self, cleaned: str) -> Optional[NavigationIntent]:
        name_part = strip_digits(cleaned)
        if not name_part:
            return None
        query = _fold_name(name_part)
        if not query:
            return None

        best_id, best_score = None, 0.0
        for surah_id, folded in self._names:
            score = self.name_similarity(query, folded)
            if score > best_score:
                best_id, best_score = surah_id, score
        if best_id is None or best_score < self.surah_floor:
            return None

        confidence = round(best_score * 100, 1)
        trailing = _TRAILING_NUMBER_RE.search(cleaned)
        if trailing:
            ayah = int(trailing.group(1))
            verses_count = self.catalog.get(best_id).verses_count
            if ayah >= 1 and (verses_count is None or ayah <= verses_count):
                return AyahIntent(verse_key=VerseRef(surah=best_id, ayah=ayah), confidence=confidence)
        return SurahIntent(id=best_id, confidence=confidence)

    def _match_local_ayah(self, cleaned: str, is_arabic: bool,
                          local_ayahs: Iterable[Union[AyahRecord, dict]]) -> Optional[AyahIntent]:
        query_text = strip_digits(cleaned)
        if not _HAS_LETTERS_RE.search(query_text):
            return None
        query = phonetic_fold(query_text, is_arabic)

        best: Optional[Tuple[float, float, AyahRecord]] = None
        for record in local_ayahs:
            if not isinstance(record, AyahRecord):
                try:
                    record = AyahRecord.from_payload(record)
                except ValueError:
                    continue
            if is_arabic:
                candidates = record.arabic_texts()
            else:
                candidates = [record.texts[ScriptVariant.TRANSLITERATION]] if ScriptVariant.TRANSLITERATION in record.texts else []
            for candidate in candidates:
                folded = phonetic_fold(candidate, is_arabic)
                score = self.text_similarity(query, folded)
                # Whole-text similarity breaks ties between equally good partial alignments
                tie_break = self.name_similarity(query, folded)
                if best is None or (score, tie_break) > (best[0], best[1]):
                    best = (score, tie_break, record)

        if best is None or best[0] < self.ayah_floor:
            return None
        return AyahIntent(verse_key=best[2].verse_key, confidence=round(best[0] * 100, 1), origin=AyahOrigin.LOCAL)

    def _match_juz(self, normalized: str) -> Optional[NavigationIntent]:
        m = _JUZ_RE.search(normalized)
        if not m:
            return None
        juz_id = int(m.group(1))
        if not 1 <= juz_id <= TOTAL_JUZ:
            return NO_MATCH
        return JuzIntent(id=juz_id)

    @staticmethod
    def should_auto_navigate(intent: NavigationIntent, threshold: float = AUTO_NAVIGATE_CONFIDENCE) -> bool:
        """Confident enough to navigate without asking? NoMatch never is."""
        if isinstance(intent, NoMatchIntent):
            return False
        if isinstance(intent, (SurahIntent, AyahIntent)):
            return intent.confidence >= threshold
        return True
