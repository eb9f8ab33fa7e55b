# recitation/query_cleaner.py
import re
from typing import List

from .arabic_text import normalize

# Command/filler words, already in normalized form (see arabic_text.normalize)
ENGLISH_FILLERS = (
    "please", "read", "surah", "sura", "ayah", "aya", "ayat", "verse", "chapter",
    "play", "recite", "open", "show", "find", "search", "for", "listen", "to", "go", "start",
)
ARABIC_FILLERS = (
    "اذهب الي", "بحث عن",
    "اقرا", "شغل", "افتح", "اريد", "هات", "عايز", "تلاوه", "استماع",
    "سوره", "ايه", "في", "من", "عن",
)

STOP_WORDS = frozenset({"wa", "min", "fi", "in", "of", "the", "and", "or", "a", "an"})


def _filler_pattern(words) -> re.Pattern:
    # Longest first so multi-word fillers win over their parts
    alternatives = sorted(words, key=len, reverse=True)
    return re.compile(r'\b(?:' + '|'.join(re.escape(w).replace(r'\ ', r'\s+') for w in alternatives) + r')\b')


_ENGLISH_RE = _filler_pattern(ENGLISH_FILLERS)
_ARABIC_RE = _filler_pattern(ARABIC_FILLERS)


def clean_speech_text(text: str, is_arabic: bool) -> str:
    """Lowercase, strip punctuation and filler words, collapse whitespace."""
    if not text:
        return ""
    processed = normalize(text)
    processed = (_ARABIC_RE if is_arabic else _ENGLISH_RE).sub(' ', processed)
    return re.sub(r'\s+', ' ', processed).strip()


def extract_keywords(text: str) -> List[str]:
    """Split cleaned text into keywords, keeping the original word order."""
    if not text:
        return []
    return [w for w in text.split() if len(w) > 1 and w not in STOP_WORDS]
