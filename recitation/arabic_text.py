# recitation/arabic_text.py
"""
Text normalization for matching spoken/typed queries against Quranic text.

normalize() canonicalizes script (idempotent, total). phonetic_fold() additionally merges
consonants that non-native speakers and ASR engines commonly confuse. Callers detect the
script with contains_arabic() when they need the Latin or the Arabic fold table.
"""
import re
from typing import Optional

_ARABIC_CHARS = re.compile(r'[\u0600-\u06FF\u0750-\u077F\u08A0-\u08FF\uFB50-\uFDFF\uFE70-\uFEFF]')

# Harakat, sukun, shadda, superscript alif and Quranic annotation marks
_DIACRITICS = re.compile(r'[\u0610-\u061A\u064B-\u065F\u0670\u06D6-\u06DC\u06DF-\u06E8\u06EA-\u06ED]')
_TATWEEL = re.compile(r'ـ')
# Transliteration apostrophes (ʿayn/hamza marks) are dropped, not spaced: "Ma'un" -> "maun"
_APOSTROPHES = re.compile(r"['’‘`ʿʾ]")
_PUNCTUATION = re.compile(r'[^\w\s]|_')
_WHITESPACE = re.compile(r'\s+')

_ALLOGRAPHS = [
    (re.compile(r'[أإآٱء]'), 'ا'),
    (re.compile(r'[ىئی]'), 'ي'),
    (re.compile(r'ؤ'), 'و'),
    (re.compile(r'ة'), 'ه'),
    (re.compile(r'ک'), 'ك'),
]

_ARABIC_FOLDS = [
    (re.compile(r'[ذضظ]'), 'ز'),
    (re.compile(r'ث'), 'س'),
    (re.compile(r'ق'), 'ك'),
    (re.compile(r'غ'), 'خ'),
    (re.compile(r'ع'), 'ا'),
]

_LATIN_FOLDS = [
    (re.compile(r'gh'), 'kh'),
    (re.compile(r'dh'), 'z'),
    (re.compile(r'th'), 's'),
    (re.compile(r'q'), 'k'),
    (re.compile(r'ee'), 'i'),
    (re.compile(r'oo'), 'u'),
    (re.compile(r'aa'), 'a'),
    (re.compile(r'ah\b'), 'a'),
]


def contains_arabic(text: Optional[str]) -> bool:
    """True if the text has at least one Arabic code point."""
    return bool(text) and bool(_ARABIC_CHARS.search(text))


def normalize(text: Optional[str]) -> str:
    """
    Canonicalize text for matching.

    Rules, in order: lowercase Latin, strip diacritics and Quranic marks, strip tatweel,
    turn punctuation into spaces, unify letter allographs (hamza forms, ya/alif maqsura,
    waw-hamza, ta marbuta), collapse whitespace and trim. Digits are kept.
    """
    if not text:
        return ""
    text = text.lower()
    text = _DIACRITICS.sub('', text)
    text = _TATWEEL.sub('', text)
    text = _APOSTROPHES.sub('', text)
    text = _PUNCTUATION.sub(' ', text)
    for pattern, replacement in _ALLOGRAPHS:
        text = pattern.sub(replacement, text)
    text = _WHITESPACE.sub(' ', text)
    return text.strip()


def phonetic_fold(text: Optional[str], arabic: Optional[bool] = None) -> str:
    """Normalize, then merge commonly confused consonants. Not guaranteed idempotent for Latin."""
    text = normalize(text)
    if not text:
        return ""
    if arabic is None:
        arabic = contains_arabic(text)
    for pattern, replacement in (_ARABIC_FOLDS if arabic else _LATIN_FOLDS):
        text = pattern.sub(replacement, text)
    return text


def strip_digits(text: str) -> str:
    return _WHITESPACE.sub(' ', re.sub(r'\d+', ' ', text)).strip()
