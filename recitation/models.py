# recitation/models.py
import math
import re
from enum import Enum
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .config import TOTAL_JUZ, TOTAL_SURAHS

_ARABIC_INDIC = "٠١٢٣٤٥٦٧٨٩"
_EXTENDED_ARABIC_INDIC = "۰۱۲۳۴۵۶۷۸۹"
_DIGIT_TABLE = str.maketrans(_ARABIC_INDIC + _EXTENDED_ARABIC_INDIC, "0123456789" * 2)
_VERSE_KEY_RE = re.compile(r"^\s*(\d+)\s*:\s*(\d+)\s*$")


def to_ascii_digits(text: str) -> str:
    """Converts Arabic-Indic and Extended Arabic-Indic digits to ASCII."""
    return text.translate(_DIGIT_TABLE) if text else ""


class VerseRef(BaseModel):
    """Immutable 'surah:ayah' identifier. Ayah existence is checked remotely, not here."""
    model_config = ConfigDict(frozen=True)

    surah: int = Field(ge=1, le=TOTAL_SURAHS)
    ayah: int = Field(ge=1)

    @classmethod
    def parse(cls, key: Union[str, "VerseRef"]) -> "VerseRef":
        if isinstance(key, VerseRef):
            return key
        match = _VERSE_KEY_RE.match(to_ascii_digits(str(key)))
        if not match:
            raise ValueError(f"Invalid verse key: {key!r}")
        return cls(surah=int(match.group(1)), ayah=int(match.group(2)))

    def to_filename(self) -> str:
        """everyayah naming: SSSAAA.mp3"""
        return f"{self.surah:03d}{self.ayah:03d}.mp3"

    def __str__(self) -> str:
        return f"{self.surah}:{self.ayah}"

    def __lt__(self, other: "VerseRef") -> bool:
        return (self.surah, self.ayah) < (other.surah, other.ayah)

    def __le__(self, other: "VerseRef") -> bool:
        return (self.surah, self.ayah) <= (other.surah, other.ayah)


class SurahCatalogEntry(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int = Field(ge=1, le=TOTAL_SURAHS)
    arabic_name: str = Field(alias="name_arabic", min_length=1)
    simple_name: str = Field(alias="name_simple", min_length=1)
    aliases: List[str] = []
    verses_count: Optional[int] = None


class ScriptVariant(str, Enum):
    IMLAEI_SIMPLE = "text_imlaei_simple"
    UTHMANI_SIMPLE = "text_uthmani_simple"
    IMLAEI = "text_imlaei"
    UTHMANI = "text_uthmani"
    INDOPAK = "text_indopak"
    TRANSLITERATION = "transliteration"


# Simplified spellings first: ASR output rarely carries diacritics
SIMPLE_ARABIC_VARIANTS = (ScriptVariant.IMLAEI_SIMPLE, ScriptVariant.UTHMANI_SIMPLE, ScriptVariant.IMLAEI)
FULL_ARABIC_VARIANTS = (ScriptVariant.UTHMANI, ScriptVariant.INDOPAK)


class AyahRecord(BaseModel):
    """Caller-supplied verse used for in-session matching. Never mutated by the matcher."""
    model_config = ConfigDict(frozen=True)

    verse_key: VerseRef
    texts: Dict[ScriptVariant, str] = {}

    @classmethod
    def from_payload(cls, payload: dict) -> "AyahRecord":
        """Validate an untyped API/caller dict ({'verse_key': '2:1', 'text_uthmani': ...})."""
        if not isinstance(payload, dict):
            raise ValueError("Ayah payload must be a mapping")
        texts = {}
        for variant in ScriptVariant:
            value = payload.get(variant.value)
            if isinstance(value, str) and value.strip():
                texts[variant] = value
        return cls(verse_key=VerseRef.parse(payload.get("verse_key", "")), texts=texts)

    def arabic_texts(self) -> List[str]:
        simple = [self.texts[v] for v in SIMPLE_ARABIC_VARIANTS if v in self.texts]
        if simple:
            return simple
        return [self.texts[v] for v in FULL_ARABIC_VARIANTS if v in self.texts]

    def display_text(self) -> str:
        for variant in (ScriptVariant.UTHMANI,) + SIMPLE_ARABIC_VARIANTS + (ScriptVariant.INDOPAK,):
            if variant in self.texts:
                return self.texts[variant]
        return ""


# --- Navigation intents (the matcher's only output type) ---

class AyahOrigin(str, Enum):
    LOCAL = "local"     # verse already on screen: scroll
    REMOTE = "remote"   # verse must be loaded: navigate


class SurahIntent(BaseModel):
    kind: Literal["surah"] = "surah"
    id: int
    confidence: float


class AyahIntent(BaseModel):
    kind: Literal["ayah"] = "ayah"
    verse_key: VerseRef
    confidence: float
    origin: AyahOrigin = AyahOrigin.REMOTE


class JuzIntent(BaseModel):
    kind: Literal["juz"] = "juz"
    id: int = Field(ge=1, le=TOTAL_JUZ)


class JuzAyahIntent(BaseModel):
    kind: Literal["juz_ayah"] = "juz_ayah"
    juz_id: int = Field(ge=1, le=TOTAL_JUZ)
    index_within_juz: int = Field(ge=1)


class NoMatchIntent(BaseModel):
    kind: Literal["no_match"] = "no_match"


NavigationIntent = Union[SurahIntent, AyahIntent, JuzIntent, JuzAyahIntent, NoMatchIntent]
NO_MATCH = NoMatchIntent()


# --- Remote search ---

class TranslationSnippet(BaseModel):
    model_config = ConfigDict(extra="ignore")
    text: str = ""


class SearchApiItem(BaseModel):
    """One raw result of the remote search endpoint, validated at the boundary."""
    model_config = ConfigDict(extra="ignore")

    verse_key: str
    text: str = ""
    translations: List[TranslationSnippet] = []


class RankedResult(BaseModel):
    verse_key: VerseRef
    text: str
    translation: Optional[str] = None
    score: float = 0.0


class SearchResponse(BaseModel):
    results: List[RankedResult] = []
    error: Optional[str] = None
    superseded: bool = False


# --- Playback ---

class PlaylistItem(BaseModel):
    """One verse of the playback context, in document order."""
    model_config = ConfigDict(frozen=True)

    verse_key: VerseRef
    url: Optional[str] = None
    backup_url: Optional[str] = None
    text: str = ""


class PlaybackRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: VerseRef
    end: VerseRef

    @model_validator(mode="after")
    def _ordered(self):
        if self.end < self.start:
            raise ValueError(f"Range end {self.end} precedes start {self.start}")
        return self

    @classmethod
    def parse(cls, text: str) -> "PlaybackRange":
        """'2:1-2:5' or '2:1-5'"""
        start_text, _, end_text = to_ascii_digits(text).partition("-")
        start = VerseRef.parse(start_text)
        end_text = end_text.strip()
        end = VerseRef.parse(end_text) if ":" in end_text else VerseRef(surah=start.surah, ayah=int(end_text))
        return cls(start=start, end=end)

    def contains(self, key: VerseRef) -> bool:
        return self.start <= key <= self.end


class AudioSettings(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    repeat_count: Union[int, float] = 1      # 1 = play once, math.inf = loop forever
    auto_scroll: bool = True
    playback_speed: float = Field(default=1.0, gt=0)

    @field_validator("repeat_count")
    @classmethod
    def _valid_repeat(cls, value):
        if math.isinf(value):
            return math.inf
        if value < 1 or int(value) != value:
            raise ValueError("repeat_count must be a positive integer or infinity")
        return int(value)

    def repeat_label(self) -> str:
        return "∞" if math.isinf(self.repeat_count) else str(int(self.repeat_count))


class PlaybackState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"
    RANGE_BOUNDARY = "range_boundary"


class PlayStatus(str, Enum):
    STARTED = "started"
    RESUMED = "resumed"
    PAUSED = "paused"
    CLIP_UNAVAILABLE = "clip_unavailable"
    FAILED = "failed"
    OUT_OF_RANGE = "out_of_range"
    SUPERSEDED = "superseded"
    STOPPED = "stopped"
    NO_OP = "no_op"
    UNSUPPORTED = "unsupported"


class PlayResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    status: PlayStatus
    verse_key: Optional[VerseRef] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.status in (PlayStatus.STARTED, PlayStatus.RESUMED, PlayStatus.PAUSED)
