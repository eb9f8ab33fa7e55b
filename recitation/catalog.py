# recitation/catalog.py
import json
import sys
from typing import Dict, List, Optional, Tuple

import arabic_reshaper
from bidi.algorithm import get_display
from colorama import Fore, Style
from pydantic import ValidationError

from .config import TOTAL_JUZ
from .errors import RecitationError
from .models import SurahCatalogEntry, VerseRef
from .utils import get_data_path


def _load_json(path: str, name: str):
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"{Fore.RED}Fatal Error: {name} database not found at {path}{Style.RESET_ALL}", file=sys.stderr)
        raise RecitationError(f"{name} database missing: {path}")
    except json.JSONDecodeError as e:
        print(f"{Fore.RED}Fatal Error: Failed to parse {name} database file ({path}): {e}{Style.RESET_ALL}", file=sys.stderr)
        raise RecitationError(f"{name} database is corrupted: {e}")


class SurahCatalog:
    """Static list of the 114 surahs with names and aliases. Read-only once loaded."""
    DATABASE_FILENAME = "surahs.json"

    def __init__(self, entries: List[SurahCatalogEntry]):
        self._entries = sorted(entries, key=lambda e: e.id)
        self._by_id: Dict[int, SurahCatalogEntry] = {e.id: e for e in self._entries}
        if len(self._by_id) != len(self._entries):
            raise RecitationError("Duplicate surah ids in catalog")

    @classmethod
    def load(cls, path: Optional[str] = None) -> "SurahCatalog":
        path = path or get_data_path(cls.DATABASE_FILENAME)
        raw = _load_json(path, "Surah catalog")
        try:
            return cls([SurahCatalogEntry.model_validate(item) for item in raw])
        except (ValidationError, TypeError) as e:
            raise RecitationError(f"Invalid surah catalog entry: {e}")

    def get(self, surah_id: int) -> Optional[SurahCatalogEntry]:
        return self._by_id.get(surah_id)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)


class JuzIndex:
    """Start/end verse keys of the 30 juz."""
    DATABASE_FILENAME = "juz.json"

    def __init__(self, bounds: Dict[int, Tuple[VerseRef, VerseRef]]):
        self._bounds = bounds

    @classmethod
    def load(cls, path: Optional[str] = None) -> "JuzIndex":
        path = path or get_data_path(cls.DATABASE_FILENAME)
        raw = _load_json(path, "Juz index")
        try:
            bounds = {
                int(juz_id): (VerseRef.parse(item["start"]), VerseRef.parse(item["end"]))
                for juz_id, item in raw.items()
            }
        except (KeyError, ValueError, AttributeError) as e:
            raise RecitationError(f"Invalid juz index entry: {e}")
        if sorted(bounds) != list(range(1, TOTAL_JUZ + 1)):
            raise RecitationError(f"Juz index must cover juz 1..{TOTAL_JUZ}")
        return cls(bounds)

    def bounds(self, juz_id: int) -> Tuple[VerseRef, VerseRef]:
        if juz_id not in self._bounds:
            raise KeyError(f"Juz {juz_id} does not exist")
        return self._bounds[juz_id]

    def juz_of(self, key: VerseRef) -> Optional[int]:
        for juz_id, (start, end) in self._bounds.items():
            if start <= key <= end:
                return juz_id
        return None


def fix_arabic_text(text: str, reversed_display: bool = False) -> str:
    """Reshapes and applies the BiDi algorithm, optionally reversing for terminals that render RTL themselves."""
    if not text:
        return ""
    try:
        bidi_text = str(get_display(arabic_reshaper.reshape(text)))
        return "".join(reversed(bidi_text)) if reversed_display else bidi_text
    except Exception as e:
        print(f"{Fore.YELLOW}Warning: Error processing Arabic text ('{text[:20]}...'): {e}{Style.RESET_ALL}", file=sys.stderr)
        return text
