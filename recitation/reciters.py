# recitation/reciters.py
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .config import AUDIO_BASE_URL, EVERYAYAH_BASE_URL
from .models import VerseRef


class Reciter(BaseModel):
    """
    A recitation source.

    API reciters have verse audio listed by the content API (recitation id = `id`).
    Prefix reciters have no API listing; their clips are built from `url_prefix`.
    `everyayah_folder` serves as the backup source for either kind.
    """
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    url_prefix: Optional[str] = None
    everyayah_folder: Optional[str] = None

    @property
    def uses_api(self) -> bool:
        return self.url_prefix is None


RECITERS: List[Reciter] = [
    Reciter(id=7, name="Mishary Rashid Alafasy", everyayah_folder="Alafasy_128kbps"),
    Reciter(id=3, name="Abdur-Rahman as-Sudais", everyayah_folder="Abdurrahmaan_As-Sudais_192kbps"),
    Reciter(id=2, name="AbdulBaset AbdulSamad (Murattal)", everyayah_folder="Abdul_Basit_Murattal_192kbps"),
    Reciter(id=4, name="Abu Bakr al-Shatri", everyayah_folder="Abu_Bakr_Ash-Shaatree_128kbps"),
    Reciter(id=5, name="Hani ar-Rifai", everyayah_folder="Hani_Rifai_192kbps"),
    Reciter(id=6, name="Mahmoud Khalil Al-Husary", everyayah_folder="Husary_128kbps"),
    Reciter(id=9, name="Mohamed Siddiq al-Minshawi (Murattal)", everyayah_folder="Minshawy_Murattal_128kbps"),
    Reciter(id=10, name="Saud Al-Shuraim", everyayah_folder="Saood_ash-Shuraym_128kbps"),
    # everyayah-only reciters
    Reciter(id=101, name="Yasser Al-Dosari", url_prefix=f"{EVERYAYAH_BASE_URL}Yasser_Ad-Dussary_128kbps"),
    Reciter(id=102, name="Saad Al-Ghamdi", url_prefix=f"{EVERYAYAH_BASE_URL}Ghamadi_40kbps"),
    Reciter(id=103, name="Maher Al-Muaiqly", url_prefix=f"{EVERYAYAH_BASE_URL}Maher_AlMuaiqly_64kbps"),
    Reciter(id=104, name="Salah Al-Budair", url_prefix=f"{EVERYAYAH_BASE_URL}Salah_Al_Budair_128kbps"),
]

DEFAULT_RECITER_ID = 7

_BY_ID: Dict[int, Reciter] = {r.id: r for r in RECITERS}


def get_reciter(reciter_id: int) -> Optional[Reciter]:
    return _BY_ID.get(reciter_id)


def absolute_audio_url(url: Optional[str]) -> Optional[str]:
    """The content API lists verse audio relative to the audio CDN."""
    if not url:
        return None
    if url.startswith(("http://", "https://")):
        return url
    if url.startswith("//"):
        return f"https:{url}"
    return f"{AUDIO_BASE_URL}{url.lstrip('/')}"


def clip_urls(reciter: Reciter, key: VerseRef, api_url: Optional[str] = None) -> Tuple[Optional[str], Optional[str]]:
    """(primary, backup) clip URLs for a verse. Either may be None."""
    if reciter.url_prefix:
        return f"{reciter.url_prefix.rstrip('/')}/{key.to_filename()}", None
    backup = f"{EVERYAYAH_BASE_URL}{reciter.everyayah_folder}/{key.to_filename()}" if reciter.everyayah_folder else None
    primary = absolute_audio_url(api_url)
    if primary is None:
        # No API listing for this verse: the backup becomes the only source
        return backup, None
    return primary, backup
