# recitation/config.py
import os
import math

# --- Define constants for platformdirs ---
APP_NAME = "RecitationNav"
APP_AUTHOR = "FadSecLab"

# --- Remote endpoints (overridable for mirrors/tests) ---
API_BASE_URL = os.environ.get("RECITATION_API_URL", "https://api.quran.com/api/v4/")
AUDIO_BASE_URL = os.environ.get("RECITATION_AUDIO_URL", "https://verses.quran.com/")
EVERYAYAH_BASE_URL = "https://everyayah.com/data/"

HTTP_TIMEOUT = 10          # seconds, sync content API
CLIP_TIMEOUT = 30          # seconds, clip downloads
CLIP_MAX_RETRIES = 3

# --- Catalog bounds ---
TOTAL_SURAHS = 114
TOTAL_JUZ = 30

# --- Reference matcher ---
SURAH_SIMILARITY_FLOOR = 0.70
AYAH_SIMILARITY_FLOOR = 0.60
AUTO_NAVIGATE_CONFIDENCE = 70

# --- Remote search ---
PHASE1_MIN_SIZE = 20
PHASE2_SIZE = 50
FALLBACK_TRIGGER_SCORE = 0.6
FALLBACK_KEEP_SCORE = 0.3
FALLBACK_MIN_KEYWORDS = 3
MAX_QUERY_CHARS = 150
COVERAGE_WEIGHT = 0.7
ORDER_WEIGHT = 0.3
MAX_TYPO_DISTANCE = 2

# --- Playback ---
REPEAT_CHOICES = (1, 3, 5, math.inf)
SPEED_CHOICES = (0.75, 1.0, 1.25, 1.5, 2.0)
WATCHDOG_INTERVAL = 0.1    # seconds between output polls
NEAR_END_SLACK = 0.25      # seconds before duration counted as "ended" when the output went idle
