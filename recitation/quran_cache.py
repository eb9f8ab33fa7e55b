# recitation/quran_cache.py
import json
import os
import re
import sys
import threading
from typing import Optional

import platformdirs
from colorama import Fore, Style

from .config import APP_AUTHOR, APP_NAME
from .utils import get_app_path

_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9_.-]+')


class QuranCache:
    """Handles caching of content API payloads (verses, audio listings), one JSON file per key"""
    CACHE_DIR_NAME = 'content_cache'

    def __init__(self, cache_dir: Optional[str] = None):
        self.CACHE_DIR = cache_dir or ""
        if not self.CACHE_DIR:
            try:
                if sys.platform == "win32":
                    # Windows: next to the executable
                    self.CACHE_DIR = get_app_path(self.CACHE_DIR_NAME, writable=True)
                else:
                    self.CACHE_DIR = os.path.join(platformdirs.user_cache_dir(APP_NAME, APP_AUTHOR), self.CACHE_DIR_NAME)
            except Exception as e_path:
                print(f"{Fore.RED}Critical Error determining content cache path: {e_path}{Style.RESET_ALL}", file=sys.stderr)
                print(f"{Fore.YELLOW}Content caching is disabled.{Style.RESET_ALL}", file=sys.stderr)
                self.CACHE_DIR = ""
        if self.CACHE_DIR:
            os.makedirs(self.CACHE_DIR, exist_ok=True)
        self._lock = threading.Lock()

    def _path_for(self, key: str) -> str:
        return os.path.join(self.CACHE_DIR, _UNSAFE_CHARS.sub('_', key) + '.json')

    def get(self, key: str):
        """Cached payload or None"""
        if not self.CACHE_DIR:
            return None
        path = self._path_for(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            print(f"{Fore.YELLOW}Warning: Could not load cache file {path}: {e}{Style.RESET_ALL}", file=sys.stderr)
            return None

    def save(self, key: str, data) -> None:
        """Save a payload thread-safely; the write goes through a temp file so readers never see half a file"""
        if not self.CACHE_DIR:
            return
        path = self._path_for(key)
        temp_path = path + '.tmp'
        with self._lock:
            try:
                with open(temp_path, 'w', encoding='utf-8') as f:
                    json.dump(data, f, ensure_ascii=False)
                os.replace(temp_path, path)
            except IOError as e:
                print(f"{Fore.RED}Error: Could not write cache file {path}: {e}{Style.RESET_ALL}", file=sys.stderr)

    def clear(self) -> int:
        """Delete every cached payload, returning how many files were removed"""
        if not self.CACHE_DIR or not os.path.isdir(self.CACHE_DIR):
            return 0
        removed = 0
        with self._lock:
            for name in os.listdir(self.CACHE_DIR):
                if name.endswith(('.json', '.tmp')):
                    try:
                        os.remove(os.path.join(self.CACHE_DIR, name))
                        removed += 1
                    except OSError as e:
                        print(f"{Fore.YELLOW}Warning: Could not remove {name}: {e}{Style.RESET_ALL}", file=sys.stderr)
        return removed
