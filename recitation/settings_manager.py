# recitation/settings_manager.py
import json
import math
import os
import re
import sys
from typing import Callable, Optional

import platformdirs
from colorama import Fore, Style
from pydantic import ValidationError

from .config import APP_AUTHOR, APP_NAME, REPEAT_CHOICES, SPEED_CHOICES
from .models import AudioSettings
from .reciters import DEFAULT_RECITER_ID, RECITERS, get_reciter
from .utils import get_app_path

PREF_FILENAME = "Recitation-Settings.json"
INFINITE_LABEL = "infinite"


def _strip_ansi(s: str) -> str:
    return re.sub(r'\x1B[\[][0-?]*[ -/]*[@-~]', '', s)


def default_preferences_path() -> Optional[str]:
    try:
        if sys.platform == "win32":
            return get_app_path(PREF_FILENAME, writable=True)
        config_dir = platformdirs.user_config_dir(APP_NAME, APP_AUTHOR)
        os.makedirs(config_dir, exist_ok=True)
        return os.path.join(config_dir, PREF_FILENAME)
    except Exception as e_path:
        print(f"{Fore.RED}Critical Error determining preferences path: {e_path}{Style.RESET_ALL}", file=sys.stderr)
        print(f"{Fore.YELLOW}Preferences may not save correctly.{Style.RESET_ALL}", file=sys.stderr)
        return None


class SettingsManager:
    """Persists the selected reciter and audio settings, and runs the settings menu"""

    def __init__(self, preferences_file: Optional[str] = None, input_fn: Callable[[str], str] = input):
        self.preferences_file = preferences_file if preferences_file is not None else default_preferences_path()
        self.input_fn = input_fn
        self.preferences = self._load_preferences()

    # --- Persistence ---

    def _load_preferences(self) -> dict:
        if not self.preferences_file:
            return {}
        try:
            with open(self.preferences_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            print(Fore.YELLOW + f"Preferences file '{self.preferences_file}' is corrupted, resetting." + Style.RESET_ALL)
            return {}
        except OSError as e:
            print(Fore.RED + f"Error loading preferences from '{self.preferences_file}': {e}" + Style.RESET_ALL)
            return {}

    def save_preferences(self) -> bool:
        if not self.preferences_file:
            print(Fore.RED + "Error: Preferences file path not determined. Cannot save." + Style.RESET_ALL)
            return False
        try:
            pref_dir = os.path.dirname(self.preferences_file)
            if pref_dir:
                os.makedirs(pref_dir, exist_ok=True)
            json_data = json.dumps(self.preferences, ensure_ascii=False, indent=2)
            with open(self.preferences_file, 'w', encoding='utf-8') as f:
                f.write(json_data)
            return True
        except (TypeError, OSError) as e:
            print(Fore.RED + f"Error saving preferences to '{self.preferences_file}': {e}" + Style.RESET_ALL)
            return False

    # --- Typed accessors ---

    @property
    def reciter_id(self) -> int:
        reciter_id = self.preferences.get("reciter_id", DEFAULT_RECITER_ID)
        return reciter_id if get_reciter(reciter_id) else DEFAULT_RECITER_ID

    @reciter_id.setter
    def reciter_id(self, value: int):
        if not get_reciter(value):
            raise ValueError(f"Unknown reciter id: {value}")
        self.preferences["reciter_id"] = value
        self.save_preferences()

    def load_audio_settings(self) -> AudioSettings:
        """Stored audio settings; invalid entries fall back to defaults with a warning"""
        raw = dict(self.preferences.get("audio_settings") or {})
        # JSON has no infinity, the repeat count is stored as a label
        if raw.get("repeat_count") == INFINITE_LABEL:
            raw["repeat_count"] = math.inf
        try:
            return AudioSettings.model_validate(raw)
        except ValidationError as e:
            print(f"{Fore.YELLOW}Warning: Invalid audio settings in preferences, using defaults ({e.error_count()} errors).{Style.RESET_ALL}")
            return AudioSettings()

    def save_audio_settings(self, settings: AudioSettings) -> bool:
        data = settings.model_dump()
        if math.isinf(settings.repeat_count):
            data["repeat_count"] = INFINITE_LABEL
        self.preferences["audio_settings"] = data
        return self.save_preferences()

    # --- Interactive menu ---

    def show_settings_menu(self, settings: AudioSettings, speed_adjustable: bool = True) -> AudioSettings:
        """
        Menu for reciter and audio settings. Returns the (possibly changed) settings, already saved.
        With speed_adjustable=False the speed entry is shown as fixed and cannot be changed.
        """
        settings = settings.model_copy()
        while True:
            reciter = get_reciter(self.reciter_id)
            commands = [
                (f"{Fore.CYAN}1{Style.RESET_ALL}", f"Reciter        : {Fore.GREEN}{reciter.name}"),
                (f"{Fore.CYAN}2{Style.RESET_ALL}", f"Repeat count   : {Fore.GREEN}{settings.repeat_label()}"),
                (f"{Fore.CYAN}3{Style.RESET_ALL}", f"Playback speed : {Fore.GREEN}{settings.playback_speed}x"
                 if speed_adjustable else f"Playback speed : {Fore.YELLOW}1.0x (fixed by audio output)"),
                (f"{Fore.CYAN}4{Style.RESET_ALL}", f"Auto-scroll    : {Fore.GREEN + 'On' if settings.auto_scroll else Fore.RED + 'Off'}"),
                (f"{Fore.RED}b{Style.RESET_ALL}", "Back"),
            ]
            max_cmd_len = max(len(_strip_ansi(cmd)) for cmd, _ in commands)

            print(Fore.RED + "╭─ " + Style.BRIGHT + Fore.GREEN + "⚙️ Audio Settings")
            for cmd, desc in commands:
                pad = " " * (max_cmd_len - len(_strip_ansi(cmd)))
                print(Fore.RED + f"├─ {cmd}{pad} : {Style.NORMAL}{Fore.WHITE}{desc}{Style.RESET_ALL}")
            print(Fore.RED + "╰────────────────────────────────────────")

            try:
                choice = self.input_fn(Fore.RED + "  ❯ " + Fore.WHITE).strip().lower()
            except (KeyboardInterrupt, EOFError):
                choice = 'b'

            if choice in ('b', 'back', 'q'):
                self.save_audio_settings(settings)
                return settings
            elif choice == '1':
                self._choose_reciter()
            elif choice == '2':
                settings.repeat_count = self._next_choice(REPEAT_CHOICES, settings.repeat_count)
            elif choice == '3' and not speed_adjustable:
                print(f"{Fore.YELLOW}Playback speed cannot be changed on this audio output.{Style.RESET_ALL}")
            elif choice == '3':
                settings.playback_speed = self._next_choice(SPEED_CHOICES, settings.playback_speed)
            elif choice == '4':
                settings.auto_scroll = not settings.auto_scroll
            else:
                print(f"{Fore.YELLOW}Invalid option. Please try again.{Style.RESET_ALL}")

    @staticmethod
    def _next_choice(choices, current):
        """Cycle to the value after `current`; unknown values restart the cycle"""
        if current in choices:
            return choices[(choices.index(current) + 1) % len(choices)]
        return choices[0]

    def _choose_reciter(self):
        print(Fore.RED + "╭─ " + Style.BRIGHT + Fore.GREEN + "🎤 Select Reciter")
        for reciter in RECITERS:
            marker = f"{Fore.GREEN}✓" if reciter.id == self.reciter_id else " "
            print(Fore.RED + f"│ {marker} {Fore.CYAN}{reciter.id:>3}{Fore.WHITE} : {reciter.name}{Style.RESET_ALL}")
        print(Fore.RED + "╰────────────────────────────────────────")
        try:
            choice = self.input_fn(Fore.RED + "  ❯ " + Fore.WHITE).strip()
        except (KeyboardInterrupt, EOFError):
            return
        if choice.isdigit() and get_reciter(int(choice)):
            self.reciter_id = int(choice)
            print(f"{Fore.GREEN}✓ Reciter set to {get_reciter(int(choice)).name}.{Style.RESET_ALL}")
        elif choice:
            print(f"{Fore.YELLOW}Unknown reciter id.{Style.RESET_ALL}")
