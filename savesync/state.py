import os
import json
from typing import TYPE_CHECKING

from savesync.identity_cache import IdentityCache, DEFAULT_LOOKUP_COOLDOWN_SEC
from savesync.logger import logger
from savesync.models import PendingFuzzyMatch, UnmatchedSave

if TYPE_CHECKING:
    from typing import Protocol

    class _StateDeps(Protocol):
        settings: dict
        settings_dir: str
        runtime_dir: str


DEFAULT_FUZZY_MATCH_THRESHOLD = 0.80
PASS_STATE_FILE = "last_pass.json"


class StateMixin:
    def _load_settings(self):
        settings_path = os.path.join(self.settings_dir, "settings.json")
        try:
            with open(settings_path, "r") as f:
                self.settings = json.load(f)
            if not isinstance(self.settings, dict):
                self.settings = {}
        except (FileNotFoundError, json.JSONDecodeError):
            self.settings = {}
        self.settings.setdefault("romm_url", "")
        self.settings.setdefault("romm_user", "")
        self.settings.setdefault("romm_pass", "")
        self.settings.setdefault("romm_allow_insecure_ssl", False)
        self.settings.setdefault("cfw", "")
        self.settings.setdefault("rom_directory", "")
        self.settings.setdefault("save_directory", "")
        self.settings.setdefault("directory_mappings", {})
        self.settings.setdefault("emulator_selections", {})
        self.settings.setdefault("api_timeout", 30)
        self.settings.setdefault("fuzzy_match_threshold", DEFAULT_FUZZY_MATCH_THRESHOLD)
        self.settings.setdefault("lookup_cooldown_sec", DEFAULT_LOOKUP_COOLDOWN_SEC)
        self.settings.setdefault("max_concurrent_transfers", 4)
        self.settings.setdefault("refresh_catalog_titles", True)
        self.settings.setdefault("log_level", "warn")

    def _save_settings_to_disk(self):
        os.makedirs(self.settings_dir, exist_ok=True)
        settings_path = os.path.join(self.settings_dir, "settings.json")
        tmp_path = settings_path + ".tmp"
        with open(tmp_path, "w") as f:
            json.dump(self.settings, f, indent=2)
        os.replace(tmp_path, settings_path)

    LOG_LEVELS = {"debug": 0, "info": 1, "warn": 2, "error": 3}

    def _log_debug(self, msg):
        """Log a message only when log_level allows debug messages."""
        configured = self.settings.get("log_level", "warn")
        if self.LOG_LEVELS.get("debug", 0) >= self.LOG_LEVELS.get(configured, 2):
            logger.info(msg)

    def _identity_cache_path(self):
        return os.path.join(self.runtime_dir, IdentityCache.FILE_NAME)

    def _load_identity_cache(self):
        cooldown = self.settings.get("lookup_cooldown_sec", DEFAULT_LOOKUP_COOLDOWN_SEC)
        cache = IdentityCache(self._identity_cache_path(), cooldown_sec=float(cooldown))
        return cache.load()

    def _save_identity_cache(self, cache):
        try:
            cache.save()
        except OSError as e:
            logger.error(f"Failed to write identity cache {cache.path}: {e}")

    # ── Last pass (pending fuzzy matches, unmatched saves) ───────

    def _pass_state_path(self):
        return os.path.join(self.runtime_dir, PASS_STATE_FILE)

    def _load_pass_state(self):
        """Restore the previous pass's outstanding matches. Corrupt -> empty."""
        self._pending_fuzzy_matches = {}
        self._unmatched_saves = []
        try:
            with open(self._pass_state_path(), "r") as f:
                data = json.load(f)
            for p in data.get("pending_fuzzy", []):
                match = PendingFuzzyMatch(**p)
                self._pending_fuzzy_matches[(match.platform_key, match.local_file_name)] = match
            self._unmatched_saves = [UnmatchedSave(**u) for u in data.get("unmatched", [])]
        except FileNotFoundError:
            pass
        except (json.JSONDecodeError, AttributeError, TypeError) as e:
            logger.warning(f"Ignoring unreadable pass state: {e}")
            self._pending_fuzzy_matches = {}
            self._unmatched_saves = []

    def _save_pass_state(self):
        data = {
            "pending_fuzzy": [p.to_dict() for p in self._pending_fuzzy_matches.values()],
            "unmatched": [u.to_dict() for u in self._unmatched_saves],
        }
        path = self._pass_state_path()
        try:
            os.makedirs(self.runtime_dir, exist_ok=True)
            tmp_path = path + ".tmp"
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"Failed to write pass state {path}: {e}")
