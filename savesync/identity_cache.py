import os
import json
import threading
import time

from savesync.logger import logger

DEFAULT_LOOKUP_COOLDOWN_SEC = 24 * 60 * 60


def _platform_dicts(section):
    if not isinstance(section, dict):
        return {}
    return {k: v for k, v in section.items() if isinstance(v, dict)}


def _clean_filenames(section):
    """Keep only mappings with an integer rom_id; damaged entries are dropped."""
    cleaned = {}
    for platform_key, files in _platform_dicts(section).items():
        kept = {}
        for file_name, entry in files.items():
            if not isinstance(entry, dict):
                continue
            try:
                rom_id = int(entry["rom_id"])
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Dropping damaged cache entry {platform_key}/{file_name}")
                continue
            kept[file_name] = {"rom_id": rom_id, "rom_name": str(entry.get("rom_name") or "")}
        if kept:
            cleaned[platform_key] = kept
    return cleaned


def _clean_failed_lookups(section):
    cleaned = {}
    for platform_key, ledger in _platform_dicts(section).items():
        kept = {}
        for file_name, stamp in ledger.items():
            try:
                kept[file_name] = float(stamp)
            except (TypeError, ValueError):
                continue
        if kept:
            cleaned[platform_key] = kept
    return cleaned


def _clean_games(section):
    cleaned = {}
    if not isinstance(section, dict):
        return cleaned
    for platform_key, games in section.items():
        if not isinstance(games, list):
            continue
        kept = []
        for g in games:
            try:
                kept.append({"id": int(g["id"]), "name": str(g.get("name") or "")})
            except (KeyError, TypeError, ValueError, AttributeError):
                continue
        cleaned[platform_key] = kept
    return cleaned


class IdentityCache:
    """Persistent (platform, file name) -> RomM ROM mapping.

    Also holds the cooldown ledger of failed hash lookups, the per-platform
    catalog titles used for fuzzy matching and the last known platform list.
    Read once at the start of a pass and written once at the end; point
    lookups and writes are lock-protected so resolver workers can share it.
    """

    FILE_NAME = "identity_cache.json"
    VERSION = 1

    def __init__(self, path, cooldown_sec=DEFAULT_LOOKUP_COOLDOWN_SEC, clock=time.time):
        self.path = path
        self.cooldown_sec = cooldown_sec
        self._clock = clock
        self._lock = threading.Lock()
        self._data = self._empty()

    @staticmethod
    def _empty():
        return {
            "version": IdentityCache.VERSION,
            "filenames": {},
            "failed_lookups": {},
            "games": {},
            "platforms": [],
        }

    # ── Persistence ──────────────────────────────────────────────

    def load(self):
        """Load from disk. Missing or corrupt files leave an empty cache."""
        data = self._empty()
        try:
            with open(self.path, "r") as f:
                saved = json.load(f)
            if not isinstance(saved, dict):
                raise ValueError("identity cache root is not an object")
            data["filenames"] = _clean_filenames(saved.get("filenames"))
            data["failed_lookups"] = _clean_failed_lookups(saved.get("failed_lookups"))
            data["games"] = _clean_games(saved.get("games"))
            if isinstance(saved.get("platforms"), list):
                data["platforms"] = [p for p in saved["platforms"] if isinstance(p, dict)]
        except FileNotFoundError:
            logger.debug("No identity cache found, starting empty")
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Identity cache corrupted, starting fresh: {e}")
        with self._lock:
            self._data = data
        return self

    def save(self):
        """Persist to disk (atomic write)."""
        with self._lock:
            snapshot = json.dumps(self._data, indent=2)
        cache_dir = os.path.dirname(self.path)
        if cache_dir:
            os.makedirs(cache_dir, exist_ok=True)
        tmp_path = self.path + ".tmp"
        with open(tmp_path, "w") as f:
            f.write(snapshot)
        os.replace(tmp_path, self.path)

    def clear(self):
        with self._lock:
            self._data = self._empty()

    # ── Filename mappings ────────────────────────────────────────

    def get_rom_id(self, platform_key, file_name):
        """Return (rom_id, rom_name) or None."""
        with self._lock:
            entry = self._data["filenames"].get(platform_key, {}).get(file_name)
        if not entry:
            return None
        return int(entry["rom_id"]), entry.get("rom_name", "")

    def save_mapping(self, platform_key, file_name, rom_id, rom_name):
        with self._lock:
            platform = self._data["filenames"].setdefault(platform_key, {})
            platform[file_name] = {"rom_id": int(rom_id), "rom_name": rom_name or ""}

    def mapping_count(self):
        with self._lock:
            return sum(len(v) for v in self._data["filenames"].values())

    # ── Cooldown ledger ──────────────────────────────────────────

    def record_failed_lookup(self, platform_key, file_name):
        with self._lock:
            ledger = self._data["failed_lookups"].setdefault(platform_key, {})
            ledger[file_name] = self._clock()

    def clear_failed_lookup(self, platform_key, file_name):
        with self._lock:
            ledger = self._data["failed_lookups"].get(platform_key)
            if ledger and file_name in ledger:
                del ledger[file_name]
                if not ledger:
                    del self._data["failed_lookups"][platform_key]

    def should_attempt_lookup(self, platform_key, file_name):
        """False while a recent failed lookup is still inside the cooldown window."""
        with self._lock:
            last_failed = self._data["failed_lookups"].get(platform_key, {}).get(file_name)
        if last_failed is None:
            return True
        return self._clock() - float(last_failed) >= self.cooldown_sec

    # ── Catalog titles and platforms ─────────────────────────────

    def set_games_for_platform(self, platform_key, games):
        """Store [{"id", "name"}] catalog titles for fuzzy matching."""
        cleaned = [g for g in _clean_games({platform_key: list(games)})[platform_key] if g["id"]]
        with self._lock:
            self._data["games"][platform_key] = cleaned

    def get_games_for_platform(self, platform_key):
        with self._lock:
            return list(self._data["games"].get(platform_key, []))

    def set_platforms(self, platforms):
        with self._lock:
            self._data["platforms"] = [dict(p) for p in platforms]

    def get_platforms(self):
        with self._lock:
            return [dict(p) for p in self._data["platforms"]]
