import hashlib
import zlib
from typing import TYPE_CHECKING

from savesync.errors import HashError
from savesync.logger import logger
from savesync.models import (
    IdentityResolution,
    PendingFuzzyMatch,
    ResolutionStatus,
    UnmatchedSave,
)
from savesync.names import normalize_for_comparison, similarity
from savesync.state import DEFAULT_FUZZY_MATCH_THRESHOLD

if TYPE_CHECKING:
    from typing import Any, Optional, Protocol

    class _ResolverDeps(Protocol):
        settings: dict
        def _log_debug(self, msg: str) -> None: ...
        def _romm_get_rom_by_hash(self, crc_hash: Optional[str] = None, sha1_hash: Optional[str] = None) -> Any: ...


HASH_CHUNK_SIZE = 1024 * 1024


def file_crc32(path):
    """CRC32 of a file as 8 lowercase hex digits."""
    crc = 0
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
                crc = zlib.crc32(chunk, crc)
    except OSError as e:
        raise HashError(f"cannot read {path}: {e}") from e
    return f"{crc & 0xFFFFFFFF:08x}"


def file_sha1(path):
    h = hashlib.sha1()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
                h.update(chunk)
    except OSError as e:
        raise HashError(f"cannot read {path}: {e}") from e
    return h.hexdigest()


class ResolverMixin:
    """Works out which RomM ROM a local file is.

    Strategies, first hit wins: identity cache, CRC32 then SHA1 lookup,
    fuzzy title match. Fuzzy matches are only proposed, never applied.
    """

    def _fuzzy_match_threshold(self):
        return float(self.settings.get("fuzzy_match_threshold", DEFAULT_FUZZY_MATCH_THRESHOLD))

    def _lookup_rom_id(self, cache, rom_file):
        hit = cache.get_rom_id(rom_file.platform_key, rom_file.file_name)
        if hit:
            self._log_debug(
                f"ROM lookup from cache: {rom_file.platform_key}/{rom_file.file_name} -> {hit[0]}"
            )
        return hit

    def _query_rom_by_hash(self, **query):
        try:
            return self._romm_get_rom_by_hash(**query)
        except Exception as e:
            self._log_debug(f"Hash lookup {query} failed: {e}")
            return None

    def _lookup_rom_by_hash(self, cache, rom_file):
        """CRC32 first, SHA1 second. Returns ((rom_id, rom_name), source) or None.

        A double miss is not recorded in the cooldown ledger here; the
        fuzzy stage decides whether the file is truly unmatched.
        """
        if not rom_file.file_path:
            return None
        slug, name = rom_file.platform_key, rom_file.file_name

        if not cache.should_attempt_lookup(slug, name):
            self._log_debug(f"Skipping hash lookup (cooldown active): {slug}/{name}")
            return None

        for source, digest_fn, param in (
            ("crc32", file_crc32, "crc_hash"),
            ("sha1", file_sha1, "sha1_hash"),
        ):
            try:
                digest = digest_fn(rom_file.file_path)
            except HashError as e:
                logger.warning(f"Hash stage unavailable for {name}: {e}")
                return None
            self._log_debug(f"Looking up {name} by {source} {digest}")
            rom = self._query_rom_by_hash(**{param: digest})
            if rom:
                rom_id, rom_name = int(rom["id"]), rom.get("name", "")
                logger.info(f"Found ROM by {source}: {name} -> {rom_id} ({rom_name})")
                cache.save_mapping(slug, name, rom_id, rom_name)
                cache.clear_failed_lookup(slug, name)
                return (rom_id, rom_name), source

        self._log_debug(f"ROM not found by hash: {slug}/{name}")
        return None

    def _lookup_rom_by_fuzzy_title(self, cache, rom_file):
        """Best catalog title at or above the threshold, as a PendingFuzzyMatch."""
        if not rom_file.platform_key or not rom_file.file_name:
            return None
        games = cache.get_games_for_platform(rom_file.platform_key)
        if not games:
            self._log_debug(f"No cached titles for fuzzy matching on {rom_file.platform_key}")
            return None

        local_normalized = normalize_for_comparison(rom_file.file_name)
        if not local_normalized:
            return None

        threshold = self._fuzzy_match_threshold()
        best = None
        for game in games:
            remote_normalized = normalize_for_comparison(game.get("name", ""))
            if not remote_normalized:
                continue
            score = similarity(local_normalized, remote_normalized)
            if score >= threshold and (best is None or score > best.similarity):
                best = PendingFuzzyMatch(
                    local_file_name=rom_file.file_name,
                    local_path=rom_file.file_path,
                    platform_key=rom_file.platform_key,
                    candidate_rom_id=int(game["id"]),
                    candidate_name=game.get("name", ""),
                    similarity=score,
                    save_path=rom_file.local_save.path if rom_file.local_save else "",
                )

        if best:
            logger.info(
                f"Fuzzy match candidate: {rom_file.file_name} -> {best.candidate_name} "
                f"({best.similarity:.0%})"
            )
        else:
            self._log_debug(
                f"No fuzzy match for {rom_file.file_name} above {threshold:.0%}"
            )
        return best

    def _resolve_identity(self, cache, rom_file):
        """Run the resolution cascade for one local file.

        Updates ``rom_file`` in place (rom_id/rom_name, pending flag) and
        returns an IdentityResolution describing the outcome.
        """
        hit = self._lookup_rom_id(cache, rom_file)
        source = "cache"

        if hit is None and rom_file.local_save is not None:
            found = self._lookup_rom_by_hash(cache, rom_file)
            if found:
                hit, source = found

        if hit is not None:
            rom_file.rom_id, rom_file.rom_name = hit
            return IdentityResolution(
                status=ResolutionStatus.RESOLVED,
                rom_id=hit[0],
                rom_name=hit[1],
                source=source,
            )

        if rom_file.local_save is None:
            return IdentityResolution(status=ResolutionStatus.SKIPPED)

        pending = self._lookup_rom_by_fuzzy_title(cache, rom_file)
        if pending is not None:
            rom_file.pending_fuzzy_match = True
            return IdentityResolution(status=ResolutionStatus.PENDING, pending=pending)

        cache.record_failed_lookup(rom_file.platform_key, rom_file.file_name)
        unmatched = UnmatchedSave(
            save_path=rom_file.local_save.path,
            platform_key=rom_file.platform_key,
        )
        logger.info(
            f"Save has local ROM but not in RomM: {rom_file.file_name} ({rom_file.platform_key})"
        )
        return IdentityResolution(status=ResolutionStatus.UNMATCHED, unmatched=unmatched)
