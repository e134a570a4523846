import threading
from typing import TYPE_CHECKING

from savesync.concurrency import bounded_map, parallel_map
from savesync.errors import CatalogUnavailableError, FetchError
from savesync.logger import logger
from savesync.models import Platform, ReconcileReport, ResolutionStatus, UnmatchedSave
from savesync.planner import plan_save_syncs

if TYPE_CHECKING:
    from typing import Any, Protocol

    from savesync.identity_cache import IdentityCache

    class _SaveSyncDeps(Protocol):
        settings: dict
        runtime_dir: str
        _sync_running: bool
        _sync_progress: dict
        _pending_fuzzy_matches: dict
        _unmatched_saves: list
        def _log_debug(self, msg: str) -> None: ...
        def _load_identity_cache(self) -> IdentityCache: ...
        def _save_identity_cache(self, cache: IdentityCache) -> None: ...
        def _save_pass_state(self) -> None: ...
        def _romm_get_platforms(self) -> list: ...
        def _romm_get_saves_for_platform(self, platform_id: int) -> list: ...
        def _romm_list_platform_roms(self, platform_id: int) -> list: ...
        async def _scan_local_roms(self) -> Any: ...
        def _resolve_identity(self, cache: IdentityCache, rom_file: Any) -> Any: ...
        def _execute_sync(self, save_sync: Any) -> Any: ...
        def _apply_emulator_selections(self, plans: list) -> list: ...


PHASE_SCANNING = "scanning"
PHASE_FETCHING = "fetching"
PHASE_RESOLVING = "resolving"
PHASE_PLANNING = "planning"
PHASE_EXECUTING = "executing"
PHASE_REPORTING = "reporting"


class SaveSyncMixin:
    """Drives one reconciliation pass over the whole device inventory.

    Scanning -> Fetching -> Resolving -> Planning -> Executing -> Reporting.
    Scanning, fetching and resolving fan out per platform; a platform that
    fails in one of them is reported and left out, the others carry on.
    """

    def _init_save_sync_state(self):
        self._sync_running = False
        self._progress_lock = threading.Lock()
        self._sync_progress = {
            "running": False,
            "phase": "",
            "current": 0,
            "total": 0,
            "message": "",
        }
        # (platform_key, file_name) -> PendingFuzzyMatch
        self._pending_fuzzy_matches = {}
        self._unmatched_saves = []

    def _set_phase(self, phase, message="", total=0):
        with self._progress_lock:
            self._sync_progress.update({
                "running": True,
                "phase": phase,
                "current": 0,
                "total": total,
                "message": message,
            })
        self._log_debug(f"Sync phase: {phase} {message}".rstrip())

    def _advance_progress(self):
        with self._progress_lock:
            self._sync_progress["current"] += 1

    # ── Fetching ──────────────────────────────────────────────────

    def _fetch_platforms(self, cache):
        """RomM platform list, falling back to the copy kept in the cache."""
        try:
            platforms = self._romm_get_platforms()
        except Exception as e:
            cached = cache.get_platforms()
            if not cached:
                raise CatalogUnavailableError(f"cannot fetch platforms from RomM: {e}") from e
            logger.warning(f"Platform fetch failed, using {len(cached)} cached platform(s): {e}")
            return [Platform.from_api(p) for p in cached]
        cache.set_platforms([p.to_dict() for p in platforms])
        return platforms

    @staticmethod
    def _index_platforms(platforms):
        """Local platform key -> Platform, by fs_slug first, then slug."""
        index = {}
        for p in platforms:
            if p.slug:
                index.setdefault(p.slug, p)
        for p in platforms:
            if p.fs_slug:
                index[p.fs_slug] = p
        return index

    def _fetch_platform_remote_data(self, platform):
        """Saves and catalog titles of one platform.

        A failed title fetch is not an error: (saves, None) keeps whatever
        titles the cache already holds.
        """
        saves = self._romm_get_saves_for_platform(platform.id)
        titles = None
        if self.settings.get("refresh_catalog_titles", True):
            try:
                titles = self._romm_list_platform_roms(platform.id)
            except Exception as e:
                logger.warning(f"Could not refresh titles for {platform.slug}: {e}")
        return saves, titles

    # ── Resolving ─────────────────────────────────────────────────

    def _resolve_platform(self, cache, roms, saves):
        resolutions = []
        for rom_file in roms:
            try:
                resolution = self._resolve_identity(cache, rom_file)
            except Exception as e:
                logger.warning(f"Could not resolve {rom_file.platform_key}/{rom_file.file_name}: {e}")
                continue
            if resolution.status == ResolutionStatus.RESOLVED:
                rom_file.remote_saves = [s for s in saves if s.rom_id == rom_file.rom_id]
            resolutions.append(resolution)
        return resolutions

    # ── Pass ──────────────────────────────────────────────────────

    async def _run_reconcile_pass(self):
        """One full reconciliation pass. Always returns a ReconcileReport."""
        report = ReconcileReport()
        cache = self._load_identity_cache()
        try:
            self._set_phase(PHASE_SCANNING, "Scanning local ROMs")
            scan, scan_errors = await self._scan_local_roms()
            report.scan_errors.extend(scan_errors)

            self._set_phase(PHASE_FETCHING, "Fetching remote saves", total=len(scan))
            try:
                remote_platforms = self._index_platforms(self._fetch_platforms(cache))
            except CatalogUnavailableError as e:
                logger.error(f"Sync aborted: {e}")
                report.error = str(e)
                return report

            slugs = []
            for slug in sorted(scan):
                if slug in remote_platforms:
                    slugs.append(slug)
                else:
                    self._log_debug(f"No RomM platform for {slug}, skipping")

            fetched, failures = await parallel_map(
                lambda slug: self._fetch_platform_remote_data(remote_platforms[slug]), slugs
            )
            for slug, exc in failures.items():
                err = FetchError(str(exc), platform_key=slug)
                logger.warning(f"Fetch failed for {slug}: {err}")
                report.fetch_errors.append(f"{slug}: {err}")

            platform_saves = {}
            for slug, (saves, titles) in fetched.items():
                platform_saves[slug] = saves
                if titles is not None:
                    cache.set_games_for_platform(slug, titles)
                self._log_debug(f"Fetched {len(saves)} remote save(s) for {slug}")

            self._set_phase(PHASE_RESOLVING, "Resolving ROM identities", total=len(platform_saves))
            resolved, failures = await parallel_map(
                lambda slug: self._resolve_platform(cache, scan[slug], platform_saves[slug]),
                sorted(platform_saves),
            )
            for slug, exc in failures.items():
                logger.warning(f"Resolution failed for {slug}: {exc}")
                report.fetch_errors.append(f"{slug}: {exc}")

            pending = {}
            for slug in sorted(resolved):
                for resolution in resolved[slug]:
                    if resolution.status == ResolutionStatus.PENDING:
                        p = resolution.pending
                        pending[(p.platform_key, p.local_file_name)] = p
                    elif resolution.status == ResolutionStatus.UNMATCHED:
                        report.unmatched.append(resolution.unmatched)
            report.pending_fuzzy.extend(pending.values())

            self._set_phase(PHASE_PLANNING, "Planning save syncs")
            plans = plan_save_syncs({slug: scan[slug] for slug in resolved})

            self._set_phase(PHASE_EXECUTING, f"Syncing {len(plans)} save(s)", total=len(plans))

            def execute(save_sync):
                result = self._execute_sync(save_sync)
                self._advance_progress()
                return result

            self._apply_emulator_selections(plans)
            limit = self.settings.get("max_concurrent_transfers", 4)
            report.results.extend(await bounded_map(execute, plans, limit))

            self._set_phase(PHASE_REPORTING, "Sync complete")
            self._pending_fuzzy_matches = pending
            self._unmatched_saves = list(report.unmatched)
            self._save_pass_state()
            logger.info(
                f"Sync pass finished: {len(report.succeeded)} ok, {len(report.failed)} failed, "
                f"{len(report.unmatched)} unmatched, {len(report.pending_fuzzy)} pending"
            )
            return report
        finally:
            self._save_identity_cache(cache)

    # ── Callables ─────────────────────────────────────────────────

    async def sync_all_saves(self):
        """Run a reconciliation pass over every platform."""
        if self._sync_running:
            return {"success": False, "message": "Sync already in progress"}
        self._sync_running = True
        try:
            report = await self._run_reconcile_pass()
        finally:
            self._sync_running = False
            with self._progress_lock:
                self._sync_progress["running"] = False

        if report.error:
            return {"success": False, "message": f"Sync failed: {report.error}", **report.to_dict()}

        msg = f"Synced {len(report.succeeded)} save(s)"
        if report.failed:
            msg += f", {len(report.failed)} error(s)"
        if report.pending_fuzzy:
            msg += f", {len(report.pending_fuzzy)} fuzzy match(es) to confirm"
        if report.unmatched:
            msg += f", {len(report.unmatched)} unmatched"
        return {
            "success": not report.failed,
            "message": msg,
            **report.to_dict(),
        }

    async def get_sync_progress(self):
        with self._progress_lock:
            return dict(self._sync_progress)

    async def get_pending_fuzzy_matches(self):
        return {"matches": [p.to_dict() for p in self._pending_fuzzy_matches.values()]}

    async def get_unmatched_saves(self):
        return {"unmatched": [u.to_dict() for u in self._unmatched_saves]}

    async def confirm_fuzzy_match(self, platform_key, file_name, accept=True):
        """Accept or reject a pending fuzzy match.

        Accepting stores the mapping so the next pass resolves the file from
        cache. Rejecting starts a cooldown and lists the save as unmatched.
        """
        if self._sync_running:
            return {"success": False, "message": "Sync in progress"}
        match = self._pending_fuzzy_matches.pop((platform_key, file_name), None)
        if match is None:
            return {"success": False, "message": "Fuzzy match not found"}

        cache = self._load_identity_cache()
        if accept:
            cache.save_mapping(platform_key, file_name, match.candidate_rom_id, match.candidate_name)
            cache.clear_failed_lookup(platform_key, file_name)
            logger.info(f"Confirmed fuzzy match {file_name} -> {match.candidate_name}")
            message = f"Matched {file_name} to {match.candidate_name}"
        else:
            cache.record_failed_lookup(platform_key, file_name)
            self._unmatched_saves.append(
                UnmatchedSave(save_path=match.save_path, platform_key=platform_key)
            )
            logger.info(f"Rejected fuzzy match {file_name} -> {match.candidate_name}")
            message = f"Rejected match for {file_name}"
        self._save_identity_cache(cache)
        self._save_pass_state()
        return {"success": True, "message": message}

    async def clear_identity_cache(self):
        if self._sync_running:
            return {"success": False, "message": "Sync in progress"}
        cache = self._load_identity_cache()
        count = cache.mapping_count()
        cache.clear()
        self._save_identity_cache(cache)
        self._pending_fuzzy_matches = {}
        self._unmatched_saves = []
        self._save_pass_state()
        return {"success": True, "message": f"Cleared {count} cached mapping(s)"}
