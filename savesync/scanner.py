import os
import asyncio
from functools import partial
from typing import TYPE_CHECKING

from savesync import device_paths
from savesync.concurrency import parallel_map
from savesync.errors import ScanError
from savesync.logger import logger
from savesync.models import LocalRomFile, LocalSave
from savesync.names import parse_tag

if TYPE_CHECKING:
    from typing import Protocol

    class _ScannerDeps(Protocol):
        settings: dict
        def _log_debug(self, msg: str) -> None: ...
        def _cfw_platform_dirs(self, cfw: str, slug: str) -> list: ...
        def _platform_keys(self, cfw: str) -> list: ...
        def _rom_folder_name(self, cfw: str, slug: str) -> str: ...
        def _cfw_save_folders(self, cfw: str, slug: str) -> list: ...
        def _directory_mapping(self, slug: str) -> dict: ...


def _visible_entries(path):
    """Non-hidden directory entries; raises OSError if the listing fails."""
    with os.scandir(path) as it:
        return sorted(
            (e for e in it if not e.name.startswith(".")),
            key=lambda e: e.name,
        )


class ScannerMixin:
    """Builds the local inventory: ROM files per platform with their saves."""

    # ── Saves ─────────────────────────────────────────────────────

    def _find_save_files(self, cfw, slug, errors=None):
        """Find local save files for a platform across its emulator folders."""
        save_root = device_paths.get_save_directory(self.settings, cfw)
        folders = self._cfw_save_folders(cfw, slug)
        if not save_root or not folders:
            self._log_debug(f"No save folder mapping for {slug}")
            return []

        saves = []
        for folder in folders:
            save_dir = os.path.join(save_root, folder)
            if not os.path.isdir(save_dir):
                continue
            try:
                entries = _visible_entries(save_dir)
            except OSError as e:
                logger.error(f"Failed to read save directory {save_dir}: {e}")
                if errors is not None:
                    errors.append(f"{slug}: cannot read {save_dir}: {e}")
                continue
            for entry in entries:
                if not entry.is_file():
                    continue
                try:
                    saves.append(LocalSave.from_path(slug, entry.path))
                except OSError as e:
                    logger.warning(f"Failed to stat save {entry.path}: {e}")
        self._log_debug(f"Found {len(saves)} save file(s) for {slug}")
        return saves

    def _build_save_file_map(self, cfw, slug, errors=None):
        """Index a platform's saves by base name (extension stripped)."""
        return {s.base_name: s for s in self._find_save_files(cfw, slug, errors)}

    # ── ROMs ──────────────────────────────────────────────────────

    def _scan_rom_directory(self, slug, rom_dir, save_file_map):
        try:
            entries = _visible_entries(rom_dir)
        except OSError as e:
            raise ScanError(f"cannot read {rom_dir}: {e}", platform_key=slug, path=rom_dir) from e

        roms = []
        for entry in entries:
            if not entry.is_file():
                continue
            rom = LocalRomFile(
                platform_key=slug,
                file_name=entry.name,
                file_path=entry.path,
            )
            rom.local_save = save_file_map.get(rom.base_name)
            roms.append(rom)
        return roms

    def _scan_tag_layout(self, cfw, base_dir):
        """Single listing of the ROM root, matching "(TAG)" folders to platforms.

        Returns (scan, errors).
        """
        scan = {}
        errors = []
        if not os.path.isdir(base_dir):
            logger.warning(f"ROM directory does not exist: {base_dir}")
            return scan, errors
        try:
            entries = _visible_entries(base_dir)
        except OSError as e:
            logger.error(f"Failed to read ROM directory {base_dir}: {e}")
            return scan, [f"cannot read {base_dir}: {e}"]

        slugs = self._platform_keys(cfw)
        save_maps = {}

        for entry in entries:
            if not entry.is_dir():
                continue
            tag = parse_tag(entry.name)
            if not tag:
                self._log_debug(f"No tag found in directory {entry.name}")
                continue

            for slug in slugs:
                matched = any(parse_tag(d) == tag for d in self._cfw_platform_dirs(cfw, slug))
                if not matched:
                    relative_path = self._directory_mapping(slug).get("relative_path", "")
                    matched = bool(relative_path) and parse_tag(relative_path) == tag
                if not matched:
                    continue

                if slug not in save_maps:
                    save_maps[slug] = self._build_save_file_map(cfw, slug, errors)
                try:
                    roms = self._scan_rom_directory(slug, entry.path, save_maps[slug])
                except ScanError as e:
                    logger.error(f"Scan failed for {slug}: {e}")
                    errors.append(f"{slug}: {e}")
                    continue
                if roms:
                    scan.setdefault(slug, []).extend(roms)
                    self._log_debug(f"Found {len(roms)} ROM(s) for {slug} in {entry.name}")
        return scan, errors

    def _scan_platform(self, cfw, base_dir, slug):
        """Direct-path layout worker for one platform."""
        folder = self._rom_folder_name(cfw, slug)
        if not folder:
            self._log_debug(f"No ROM folder mapping for {slug}")
            return [], []
        rom_dir = os.path.join(base_dir, folder)
        if not os.path.isdir(rom_dir):
            return [], []
        errors = []
        save_file_map = self._build_save_file_map(cfw, slug, errors)
        roms = self._scan_rom_directory(slug, rom_dir, save_file_map)
        if roms:
            self._log_debug(f"Found {len(roms)} ROM(s) for {slug}")
        return roms, errors

    async def _scan_local_roms(self):
        """Scan every platform of the configured firmware.

        Returns (scan, errors) where scan maps platform key -> [LocalRomFile].
        """
        cfw = device_paths.get_cfw(self.settings)
        if not cfw:
            logger.warning("Unknown CFW, cannot scan ROMs")
            return {}, ["unsupported or unset firmware kind"]

        base_dir = device_paths.get_rom_directory(self.settings, cfw)
        self._log_debug(f"Starting ROM scan of {base_dir} ({cfw})")

        if device_paths.is_tag_layout(cfw):
            loop = asyncio.get_running_loop()
            scan, errors = await loop.run_in_executor(
                None, self._scan_tag_layout, cfw, base_dir
            )
        else:
            scan = {}
            errors = []
            results, failures = await parallel_map(
                partial(self._scan_platform, cfw, base_dir), self._platform_keys(cfw)
            )
            for slug, (roms, platform_errors) in results.items():
                errors.extend(platform_errors)
                if roms:
                    scan[slug] = roms
            for slug, exc in failures.items():
                logger.error(f"Scan failed for {slug}: {exc}")
                errors.append(f"{slug}: {exc}")

        total = sum(len(r) for r in scan.values())
        logger.info(f"ROM scan complete: {total} ROM(s) across {len(scan)} platform(s)")
        return scan, errors
