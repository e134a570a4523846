import os
import json
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Protocol

    class _PlatformMapDeps(Protocol):
        settings: dict


DEFAULT_PLATFORM_TABLE = os.path.join(os.path.dirname(__file__), "defaults", "platforms.json")


class PlatformMapMixin:
    """Firmware folder names per RomM platform slug.

    Entries under ``directory_mappings`` in settings take precedence over the
    bundled table.
    """

    _platform_table = None

    def _load_platform_map(self):
        if self._platform_table is None:
            with open(DEFAULT_PLATFORM_TABLE, "r") as f:
                self._platform_table = json.load(f)
        return self._platform_table

    def _directory_mapping(self, slug):
        mapping = self.settings.get("directory_mappings", {}).get(slug)
        return mapping if isinstance(mapping, dict) else {}

    def _cfw_platform_map(self, cfw):
        """slug -> [rom directory names] for a firmware kind."""
        return dict(self._load_platform_map().get(cfw, {}).get("roms", {}))

    def _cfw_platform_dirs(self, cfw, slug):
        return list(self._cfw_platform_map(cfw).get(slug, []))

    def _platform_keys(self, cfw):
        keys = set(self._cfw_platform_map(cfw))
        keys.update(self.settings.get("directory_mappings", {}).keys())
        return sorted(keys)

    def _rom_folder_name(self, cfw, slug):
        """Folder holding a platform's ROMs, relative to the ROM root."""
        relative_path = self._directory_mapping(slug).get("relative_path", "")
        if relative_path:
            return relative_path
        table = self._cfw_platform_map(cfw)
        if slug in table:
            return table[slug][0] if table[slug] else ""
        return slug.lower()

    def _cfw_save_folders(self, cfw, slug):
        """Emulator save folders for a platform, relative to the save root."""
        save_directory = self._directory_mapping(slug).get("save_directory", "")
        if save_directory:
            return [save_directory]
        saves = self._load_platform_map().get(cfw, {}).get("saves", {})
        return list(saves.get(slug, []))
