import os
import shutil
from typing import TYPE_CHECKING

from savesync import device_paths
from savesync.errors import OrphanError, SaveIOError, TransferError
from savesync.logger import logger
from savesync.models import SyncAction, SyncResult, strip_extension, upload_timestamp

if TYPE_CHECKING:
    from typing import Any, Protocol

    class _ExecutorDeps(Protocol):
        settings: dict
        runtime_dir: str
        def _log_debug(self, msg: str) -> None: ...
        def _cfw_save_folders(self, cfw: str, slug: str) -> list: ...
        def _romm_download_save(self, download_path: str) -> bytes: ...
        def _romm_upload_save(self, rom_id: int, file_path: str, emulator: str = "") -> Any: ...


def normalize_ext(ext):
    if ext and not ext.startswith("."):
        return "." + ext
    return ext


def set_mtime(path, dt):
    ts = dt.timestamp()
    try:
        os.utime(path, (ts, ts))
    except OSError as e:
        raise SaveIOError(f"failed to update file timestamp: {e}") from e


class ExecutorMixin:
    """Carries out one planned SaveSync: backup, transfer, re-timestamp."""

    def _backup_local_save(self, local):
        """Copy a save into ``.backup/`` beside it, named with its mtime."""
        backup_dir = os.path.join(os.path.dirname(local.path), ".backup")
        dest = os.path.join(backup_dir, local.timestamped_filename())
        try:
            os.makedirs(backup_dir, exist_ok=True)
            shutil.copy2(local.path, dest)
        except OSError as e:
            raise SaveIOError(f"failed to back up {local.path}: {e}") from e
        self._log_debug(f"Backed up {local.path} -> {dest}")
        return dest

    def _resolve_save_directory(self, slug, emulator="", selected_emulator=None):
        """Save folder for a platform that has no local save yet."""
        cfw = device_paths.get_cfw(self.settings)
        save_root = device_paths.get_save_directory(self.settings, cfw)
        folders = self._cfw_save_folders(cfw, slug)
        if not save_root or not folders:
            raise TransferError(f"no save folder mapping for {slug}")

        selected = folders[0]
        if selected_emulator:
            selected = selected_emulator
        elif emulator:
            for folder in folders:
                if emulator.lower() in folder.lower():
                    selected = folder
                    break

        save_dir = os.path.join(save_root, selected)
        try:
            os.makedirs(save_dir, exist_ok=True)
        except OSError as e:
            raise SaveIOError(f"failed to create save directory {save_dir}: {e}") from e
        return save_dir

    def _emulator_folders_with_status(self, slug):
        """[(folder, save_count)] for each emulator save folder of a platform."""
        cfw = device_paths.get_cfw(self.settings)
        save_root = device_paths.get_save_directory(self.settings, cfw)
        status = []
        for folder in self._cfw_save_folders(cfw, slug):
            count = 0
            path = os.path.join(save_root, folder) if save_root else ""
            if path and os.path.isdir(path):
                try:
                    with os.scandir(path) as it:
                        count = sum(1 for e in it if not e.name.startswith(".") and e.is_file())
                except OSError as e:
                    self._log_debug(f"Cannot list {path}: {e}")
            status.append((folder, count))
        return status

    def _select_emulator_folder(self, slug):
        """Emulator folder for saves that have no local copy yet.

        A user choice in ``emulator_selections`` wins; otherwise the only
        folder that already holds saves is picked. None leaves the choice
        to the remote emulator tag, then the first folder.
        """
        chosen = (self.settings.get("emulator_selections") or {}).get(slug)
        if chosen:
            return chosen
        non_empty = [folder for folder, count in self._emulator_folders_with_status(slug) if count]
        if len(non_empty) == 1:
            self._log_debug(f"Auto-selected emulator folder {non_empty[0]} for {slug}")
            return non_empty[0]
        return None

    def _apply_emulator_selections(self, plans):
        selections = {}
        for save_sync in plans:
            if not save_sync.needs_emulator_selection:
                continue
            slug = save_sync.platform_key
            if slug not in selections:
                selections[slug] = self._select_emulator_folder(slug)
            save_sync.selected_emulator = selections[slug]
        return plans

    def _check_transfer_context(self, save_sync):
        if not self.settings.get("romm_url"):
            raise TransferError("RomM server is not configured")
        if not save_sync.rom_id:
            raise OrphanError()

    def _download_save(self, save_sync):
        self._check_transfer_context(save_sync)
        remote = save_sync.remote
        if remote is None or not remote.download_path:
            raise TransferError(f"no remote save to download for {save_sync.game_base_name}")

        self._log_debug(f"Downloading save {remote.id} from {remote.download_path}")
        data = self._romm_download_save(remote.download_path)

        local = save_sync.local
        if save_sync.needs_emulator_selection:
            dest_dir = self._resolve_save_directory(
                save_sync.platform_key, remote.emulator, save_sync.selected_emulator
            )
        else:
            dest_dir = os.path.dirname(local.path)
        ext = normalize_ext(remote.file_extension or os.path.splitext(remote.file_name)[1])
        dest_path = os.path.join(dest_dir, save_sync.game_base_name + ext)

        tmp_path = dest_path + ".tmp"
        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
            os.replace(tmp_path, dest_path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise SaveIOError(f"failed to write save file: {e}") from e

        if remote.updated_at is not None:
            set_mtime(dest_path, remote.updated_at)

        if local is not None and local.path != dest_path:
            try:
                os.remove(local.path)
            except OSError as e:
                logger.warning(f"Could not remove superseded save {local.path}: {e}")

        self._log_debug(f"Downloaded save to {dest_path} (updated_at={remote.updated_at})")
        return dest_path

    def _upload_save(self, save_sync):
        local = save_sync.local
        if local is None:
            raise TransferError("cannot upload: no local save file")
        self._check_transfer_context(save_sync)

        ext = normalize_ext(os.path.splitext(local.path)[1])
        filename = f"{save_sync.game_base_name} {upload_timestamp(local.last_modified)}{ext}"
        staged = os.path.join(device_paths.get_temp_dir(self.runtime_dir), "uploads", filename)
        try:
            os.makedirs(os.path.dirname(staged), exist_ok=True)
            shutil.copy2(local.path, staged)
        except OSError as e:
            raise SaveIOError(f"failed to stage upload: {e}") from e

        emulator = os.path.basename(os.path.dirname(local.path))
        try:
            uploaded = self._romm_upload_save(save_sync.rom_id, staged, emulator)
        finally:
            try:
                os.remove(staged)
            except OSError:
                self._log_debug(f"Staged upload already gone: {staged}")

        if uploaded.updated_at is not None:
            set_mtime(local.path, uploaded.updated_at)
        self._log_debug(f"Uploaded {local.path} as {filename} (emulator={emulator})")
        return local.path

    def _execute_sync(self, save_sync):
        """Run one SaveSync; never raises, failures land in the SyncResult."""
        result = SyncResult(
            game_name=save_sync.game_base_name,
            action=save_sync.action,
            success=False,
            rom_display_name=strip_extension(save_sync.rom_name) if save_sync.rom_name else "",
        )
        if save_sync.action == SyncAction.SKIP:
            result.success = True
            return result

        try:
            if save_sync.action == SyncAction.UPLOAD:
                result.file_path = self._upload_save(save_sync)
            else:
                if save_sync.local is not None:
                    self._backup_local_save(save_sync.local)
                result.file_path = self._download_save(save_sync)
            result.success = True
        except Exception as e:
            result.error_message = str(e)
            logger.error(
                f"Unable to {save_sync.action.value} save for {save_sync.game_base_name}: {e}"
            )
        return result
