"""Decides, per resolved local file, which way its save should move."""
from savesync.logger import logger
from savesync.models import SaveSync, SyncAction


def truncate_to_second(dt):
    return dt.replace(microsecond=0)


def matching_remote_saves(rom_file, base_name):
    """Remote saves whose timestamp-stripped name equals ``base_name`` exactly."""
    return [s for s in rom_file.remote_saves if s.base_name == base_name]


def last_remote_save_for_base_name(rom_file, base_name):
    """Most recently updated remote save of this base name, or None.

    Several local ROM files sharing a checksum but not a name each follow
    their own save lineage this way.
    """
    matching = [s for s in matching_remote_saves(rom_file, base_name) if s.updated_at is not None]
    if not matching:
        undated = matching_remote_saves(rom_file, base_name)
        return undated[0] if undated else None
    return max(matching, key=lambda s: s.updated_at)


def determine_sync_action(rom_file):
    has_local = rom_file.local_save is not None
    remote = last_remote_save_for_base_name(rom_file, rom_file.base_name)
    has_remote = remote is not None

    if not has_local and not has_remote:
        return SyncAction.SKIP
    if has_local and not has_remote:
        return SyncAction.UPLOAD
    if not has_local and has_remote:
        return SyncAction.DOWNLOAD

    if remote.updated_at is None:
        # A remote save with no timestamp cannot be newer than ours.
        return SyncAction.UPLOAD

    # Filesystems keep sub-second precision, the API does not.
    local_time = truncate_to_second(rom_file.local_save.last_modified)
    remote_time = truncate_to_second(remote.updated_at)
    if local_time > remote_time:
        return SyncAction.UPLOAD
    if local_time < remote_time:
        return SyncAction.DOWNLOAD
    return SyncAction.SKIP


def sync_key(rom_file):
    if rom_file.local_save is not None:
        return rom_file.local_save.path
    return f"download_{rom_file.rom_id}_{rom_file.base_name}"


def plan_save_syncs(scan):
    """Build the SaveSync list for a resolved inventory.

    Files pending fuzzy confirmation or without a ROM id are left out, and
    a second plan for an already planned key is dropped.
    """
    planned = {}
    for platform_key, roms in scan.items():
        for rom_file in roms:
            if rom_file.pending_fuzzy_match or not rom_file.rom_id:
                continue
            action = determine_sync_action(rom_file)
            logger.debug(
                f"Evaluated {rom_file.file_name} ({rom_file.rom_id}): "
                f"local={rom_file.local_save is not None}, "
                f"remote={len(rom_file.remote_saves)} -> {action.value}"
            )
            if action == SyncAction.SKIP:
                continue
            key = sync_key(rom_file)
            if key in planned:
                continue
            planned[key] = SaveSync(
                rom_id=rom_file.rom_id,
                platform_key=platform_key,
                game_base_name=rom_file.base_name,
                action=action,
                local=rom_file.local_save,
                remote=last_remote_save_for_base_name(rom_file, rom_file.base_name),
                rom_name=rom_file.rom_name or "",
            )
    return list(planned.values())
