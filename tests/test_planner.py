from datetime import datetime, timezone

from savesync.models import LocalRomFile, LocalSave, RemoteSave, SyncAction, extract_save_base_name
from savesync.planner import (
    determine_sync_action,
    last_remote_save_for_base_name,
    plan_save_syncs,
)


def _utc(*args, **kwargs):
    return datetime(*args, tzinfo=timezone.utc, **kwargs)


def _local(path="/saves/gba/pokemon.sav", modified=None, slug="gba"):
    return LocalSave(slug, path, modified or _utc(2024, 1, 1))


def _remote(file_name="pokemon.sav", updated_at=None, save_id=1, rom_id=42):
    return RemoteSave.from_api({
        "id": save_id,
        "rom_id": rom_id,
        "file_name": file_name,
        "file_extension": "sav",
        "download_path": f"/api/saves/{save_id}/content",
        "updated_at": updated_at or "2024-01-01T00:00:00Z",
    })


def _rom(file_name="pokemon.gba", local=None, remotes=(), rom_id=42, slug="gba"):
    return LocalRomFile(
        platform_key=slug,
        file_name=file_name,
        file_path=f"/roms/{slug}/{file_name}",
        rom_id=rom_id,
        rom_name="Pokemon",
        local_save=local,
        remote_saves=list(remotes),
    )


class TestBaseNames:
    def test_timestamp_suffix_stripped(self):
        assert extract_save_base_name("Pokemon Red [2024-01-02 15-04-05-000]") == "Pokemon Red"

    def test_remote_suffix_matches_local_file(self):
        remote = _remote(file_name="Pokemon Red [2024-01-02 15-04-05-000].sav")
        rom = _rom(file_name="Pokemon Red.gba", local=_local("/saves/gba/Pokemon Red.sav"))
        assert remote.base_name == "Pokemon Red"
        assert remote.base_name == rom.local_save.base_name == rom.base_name

    def test_match_is_case_sensitive(self):
        rom = _rom(file_name="Pokemon Red.gba", remotes=[_remote("pokemon red.sav")])
        assert last_remote_save_for_base_name(rom, rom.base_name) is None

    def test_unrelated_brackets_kept(self):
        assert extract_save_base_name("Zelda [!]") == "Zelda [!]"


class TestDetermineSyncAction:
    def test_nothing_anywhere_is_skip(self):
        assert determine_sync_action(_rom()) == SyncAction.SKIP

    def test_local_only_is_upload(self):
        assert determine_sync_action(_rom(local=_local())) == SyncAction.UPLOAD

    def test_remote_only_is_download(self):
        assert determine_sync_action(_rom(remotes=[_remote()])) == SyncAction.DOWNLOAD

    def test_remote_for_other_base_name_ignored(self):
        rom = _rom(local=_local(), remotes=[_remote("other.sav")])
        assert determine_sync_action(rom) == SyncAction.UPLOAD

    def test_newer_local_uploads(self):
        rom = _rom(local=_local(modified=_utc(2024, 1, 3)),
                   remotes=[_remote(updated_at="2024-01-02T00:00:00Z")])
        assert determine_sync_action(rom) == SyncAction.UPLOAD

    def test_newer_remote_downloads(self):
        rom = _rom(local=_local(modified=_utc(2024, 1, 1)),
                   remotes=[_remote(updated_at="2024-01-02T00:00:00Z")])
        assert determine_sync_action(rom) == SyncAction.DOWNLOAD

    def test_sub_second_difference_is_skip(self):
        rom = _rom(
            local=_local(modified=_utc(2024, 1, 1, 12, 0, 0, 999000)),
            remotes=[_remote(updated_at="2024-01-01T12:00:00.001Z")],
        )
        assert determine_sync_action(rom) == SyncAction.SKIP

    def test_offset_timestamps_compare_in_utc(self):
        rom = _rom(
            local=_local(modified=_utc(2024, 1, 1, 12)),
            remotes=[_remote(updated_at="2024-01-01T14:00:00+02:00")],
        )
        assert determine_sync_action(rom) == SyncAction.SKIP

    def test_most_recent_remote_wins(self):
        rom = _rom(
            local=_local(modified=_utc(2024, 1, 2)),
            remotes=[
                _remote("pokemon [2024-01-01 00-00-00-000].sav", "2024-01-01T00:00:00Z", save_id=1),
                _remote("pokemon [2024-01-03 00-00-00-000].sav", "2024-01-03T00:00:00Z", save_id=2),
                _remote("pokemon.sav", "2023-12-31T00:00:00Z", save_id=3),
            ],
        )
        assert last_remote_save_for_base_name(rom, "pokemon").id == 2
        assert determine_sync_action(rom) == SyncAction.DOWNLOAD


class TestPlanSaveSyncs:
    def test_skip_produces_no_plan(self):
        scan = {"gba": [_rom()]}
        assert plan_save_syncs(scan) == []

    def test_in_sync_produces_no_plan(self):
        scan = {"gba": [_rom(local=_local(), remotes=[_remote()])]}
        assert plan_save_syncs(scan) == []

    def test_plan_fields(self):
        remote = _remote(updated_at="2024-02-01T00:00:00Z")
        scan = {"gba": [_rom(local=_local(), remotes=[remote])]}
        [plan] = plan_save_syncs(scan)
        assert plan.action == SyncAction.DOWNLOAD
        assert plan.rom_id == 42
        assert plan.platform_key == "gba"
        assert plan.game_base_name == "pokemon"
        assert plan.remote.id == remote.id
        assert plan.rom_name == "Pokemon"

    def test_pending_fuzzy_excluded(self):
        rom = _rom(local=_local())
        rom.pending_fuzzy_match = True
        assert plan_save_syncs({"gba": [rom]}) == []

    def test_unresolved_excluded(self):
        assert plan_save_syncs({"gba": [_rom(local=_local(), rom_id=None)]}) == []

    def test_same_local_save_planned_once(self):
        save = _local("/saves/gba/pokemon.sav")
        scan = {"gba": [
            _rom("pokemon.gba", local=save),
            _rom("pokemon.zip", local=save),
        ]}
        assert len(plan_save_syncs(scan)) == 1

    def test_download_only_deduplicated_by_rom_and_base_name(self):
        remote = _remote()
        scan = {"gba": [
            _rom("pokemon.gba", remotes=[remote]),
            _rom("pokemon.zip", remotes=[remote]),
        ]}
        [plan] = plan_save_syncs(scan)
        assert plan.needs_emulator_selection is True

    def test_distinct_base_names_each_planned(self):
        scan = {"gba": [
            _rom("a.gba", local=_local("/saves/gba/a.sav")),
            _rom("b.gba", local=_local("/saves/gba/b.sav")),
        ]}
        assert len(plan_save_syncs(scan)) == 2
