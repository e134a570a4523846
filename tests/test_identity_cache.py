import json

import pytest

from savesync.identity_cache import IdentityCache


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(tmp_path, clock):
    return IdentityCache(str(tmp_path / "identity_cache.json"), cooldown_sec=3600, clock=clock)


class TestMappings:
    def test_miss_returns_none(self, cache):
        assert cache.get_rom_id("gba", "pokemon.gba") is None

    def test_save_and_get(self, cache):
        cache.save_mapping("gba", "pokemon.gba", 42, "Pokemon Emerald")
        assert cache.get_rom_id("gba", "pokemon.gba") == (42, "Pokemon Emerald")

    def test_platforms_are_separate(self, cache):
        cache.save_mapping("gba", "game.bin", 1, "A")
        assert cache.get_rom_id("gb", "game.bin") is None

    def test_mapping_count(self, cache):
        cache.save_mapping("gba", "a.gba", 1, "A")
        cache.save_mapping("gb", "b.gb", 2, "B")
        assert cache.mapping_count() == 2


class TestPersistence:
    def test_round_trip(self, tmp_path, cache, clock):
        cache.save_mapping("gba", "pokemon.gba", 42, "Pokemon Emerald")
        cache.record_failed_lookup("nes", "unknown.nes")
        cache.set_games_for_platform("nes", [{"id": 7, "name": "Super Mario Bros. 3"}])
        cache.set_platforms([{"id": 3, "slug": "nes", "fs_slug": "nes", "name": "NES"}])
        cache.save()

        reloaded = IdentityCache(cache.path, cooldown_sec=3600, clock=clock).load()
        assert reloaded.get_rom_id("gba", "pokemon.gba") == (42, "Pokemon Emerald")
        assert reloaded.should_attempt_lookup("nes", "unknown.nes") is False
        assert reloaded.get_games_for_platform("nes") == [{"id": 7, "name": "Super Mario Bros. 3"}]
        assert reloaded.get_platforms()[0]["slug"] == "nes"

    def test_missing_file_is_empty(self, cache):
        cache.load()
        assert cache.mapping_count() == 0

    def test_corrupt_file_is_empty(self, tmp_path, cache):
        with open(cache.path, "w") as f:
            f.write("{not json")
        cache.load()
        assert cache.mapping_count() == 0
        assert cache.get_platforms() == []

    def test_non_object_root_is_empty(self, cache):
        with open(cache.path, "w") as f:
            json.dump(["nope"], f)
        cache.load()
        assert cache.mapping_count() == 0

    def test_damaged_entries_dropped_good_ones_kept(self, cache):
        with open(cache.path, "w") as f:
            json.dump({
                "filenames": {
                    "gba": {
                        "zelda.gba": {"rom_id": 1, "rom_name": "Zelda"},
                        "broken.gba": {"rom_name": "x"},
                        "words.gba": {"rom_id": "forty-two"},
                        "flat.gba": 7,
                    },
                    "nes": "not a platform",
                },
                "failed_lookups": {"gba": {"late.gba": "yesterday", "ok.gba": 5.0}},
                "games": {"gba": [{"id": "x"}, {"id": 3, "name": "Metroid"}, "junk"]},
                "platforms": [{"id": 1, "slug": "gba"}, "junk"],
            }, f)
        cache.load()

        assert cache.get_rom_id("gba", "zelda.gba") == (1, "Zelda")
        assert cache.get_rom_id("gba", "broken.gba") is None
        assert cache.get_rom_id("gba", "words.gba") is None
        assert cache.get_rom_id("gba", "flat.gba") is None
        assert cache.get_rom_id("nes", "anything.nes") is None
        assert cache.mapping_count() == 1
        assert cache.should_attempt_lookup("gba", "late.gba") is True
        assert cache.get_games_for_platform("gba") == [{"id": 3, "name": "Metroid"}]
        assert cache.get_platforms() == [{"id": 1, "slug": "gba"}]

    def test_save_is_atomic(self, tmp_path, cache):
        cache.save_mapping("gba", "a.gba", 1, "A")
        cache.save()
        assert not (tmp_path / "identity_cache.json.tmp").exists()
        with open(cache.path) as f:
            assert json.load(f)["filenames"]["gba"]["a.gba"]["rom_id"] == 1

    def test_clear(self, cache):
        cache.save_mapping("gba", "a.gba", 1, "A")
        cache.clear()
        assert cache.get_rom_id("gba", "a.gba") is None


class TestCooldownLedger:
    def test_no_entry_allows_lookup(self, cache):
        assert cache.should_attempt_lookup("gba", "x.gba") is True

    def test_recent_failure_blocks_lookup(self, cache, clock):
        cache.record_failed_lookup("gba", "x.gba")
        clock.now += 60
        assert cache.should_attempt_lookup("gba", "x.gba") is False

    def test_expired_failure_allows_lookup(self, cache, clock):
        cache.record_failed_lookup("gba", "x.gba")
        clock.now += 3600
        assert cache.should_attempt_lookup("gba", "x.gba") is True

    def test_clear_failed_lookup(self, cache):
        cache.record_failed_lookup("gba", "x.gba")
        cache.clear_failed_lookup("gba", "x.gba")
        assert cache.should_attempt_lookup("gba", "x.gba") is True

    def test_clear_unknown_entry_is_noop(self, cache):
        cache.clear_failed_lookup("gba", "never.gba")


class TestCatalogTitles:
    def test_entries_without_id_dropped(self, cache):
        cache.set_games_for_platform("gba", [{"id": 1, "name": "A"}, {"id": None, "name": "B"}])
        assert cache.get_games_for_platform("gba") == [{"id": 1, "name": "A"}]

    def test_unknown_platform_has_no_titles(self, cache):
        assert cache.get_games_for_platform("psx") == []
