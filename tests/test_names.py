import pytest

from savesync.names import (
    clean_name,
    normalize_for_comparison,
    parse_tag,
    similarity,
    strip_rom_extension,
)


class TestParseTag:
    def test_single_tag(self):
        assert parse_tag("Game Boy Advance (GBA)") == "GBA"

    def test_multiple_tags_joined(self):
        assert parse_tag("Arcade (FBN) (CPS)") == "FBN CPS"

    def test_no_tag(self):
        assert parse_tag("Game Boy Advance") == ""


class TestCleanName:
    def test_strips_tags(self):
        assert clean_name("Zelda (USA) (Rev 1)") == "Zelda"

    def test_strips_ordered_folder_prefix(self):
        assert clean_name("01) Game Boy (GB)") == "Game Boy"

    def test_colon_becomes_dash(self):
        assert clean_name("Metroid: Zero Mission") == "Metroid - Zero Mission"


class TestNormalizeForComparison:
    def test_rom_file_and_catalog_title_agree(self):
        local = normalize_for_comparison("Super Mario Bros 3 (USA).nes")
        remote = normalize_for_comparison("Super Mario Bros. 3")
        assert local == "super mario bros 3"
        assert remote == "super mario bros 3"

    def test_strips_bracketed_tags(self):
        assert normalize_for_comparison("Tetris [!] (World).gb") == "tetris"

    def test_collapses_separators(self):
        assert normalize_for_comparison("Final_Fantasy - VI.sfc") == "final fantasy vi"

    def test_long_suffix_is_not_an_extension(self):
        assert strip_rom_extension("Dr. Mario") == "Dr. Mario"
        assert strip_rom_extension("game.sfc") == "game"


class TestSimilarity:
    def test_identical(self):
        assert similarity("pokemon red", "pokemon red") == 1.0

    def test_one_edit(self):
        # one substitution over 4 characters
        assert similarity("abcd", "abce") == pytest.approx(0.75)

    def test_unrelated_titles_score_low(self):
        assert similarity("tetris", "metroid fusion") < 0.5

    def test_empty_strings(self):
        assert similarity("", "") == 1.0
