"""Name cleaning shared by the scanner (folder tags) and the fuzzy resolver."""
import re

from rapidfuzz.distance import Levenshtein

TAG_RE = re.compile(r"\((.*?)\)")
BRACKET_RE = re.compile(r"\[.*?\]")
ORDERED_FOLDER_RE = re.compile(r"\d+\)\s")
# Only a short alphanumeric run counts as an extension, so titles such as
# "Super Mario Bros. 3" keep their trailing ". 3".
ROM_EXTENSION_RE = re.compile(r"\.[A-Za-z0-9]{1,5}$")


def strip_rom_extension(name):
    return ROM_EXTENSION_RE.sub("", name)


def parse_tag(name):
    """Return the parenthesised tags of a folder name, joined by spaces.

    "Game Boy Advance (GBA)" -> "GBA"
    """
    return " ".join(TAG_RE.findall(name))


def clean_name(name):
    """Drop tags and ordered-folder prefixes from a display name."""
    cleaned = TAG_RE.sub("", name)
    cleaned = ORDERED_FOLDER_RE.sub("", cleaned, count=1)
    cleaned = cleaned.replace(":", " -")
    return cleaned.strip()


def normalize_for_comparison(name):
    name = strip_rom_extension(name)
    name = clean_name(name)
    name = BRACKET_RE.sub("", name)
    name = name.strip().lower()
    for sep in ("-", "_", "."):
        name = name.replace(sep, " ")
    return " ".join(name.split())


def similarity(a, b):
    """1 - edit_distance / max(len(a), len(b)); identical strings score 1.0."""
    if a == b:
        return 1.0
    return Levenshtein.normalized_similarity(a, b)
