"""Centralized on-device path resolution.

Resolution order for each root: explicit setting, environment variable,
firmware default. Each call reads the environment fresh so tests and
long-running processes see changes.
"""
import os

NEXTUI = "nextui"
MUOS = "muos"
KNULLI = "knulli"

SUPPORTED_CFWS = (NEXTUI, MUOS, KNULLI)
# Firmwares whose platform folders are recognised by a "(TAG)" in their name.
TAG_LAYOUT_CFWS = (NEXTUI,)

MUOS_SD1 = "/mnt/mmc"
MUOS_SD2 = "/mnt/sdcard"
MUOS_ROMS_UNION = "/mnt/union/ROMS"
NEXTUI_DEFAULT_BASE = "/mnt/SDCARD"
KNULLI_BASE = "/userdata"


def get_cfw(settings):
    """Return the firmware kind (lower-cased) or "" when unsupported."""
    cfw = (os.environ.get("CFW") or settings.get("cfw") or "").lower()
    if cfw in SUPPORTED_CFWS:
        return cfw
    return ""


def is_tag_layout(cfw):
    return cfw in TAG_LAYOUT_CFWS


def _nextui_base_path():
    return os.environ.get("NEXTUI_BASE_PATH") or NEXTUI_DEFAULT_BASE


def _muos_base_path():
    if os.environ.get("MUOS_BASE_PATH"):
        return os.environ["MUOS_BASE_PATH"]
    if os.path.isdir(os.path.join(MUOS_SD2, "MUOS", "info")):
        return MUOS_SD2
    return MUOS_SD1


def get_rom_directory(settings, cfw):
    if settings.get("rom_directory"):
        return settings["rom_directory"]
    if os.environ.get("ROM_DIRECTORY"):
        return os.environ["ROM_DIRECTORY"]
    if cfw == NEXTUI:
        return os.path.join(_nextui_base_path(), "Roms")
    if cfw == MUOS:
        return MUOS_ROMS_UNION
    if cfw == KNULLI:
        return os.path.join(KNULLI_BASE, "roms")
    return ""


def get_save_directory(settings, cfw):
    if settings.get("save_directory"):
        return settings["save_directory"]
    if os.environ.get("SAVE_DIRECTORY"):
        return os.environ["SAVE_DIRECTORY"]
    if cfw == NEXTUI:
        return os.path.join(_nextui_base_path(), "Saves")
    if cfw == MUOS:
        return os.path.join(_muos_base_path(), "MUOS", "save", "file")
    if cfw == KNULLI:
        return os.path.join(KNULLI_BASE, "saves")
    return ""


def default_settings_dir():
    return os.environ.get("SAVESYNC_SETTINGS_DIR") or os.getcwd()


def default_runtime_dir():
    return os.environ.get("SAVESYNC_RUNTIME_DIR") or os.path.join(os.getcwd(), ".cache")


def get_temp_dir(runtime_dir):
    return os.path.join(runtime_dir, "tmp")
