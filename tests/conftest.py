import sys
import os
import logging

import pytest

# Make `main` and `savesync` importable without installing the project
_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _project_root)

logging.getLogger("savesync").setLevel(logging.DEBUG)

_PATH_ENV_VARS = (
    "CFW",
    "ROM_DIRECTORY",
    "SAVE_DIRECTORY",
    "NEXTUI_BASE_PATH",
    "MUOS_BASE_PATH",
    "SAVESYNC_SETTINGS_DIR",
    "SAVESYNC_RUNTIME_DIR",
)


@pytest.fixture(autouse=True)
def _isolate_device_env(monkeypatch):
    """Device path lookups read the environment; keep the host's out of tests."""
    for var in _PATH_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
