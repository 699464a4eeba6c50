"""
Locations of the game installations engine-crane works with.

Values are sourced from environment variables so each machine can point
at its own Steam libraries; otherwise a per-platform default is used.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path


def _env(name: str, default: str | None = None) -> str | None:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    return val


def _local_app_data() -> Path:
    """
    %LocalAppData% on Windows, the XDG cache dir elsewhere. Automation and
    BeamNG both keep their user data under it.
    """
    if os.name == "nt":
        base = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA") or str(Path.home() / "AppData" / "Local")
        return Path(base)
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Caches"
    xdg = os.getenv("XDG_CACHE_HOME")
    if xdg:
        return Path(xdg)
    return Path.home() / ".cache"


def _default_ac_install() -> Path:
    if os.name == "nt":
        return Path("C:/Program Files (x86)/Steam/steamapps/common/assettocorsa")
    return Path.home() / ".local" / "share" / "Steam" / "steamapps" / "common" / "assettocorsa"


def _default_data_dir() -> Path:
    """Return a user-writable directory for crate engines.

    - On Windows: %LocalAppData%/engine-crane
    - On macOS: ~/Library/Application Support/engine-crane
    - On Linux: $XDG_DATA_HOME/engine-crane or ~/.local/share/engine-crane
    """
    if os.name == "nt":
        return _local_app_data() / "engine-crane"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "engine-crane"
    xdg = os.getenv("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "engine-crane"
    return Path.home() / ".local" / "share" / "engine-crane"


def ac_install_path() -> Path:
    return Path(_env("AC_INSTALL_PATH", str(_default_ac_install())))


def ac_cars_path() -> Path:
    return ac_install_path() / "content" / "cars"


def ac_sfx_guids_path() -> Path:
    return ac_install_path() / "content" / "sfx" / "GUIDs.txt"


def beamng_mods_path() -> Path:
    return Path(_env("BEAMNG_MODS_PATH", str(_local_app_data() / "BeamNG.drive" / "mods")))


def automation_user_data_path() -> Path:
    return Path(_env("AUTOMATION_USER_DATA_PATH", str(_local_app_data())))


def automation_documents_path() -> Path:
    return Path(_env("AUTOMATION_DOCUMENTS_PATH", str(Path.home() / "Documents")))


def crate_engine_data_dir() -> Path:
    return Path(_env("ENGINE_CRANE_DATA_DIR", str(_default_data_dir())))
