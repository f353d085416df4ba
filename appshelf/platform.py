"""
Platform detection helpers for AppShelf.

Centralizes Windows vs. POSIX differences so the rest of the codebase
can call simple functions instead of scattering ``sys.platform`` checks.
"""

import os
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict


def is_windows() -> bool:
    """Return True when running on Windows."""
    return sys.platform == "win32"


def default_data_dir() -> Path:
    """Return the directory that holds the list database and CSV exports.

    Uses ``%LOCALAPPDATA%\\AppShelf`` on Windows, otherwise
    ``$XDG_DATA_HOME/appshelf`` or ``~/.local/share/appshelf``.
    """
    if is_windows():
        base = os.environ.get("LOCALAPPDATA") or os.environ.get("APPDATA")
        if base:
            return Path(base) / "AppShelf"
        return Path.home() / "AppShelf"
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "appshelf"
    return Path.home() / ".local" / "share" / "appshelf"


def hidden_window_kwargs() -> Dict[str, Any]:
    """Return ``subprocess`` keyword arguments that suppress console windows.

    Package managers are console programs; launched from a windowed process on
    Windows they would flash a console for every call. Elsewhere this is empty.
    """
    if not is_windows():
        return {}
    startupinfo = subprocess.STARTUPINFO()  # type: ignore[attr-defined]
    startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW  # type: ignore[attr-defined]
    startupinfo.wShowWindow = 0  # SW_HIDE
    return {
        "creationflags": subprocess.CREATE_NO_WINDOW,  # type: ignore[attr-defined]
        "startupinfo": startupinfo,
    }
