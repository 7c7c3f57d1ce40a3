"""Cross-platform locations for application data and user documents."""

import os
import sys
from pathlib import Path

APP_FOLDER_NAME = "PatientManager"


def get_platform() -> str:
    """Return a normalized platform identifier."""
    if sys.platform == "win32":
        return "windows"
    if sys.platform == "darwin":
        return "macos"
    if sys.platform.startswith("linux"):
        return "linux"
    return "unknown"


def get_app_support_dir() -> Path:
    """Return the per-user application-support directory for this app.

    The directory is not created here; the store creates it on open.
    """
    home = Path.home()
    platform = get_platform()
    if platform == "macos":
        base = home / "Library" / "Application Support"
    elif platform == "windows":
        base = Path(os.environ.get("APPDATA", home / "AppData" / "Roaming"))
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", home / ".local" / "share"))
    return base / APP_FOLDER_NAME


def get_documents_dir() -> Path:
    """Return the user-visible documents directory used for exports."""
    return Path.home() / "Documents"
