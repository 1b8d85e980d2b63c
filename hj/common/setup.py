import os
import sys
from pathlib import Path
from dataclasses import dataclass

# Lil helper function to create missing directories if missing, and optionally error out when a path
# doesn't exist.
def ensure_directory(path: Path,must_exist=False):
    if must_exist:
        if not path.exists():
            raise FileNotFoundError(f"Required directory is missing: {path}")
        if not path.is_dir():
            raise NotADirectoryError(f"Expected a directory, got a file: {path}")
    else:
        path.mkdir(parents=True,exist_ok=True)
    return path

# Picks the base folder user data lives under. HJ_DATA_DIR always wins (tests and portable installs), then the
# Windows roaming profile, then the XDG data home.
def _data_root():
    override = os.getenv("HJ_DATA_DIR")
    if override:
        return Path(override)
    appdata = os.getenv("APPDATA")
    if appdata:
        return Path(appdata) / "HabitJournal"
    xdg = os.getenv("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "habit-journal"
    return Path.home() / ".local" / "share" / "habit-journal"

# Dataclass for accessing paths across program.
@dataclass(frozen=False)
class ProjectPaths:

    root: Path
    data: Path

    logs: Path
    current: Path
    snapshots: Path

    @staticmethod
    def build():
        # Folder for the install itself, no user-specific files
        if getattr(sys, "frozen", False):
            root = Path(sys.executable).resolve().parent
        else:
            root = Path(__file__).resolve().parents[2]

        # Folder for all journal data, logs and snapshots
        data = ensure_directory(_data_root())

        logs = ensure_directory(data / "logs")
        current = ensure_directory(data / "current")
        snapshots = ensure_directory(data / "snapshots")

        return ProjectPaths(
            root = root,
            data = data,
            logs = logs,
            current = current,
            snapshots = snapshots,
        )
PATHS = ProjectPaths.build()
