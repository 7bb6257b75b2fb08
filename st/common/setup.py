import os
from dataclasses import dataclass
from pathlib import Path

_SUBFOLDERS = ("logs", "current", "snapshots")

# Creates `path` (and its parents) when missing and hands it back.
def ensure_directory(path: Path) -> Path:
    if path.exists() and not path.is_dir():
        raise NotADirectoryError(f"Expected a directory, got a file: {path}")
    path.mkdir(parents=True, exist_ok=True)
    return path

# Picks the folder all user-specific data lives in. An explicit STUDYTRACKER_HOME always wins, then the usual
# Windows APPDATA location, and finally a dotfolder in the home directory for everything else.
def resolve_data_root():
    explicit = os.getenv("STUDYTRACKER_HOME")
    if explicit:
        return Path(explicit).expanduser()
    appdata = os.getenv("APPDATA")
    if appdata:
        return Path(appdata) / "StudyTracker"
    return Path.home() / ".studytracker"

# Every on-disk location the app uses. `root` is the source tree, the rest hang off the per-user data folder.
@dataclass
class ProjectPaths:
    root: Path
    data: Path
    logs: Path
    current: Path
    snapshots: Path

    @property
    def state_file(self):
        return self.current / "state.json"

    @staticmethod
    def build(data_root: Path | None = None):
        data = ensure_directory(data_root or resolve_data_root())
        folders = {sub: ensure_directory(data / sub) for sub in _SUBFOLDERS}
        return ProjectPaths(root=Path(__file__).resolve().parents[2], data=data, **folders)

PATHS = ProjectPaths.build()
