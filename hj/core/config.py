import json
import re
from hj.common.logger import log
from hj.common.setup import PATHS
from hj.core.model import Dataset, now_iso


_SCHEMA_VERSION = 1

#region === Helpers and Paths ===

CURRENT_DIR = PATHS.current
SNAPSHOT_DIR = PATHS.snapshots
SETTINGS_PATH = PATHS.data / "settings.json"

# Default values for settings.json. Grace and quantum are fixed app constants, kept configurable rather than
# re-derived.
_SETTINGS_DEFAULTS = {
    "grace_minutes": 15,
    "slot_minutes": 15,
    "sync_debounce_ms": 2000,
    "tick_running_ms": 1000,
    "tick_idle_ms": 60000,
    "snapshot_before_sync": True,
    "remote_folder": None,
    "user": None,
}

# One journal file per user scope. Signed-out use gets the plain journal.json; user ids are sanitized the same way
# for every platform so a synced folder never sees two spellings of one scope.
def journal_path(user=None):
    if not user:
        return CURRENT_DIR / "journal.json"
    safe = re.sub(r"[^a-zA-Z0-9@._-]", "_", user)
    return CURRENT_DIR / f"journal-{safe}.json"

#endregion === Helpers and Paths ===

#region === Saving and Loading the Journal ===

# Loads the journal document at `path`. A missing file is a fresh start; an unreadable one falls back to an empty
# dataset with a warning. Collection-level defaulting happens in Dataset.from_dict.
def load_dataset(path):
    if not path.exists():
        log.info(f"No journal found at '{path}', starting with an empty dataset.")
        return Dataset()
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (json.JSONDecodeError, OSError, UnicodeDecodeError):
        log.warning(f"Ran into an error while reading '{path}', falling back to an empty dataset.", exc_info=True)
        return Dataset()

    dataset = Dataset.from_dict(raw, source=str(path))
    log.info(f"Loaded journal from '{path}': {len(dataset.habits)} habit(s), {len(dataset.time_blocks)} block(s), "
             f"{len(dataset.active_timers)} running timer(s).")
    return dataset

# Writes the whole dataset to `path`; there are no partial updates.
def save_dataset(dataset, path):
    document = dataset.to_dict()
    document["meta"] = {"schema_version": _SCHEMA_VERSION, "saved_at": now_iso()}
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2)
    log.debug(f"Saved journal to '{path}'")

#endregion === Saving and Loading the Journal ===

#region === Settings ===

def load_settings():
    settings = dict(_SETTINGS_DEFAULTS)
    if not SETTINGS_PATH.exists():
        return settings
    try:
        with open(SETTINGS_PATH, "r", encoding="utf-8") as f:
            stored = json.load(f)
    except (json.JSONDecodeError, OSError, UnicodeDecodeError):
        log.warning(f"Could not read '{SETTINGS_PATH}', using default settings.", exc_info=True)
        return settings
    if not isinstance(stored, dict):
        log.warning(f"'{SETTINGS_PATH}' does not hold an object, using default settings.")
        return settings

    defaulted_values = sorted(key for key in _SETTINGS_DEFAULTS if key not in stored)
    for key in _SETTINGS_DEFAULTS:
        if key in stored:
            settings[key] = stored[key]
    if defaulted_values:
        log.warning(f"Loaded settings from '{SETTINGS_PATH}' with missing values that were defaulted: {', '.join(defaulted_values)}")
    return settings

def save_settings(settings):
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    with open(SETTINGS_PATH, "w", encoding="utf-8") as f:
        json.dump({key: settings.get(key, default) for key, default in _SETTINGS_DEFAULTS.items()}, f, indent=2)
    log.info(f"Saved settings to '{SETTINGS_PATH}'")

#endregion === Settings ===
