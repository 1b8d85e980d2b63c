import json
from datetime import datetime
from hj.common.logger import log
from hj.core import config
from hj.core.model import Dataset, now_iso

# Retention targets, in seconds before now. For each one the snapshot taken closest to it survives pruning, on top of
# the KEEP_NEWEST most recent ones.
TIERS = [
    15 * 60,
    60 * 60,
    6 * 3600,
    24 * 3600,
    3 * 86400,
    7 * 86400,
]
KEEP_NEWEST = 3

_PREFIX = "journal_"
_STAMP_FORMAT = "%Y%m%d_%H%M%S_%f"

# Full copy of the dataset taken before something overwrites local data (a reconciliation, a restore). The reason
# rides along in the file's meta block.
def create_snapshot(dataset, reason, snapshot_dir=None):
    target_dir = snapshot_dir or config.SNAPSHOT_DIR
    target_dir.mkdir(parents=True, exist_ok=True)
    document = dataset.to_dict()
    document["meta"] = {"snapshot_reason": reason, "taken_at": now_iso()}

    target_path = target_dir / f"{_PREFIX}{datetime.now().strftime(_STAMP_FORMAT)}.json"
    with open(target_path, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2)
    log.debug(f"Saved snapshot for reason '{reason}' to {target_path}")
    return target_path

# journal_20260212_140311_123456.json -> datetime(2026, 2, 12, 14, 3, 11, 123456)
def snapshot_time(filename):
    if not filename.startswith(_PREFIX) or not filename.endswith(".json"):
        return None
    try:
        return datetime.strptime(filename[len(_PREFIX):-len(".json")], _STAMP_FORMAT)
    except ValueError:
        return None

def list_snapshots(snapshot_dir=None):
    target_dir = snapshot_dir or config.SNAPSHOT_DIR
    if not target_dir.exists():
        return []
    entries = []
    for path in target_dir.iterdir():
        taken = snapshot_time(path.name)
        if taken is not None:
            entries.append((path, taken))
    entries.sort(key=lambda e: e[1], reverse=True)
    return entries

def prune_snapshots(snapshot_dir=None, now=None):
    entries = list_snapshots(snapshot_dir)
    if len(entries) <= KEEP_NEWEST:
        return 0
    now = now or datetime.now()

    keep = {path for path, _ in entries[:KEEP_NEWEST]}
    for tier_secs in TIERS:
        target = now.timestamp() - tier_secs
        best_path, _ = min(entries, key=lambda e: abs(e[1].timestamp() - target))
        keep.add(best_path)

    pruned = 0
    for path, _ in entries:
        if path in keep:
            continue
        try:
            path.unlink()
            pruned += 1
        except OSError:
            log.warning(f"Could not remove snapshot '{path}'", exc_info=True)
    if pruned:
        log.info(f"Pruned {pruned} snapshot(s) from '{snapshot_dir or config.SNAPSHOT_DIR}'")
    return pruned

def restore_snapshot(path):
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return Dataset.from_dict(raw, source=str(path))
