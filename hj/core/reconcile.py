"""Reconciliation of two full dataset snapshots (device-local and remote).

Precedence per collection:

- habits and groups, keyed by ``id``: the remote copy wins a collision,
  local-only entries are added.
- completions, keyed by ``(habitId, date)``: same as above.
- time-blocks: unioned by ``id`` (remote wins), then bulk-merged, since a
  local-only and a remote-only block of the same habit/day may now overlap.
- active timers, keyed by ``habitId``: the earliest ``startTimestamp`` wins no
  matter which side it came from.

Because "remote wins" is fixed to the remote argument rather than to argument
order, swapping ``local`` and ``remote`` changes only which habit, group and
completion versions survive a collision; the surviving blocks and timers are
decided by value.
"""

import json
from dataclasses import dataclass
from hj.common.logger import log
from hj.core.model import Dataset, timer_precedes
from hj.core.normalize import normalize_dataset


@dataclass(frozen=True)
class Reconciliation:
    dataset: Dataset
    changed_remote: bool    # merged result differs from the remote copy, write it back
    changed_local: bool     # merged result differs from the local copy, load it


def _union(remote_items, local_items, key):
    merged = {}
    for item in remote_items:
        merged[key(item)] = item
    for item in local_items:
        merged.setdefault(key(item), item)
    return list(merged.values())


def _earliest_timers(*sources):
    by_habit = {}
    for timers in sources:
        for timer in timers:
            existing = by_habit.get(timer.habit_id)
            if existing is None or timer_precedes(timer, existing):
                by_habit[timer.habit_id] = timer
    return list(by_habit.values())


def merge_datasets(local, remote):
    merged = Dataset(
        habits=_union(remote.habits, local.habits, lambda h: h.id),
        groups=_union(remote.groups, local.groups, lambda g: g.id),
        completions=_union(remote.completions, local.completions, lambda c: c.key),
        time_blocks=_union(remote.time_blocks, local.time_blocks, lambda b: b.id),
        active_timers=_earliest_timers(remote.active_timers, local.active_timers),
    )
    return normalize_dataset(merged)


def reconcile(local, remote):
    merged = merge_datasets(local, remote)
    result = Reconciliation(
        dataset=merged,
        changed_remote=not datasets_equal(merged, remote),
        changed_local=not datasets_equal(merged, local),
    )
    log.info(f"Reconciled datasets: {len(merged.habits)} habit(s), {len(merged.time_blocks)} block(s), "
             f"{len(merged.active_timers)} timer(s); changed_remote={result.changed_remote}, "
             f"changed_local={result.changed_local}")
    return result


def _canonical(items):
    return sorted(json.dumps(item.to_dict(), sort_keys=True) for item in items)


def datasets_equal(a, b):
    """Structural equality of two datasets, ignoring list order."""
    a_cols, b_cols = a.collections(), b.collections()
    if any(len(a_cols[key]) != len(b_cols[key]) for key in a_cols):
        return False
    return all(_canonical(a_cols[key]) == _canonical(b_cols[key]) for key in a_cols)
