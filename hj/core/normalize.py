from hj.core.intervals import merge_blocks
from hj.core.model import Dataset, HabitGroup, UNGROUPED_GROUP_ID
from hj.core.timer_state import dedupe_timers, drop_orphan_timers


def ensure_ungrouped_group(groups):
    if any(g.id == UNGROUPED_GROUP_ID for g in groups):
        return list(groups)
    return [HabitGroup(id=UNGROUPED_GROUP_ID, name="Ungrouped", visible=True)] + list(groups)


# Brings any dataset (freshly loaded, pulled from the remote, or just reconciled) back to the stored invariants:
# the ungrouped group exists, each habit/day's blocks are merged, and there is at most one timer per existing habit.
def normalize_dataset(dataset):
    habits = list(dataset.habits)
    return Dataset(
        habits=habits,
        groups=ensure_ungrouped_group(dataset.groups),
        completions=[c for c in dataset.completions if c.value > 0],
        time_blocks=merge_blocks(dataset.time_blocks),
        active_timers=drop_orphan_timers(dedupe_timers(dataset.active_timers), {h.id for h in habits}),
    )
