"""The journal store: owns the in-memory dataset and is the only thing that mutates it.

Every mutation goes through one method per entity type (insert a block,
start/stop a timer, set a completion, reconcile), which validates input,
applies the merge/dedup rules, writes the whole dataset to disk and then
tells subscribers.  Reads hand out copies or immutable records.
"""

from dataclasses import replace
from datetime import date, datetime
from hj.common.logger import log
from hj.core import config
from hj.core.errors import InvalidEntryError, UnknownHabitError
from hj.core.intervals import insert_block, blocks_for
from hj.core.layout import layout_day, timer_segments
from hj.core.model import (
    Completion, Dataset, Habit, HabitGroup, TimeBlock, UNGROUPED_GROUP_ID,
    check_date, generate_id, now_iso, now_ms,
)
from hj.core.normalize import normalize_dataset
from hj.core.reconcile import reconcile
from hj.core.slots import format_hhmm, parse_hhmm, selection_to_entry, slot_to_time, time_to_slot
from hj.core.snapshot import create_snapshot, prune_snapshots
from hj.core.timer_state import TimerManager, elapsed_readout


def _validate_date(day):
    try:
        return check_date(day)
    except ValueError as e:
        raise InvalidEntryError(str(e)) from None

def _validate_time(start_time):
    try:
        return format_hhmm(parse_hhmm(start_time))
    except ValueError as e:
        raise InvalidEntryError(str(e)) from None

def _validate_duration(duration):
    if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
        raise InvalidEntryError(f"Duration must be a positive whole number of minutes, got {duration!r}")
    return duration

def _local_now(now):
    return datetime.fromtimestamp(now / 1000)


class JournalStore:

    def __init__(self, path=None, settings=None, user=None):
        self.settings = settings if settings is not None else config.load_settings()
        self.path = path or config.journal_path(user or self.settings.get("user"))
        self.dataset = Dataset()
        self._listeners = []

    @classmethod
    def open(cls, path=None, settings=None, user=None):
        store = cls(path=path, settings=settings, user=user)
        store.load()
        return store

    #region === Persistence and change notification ===

    def load(self):
        self.dataset = normalize_dataset(config.load_dataset(self.path))
        return self.dataset

    def save(self):
        config.save_dataset(self.dataset, self.path)

    # `callback(dataset_copy)` runs after every accepted mutation that asked to notify.
    def subscribe(self, callback):
        self._listeners.append(callback)

    def unsubscribe(self, callback):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def snapshot(self):
        return self.dataset.copy()

    def _commit(self, notify=True):
        self.save()
        if notify:
            current = self.snapshot()
            for callback in list(self._listeners):
                callback(current)

    def _timers(self):
        return TimerManager(
            self.dataset,
            grace_minutes=self.settings.get("grace_minutes", 15),
            quantum_minutes=self.settings.get("slot_minutes", 15),
        )

    #endregion === Persistence and change notification ===

    #region === Habits and groups ===

    def habit(self, habit_id):
        return next((h for h in self.dataset.habits if h.id == habit_id), None)

    def find_habit(self, name_or_id):
        found = self.habit(name_or_id)
        if found is None:
            found = next((h for h in self.dataset.habits if h.name.lower() == str(name_or_id).lower()), None)
        return found

    def _require_habit(self, habit_id):
        if self.habit(habit_id) is None:
            raise UnknownHabitError(f"No habit with id '{habit_id}'")

    def add_group(self, name):
        group = HabitGroup(id=generate_id(), name=name, visible=True)
        self.dataset.groups = self.dataset.groups + [group]
        log.info(f"Added group '{name}' ({group.id})")
        self._commit()
        return group

    def toggle_group_visibility(self, group_id):
        self.dataset.groups = [replace(g, visible=not g.visible) if g.id == group_id else g for g in self.dataset.groups]
        self._commit()

    def _require_group(self, group_id):
        group = next((g for g in self.dataset.groups if g.id == group_id), None)
        if group is None:
            raise InvalidEntryError(f"No group with id '{group_id}'")
        return group

    # Renames a group and/or sets its visibility. Arguments left as None are unchanged.
    def update_group(self, group_id, name=None, visible=None):
        group = self._require_group(group_id)
        changes = {}
        if name is not None:
            if not name.strip():
                raise InvalidEntryError("Group name can't be empty")
            changes["name"] = name.strip()
        if visible is not None:
            changes["visible"] = bool(visible)
        updated = replace(group, **changes)
        self.dataset.groups = [updated if g.id == group_id else g for g in self.dataset.groups]
        log.info(f"Updated group '{group_id}': {', '.join(sorted(changes)) or 'no changes'}")
        self._commit()
        return updated

    # The ungrouped group can't be deleted; a deleted group's habits move into it.
    def delete_group(self, group_id):
        if group_id == UNGROUPED_GROUP_ID:
            return False
        self.dataset.groups = [g for g in self.dataset.groups if g.id != group_id]
        self.dataset.habits = [
            replace(h, group_id=UNGROUPED_GROUP_ID) if h.group_id == group_id else h for h in self.dataset.habits
        ]
        log.info(f"Deleted group '{group_id}'")
        self._commit()
        return True

    def add_habit(self, name, group_id=None, emoji=None):
        if not name or not name.strip():
            raise InvalidEntryError("Habit name can't be empty")
        habit = Habit(
            id=generate_id(),
            name=name.strip(),
            group_id=group_id or UNGROUPED_GROUP_ID,
            created_at=now_iso(),
            emoji=emoji,
        )
        self.dataset.habits = self.dataset.habits + [habit]
        log.info(f"Added habit '{habit.name}' ({habit.id})")
        self._commit()
        return habit

    # Edits a habit in place: rename, move to another group, or change its emoji/color. Arguments left as None are
    # unchanged; an empty string clears emoji or color.
    def update_habit(self, habit_id, name=None, group_id=None, emoji=None, color=None):
        self._require_habit(habit_id)
        changes = {}
        if name is not None:
            if not name.strip():
                raise InvalidEntryError("Habit name can't be empty")
            changes["name"] = name.strip()
        if group_id is not None:
            changes["group_id"] = self._require_group(group_id).id
        if emoji is not None:
            changes["emoji"] = emoji or None
        if color is not None:
            changes["color"] = color or None
        updated = replace(self.habit(habit_id), **changes)
        self.dataset.habits = [updated if h.id == habit_id else h for h in self.dataset.habits]
        log.info(f"Updated habit '{habit_id}': {', '.join(sorted(changes)) or 'no changes'}")
        self._commit()
        return updated

    # Deleting a habit takes its completions, blocks and running timer with it.
    def delete_habit(self, habit_id):
        d = self.dataset
        d.habits = [h for h in d.habits if h.id != habit_id]
        d.completions = [c for c in d.completions if c.habit_id != habit_id]
        d.time_blocks = [b for b in d.time_blocks if b.habit_id != habit_id]
        d.active_timers = [t for t in d.active_timers if t.habit_id != habit_id]
        log.info(f"Deleted habit '{habit_id}' and its history")
        self._commit()

    #endregion === Habits and groups ===

    #region === Completions ===

    # value <= 0 clears the mark.
    def set_completion(self, habit_id, day, value):
        self._require_habit(habit_id)
        _validate_date(day)
        others = [c for c in self.dataset.completions if c.key != (habit_id, day)]
        if value > 0:
            others.append(Completion(habit_id=habit_id, date=day, value=value))
        self.dataset.completions = others
        self._commit()

    def toggle_completion(self, habit_id, day):
        marked = any(c.key == (habit_id, day) for c in self.dataset.completions)
        self.set_completion(habit_id, day, 0 if marked else 1)
        return not marked

    # A habit counts as done for a day with a positive mark OR any time-block that day.
    def completion_value(self, habit_id, day):
        completion = next((c for c in self.dataset.completions if c.key == (habit_id, day)), None)
        if completion is not None and completion.value:
            return completion.value
        return 1 if any(b.habit_id == habit_id and b.date == day for b in self.dataset.time_blocks) else 0

    def is_complete(self, habit_id, day):
        return self.completion_value(habit_id, day) > 0

    #endregion === Completions ===

    #region === Time-blocks ===

    def insert_block(self, habit_id, day, start_time, duration):
        self._require_habit(habit_id)
        block = TimeBlock(
            id=generate_id(),
            habit_id=habit_id,
            date=_validate_date(day),
            start_time=_validate_time(start_time),
            duration=_validate_duration(duration),
        )
        self.dataset.time_blocks, stored = insert_block(self.dataset.time_blocks, block)
        log.debug(f"Logged {stored.duration} min of habit '{habit_id}' at {stored.start_time} on {day}")
        self._commit()
        return stored

    # A drag across grid cells, inclusive at both ends, in either direction.
    def insert_selection(self, habit_id, day, start_slot, end_slot):
        try:
            start_time, duration = selection_to_entry(start_slot, end_slot)
        except ValueError as e:
            raise InvalidEntryError(str(e)) from None
        return self.insert_block(habit_id, day, start_time, duration)

    # Resize or retime. The block is pulled out and re-inserted under its own id so it can absorb whatever it now
    # overlaps.
    def update_block(self, block_id, start_time=None, duration=None):
        block = next((b for b in self.dataset.time_blocks if b.id == block_id), None)
        if block is None:
            return None
        updated = replace(
            block,
            start_time=block.start_time if start_time is None else _validate_time(start_time),
            duration=block.duration if duration is None else _validate_duration(duration),
        )
        remaining = [b for b in self.dataset.time_blocks if b.id != block_id]
        self.dataset.time_blocks, stored = insert_block(remaining, updated)
        self._commit()
        return stored

    def delete_block(self, block_id):
        before = len(self.dataset.time_blocks)
        self.dataset.time_blocks = [b for b in self.dataset.time_blocks if b.id != block_id]
        if len(self.dataset.time_blocks) == before:
            return False
        self._commit()
        return True

    def blocks_for(self, habit_id, day):
        return blocks_for(self.dataset.time_blocks, habit_id, day)

    # Blocks shown on a day: hidden groups are always filtered, `visible_habit_ids` narrows further when given.
    def blocks_for_date(self, day, visible_habit_ids=None):
        hidden_groups = {g.id for g in self.dataset.groups if not g.visible}
        shown = {
            h.id for h in self.dataset.habits
            if h.group_id not in hidden_groups and (visible_habit_ids is None or h.id in visible_habit_ids)
        }
        return [b for b in self.dataset.time_blocks if b.date == day and b.habit_id in shown]

    def day_layout(self, day, visible_habit_ids=None):
        return layout_day(self.blocks_for_date(day, visible_habit_ids))

    def live_layout(self, now=None):
        now = now_ms() if now is None else now
        local = _local_now(now)
        return timer_segments(self.dataset.active_timers, now, (local.hour, local.minute))

    #endregion === Time-blocks ===

    #region === Timers ===

    # Defaults: today, and the start of the grid slot `now` falls in.
    def start_timer(self, habit_id, day=None, start_time=None, now=None):
        now = now_ms() if now is None else now
        self._require_habit(habit_id)
        local = _local_now(now)
        day = _validate_date(day) if day is not None else local.date().isoformat()
        if start_time is None:
            hour, minute = slot_to_time(*time_to_slot(local.hour, local.minute))
            start_time = format_hhmm(hour * 60 + minute)
        timer = self._timers().start(habit_id, day, _validate_time(start_time), now)
        self._commit()
        return timer

    def stop_timer(self, timer_id, now=None):
        now = now_ms() if now is None else now
        if self._timers().find(timer_id) is None:
            return None
        stored = self._timers().stop(timer_id, now)
        self._commit()
        return stored

    def stop_habit_timer(self, habit_id, now=None):
        timer = self._timers().timer_for(habit_id)
        return None if timer is None else self.stop_timer(timer.id, now)

    def resume_block(self, block_id, now=None):
        now = now_ms() if now is None else now
        timer = self._timers().resume_block(block_id, now)
        if timer is not None:
            self._commit()
        return timer

    def elapsed(self, now=None):
        return elapsed_readout(self.dataset.active_timers, now_ms() if now is None else now)

    #endregion === Timers ===

    #region === Whole-dataset operations ===

    # Reconciles `remote` against the dataset as it is right now. When local data changes, a snapshot of the old
    # local copy is written first (if enabled). Subscribers are not notified by default since the caller already
    # knows whether the remote copy needs a write.
    def apply_remote(self, remote, notify=False):
        result = reconcile(self.dataset, remote)
        if result.changed_local:
            if self.settings.get("snapshot_before_sync", True):
                create_snapshot(self.dataset, reason="before_reconcile")
                prune_snapshots()
            self.dataset = result.dataset.copy()
            self._commit(notify=notify)
        return result

    def replace_dataset(self, dataset):
        self.dataset = normalize_dataset(dataset)
        self._commit()

    def clear(self):
        create_snapshot(self.dataset, reason="clear_all")
        self.dataset = normalize_dataset(Dataset())
        log.info("Cleared all journal data")
        self._commit()

    #endregion === Whole-dataset operations ===


def today():
    return date.today().isoformat()
